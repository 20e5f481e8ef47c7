import logging
import re
from decimal import Decimal
from typing import List, Optional

from fastapi import APIRouter, Depends, Query
from pymongo import ReturnDocument
from pymongo.errors import DuplicateKeyError

from shared.utils import (
    SuccessResponse, NotFoundException, ValidationException, EmptyCartException, str_to_oid,
)

from foodmarket import cart as cart_manager
from foodmarket.checkout import create_orders, preview
from foodmarket.models import AddressDB, FavoriteDB, Role, serialize_doc, to_document
from foodmarket.queries import favorite_ids, list_orders, populate_order
from foodmarket.schemas import (
    AddressIn, CartActionRequest, CartItemResponse, CartUpdateResponse,
    CheckoutSummaryResponse, FavoriteAction, OrderCreate, OrderCreateResponse,
    OrderDraftResponse, OrderResponse, ProfileUpdate,
)
from foodmarket.sessions import SessionContext, add_flash, get_db, require_role
from foodmarket.settings_store import get_config

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/client", tags=["client"])

require_client = require_role(Role.CLIENT)


def _cart_response(ctx: cart_manager.CartContext) -> CartUpdateResponse:
    return CartUpdateResponse(
        cart=[CartItemResponse(**item.model_dump()) for item in ctx.items],
        subtotal=ctx.subtotal(),
        total_items=ctx.total_items(),
    )


# --- Browsing ---

@router.get("/home", response_model=SuccessResponse[List[dict]])
async def home(ctx: SessionContext = Depends(require_client), db=Depends(get_db)):
    types = db.commerce_types.find({}, sort=[("name", 1)])
    return SuccessResponse(data=[serialize_doc(t) async for t in types])


@router.get("/commerces/{type_id}", response_model=SuccessResponse[dict])
async def commerces_by_type(type_id: str, ctx: SessionContext = Depends(require_client), db=Depends(get_db)):
    commerce_type = await db.commerce_types.find_one({"_id": str_to_oid(type_id)})
    if not commerce_type:
        raise NotFoundException("Commerce type not found")

    cursor = db.commerces.find({"commerce_type_id": type_id, "is_active": True}, sort=[("name", 1)])
    return SuccessResponse(data={
        "commerce_type": serialize_doc(commerce_type),
        "commerces": [serialize_doc(c) async for c in cursor],
        "favorites": await favorite_ids(db, ctx.user_id),
    })


@router.get("/search-commerces", response_model=SuccessResponse[dict])
async def search_commerces(
    q: str = "",
    type: Optional[str] = Query(None),
    ctx: SessionContext = Depends(require_client),
    db=Depends(get_db),
):
    query = {"is_active": True}
    if q:
        query["name"] = {"$regex": re.escape(q), "$options": "i"}
    if type:
        query["commerce_type_id"] = type

    commerces = [serialize_doc(c) async for c in db.commerces.find(query, sort=[("name", 1)])]
    return SuccessResponse(data={
        "commerces": commerces,
        "favorites": await favorite_ids(db, ctx.user_id),
        "total": len(commerces),
    })


@router.get("/catalog/{commerce_id}", response_model=SuccessResponse[dict])
async def catalog(commerce_id: str, ctx: SessionContext = Depends(require_client), db=Depends(get_db)):
    commerce = await db.commerces.find_one({"_id": str_to_oid(commerce_id)})
    if not commerce or not commerce.get("is_active"):
        raise NotFoundException("Commerce not found or inactive")

    categories = []
    async for category in db.categories.find({"commerce_id": commerce_id}, sort=[("name", 1)]):
        products = db.products.find({"commerce_id": commerce_id, "category_id": str(category["_id"])})
        categories.append({
            **serialize_doc(category),
            "products": [serialize_doc(p) async for p in products],
        })
    uncategorized = db.products.find({"commerce_id": commerce_id, "category_id": None})

    cart = await cart_manager.load_cart(db, ctx.session_id)
    favorites = await favorite_ids(db, ctx.user_id)
    return SuccessResponse(data={
        "commerce": serialize_doc(commerce),
        "categories": categories,
        "uncategorized": [serialize_doc(p) async for p in uncategorized],
        "cart": _cart_response(cart).model_dump(by_alias=True),
        "is_favorite": commerce_id in favorites,
    })


# --- Cart ---

@router.get("/cart", response_model=CartUpdateResponse)
async def get_cart(ctx: SessionContext = Depends(require_client), db=Depends(get_db)):
    cart = await cart_manager.load_cart(db, ctx.session_id)
    return _cart_response(cart)


@router.post("/cart", response_model=CartUpdateResponse)
async def update_cart(payload: CartActionRequest, ctx: SessionContext = Depends(require_client), db=Depends(get_db)):
    cart = await cart_manager.load_cart(db, ctx.session_id)
    await cart_manager.apply_action(db, cart, payload.action, payload.product_id)
    return _cart_response(cart)


# --- Checkout ---

@router.get("/order/summary", response_model=SuccessResponse[CheckoutSummaryResponse])
async def order_summary(ctx: SessionContext = Depends(require_client), db=Depends(get_db)):
    cart = await cart_manager.load_cart(db, ctx.session_id)
    if cart.is_empty():
        raise EmptyCartException()

    config = await get_config(db)
    drafts = []
    for draft in preview(cart.items, config.tax_rate):
        commerce = await db.commerces.find_one({"_id": str_to_oid(draft.commerce_id)}, {"name": 1})
        drafts.append(OrderDraftResponse(
            commerce_id=draft.commerce_id,
            commerce_name=commerce["name"] if commerce else None,
            items=[CartItemResponse(**item.model_dump()) for item in draft.items],
            subtotal=draft.subtotal,
            tax_rate=draft.tax_rate,
            tax_amount=draft.tax_amount,
            total=draft.total,
        ))

    addresses = db.addresses.find({"client_id": ctx.user_id}, sort=[("created_at", -1)])
    return SuccessResponse(data=CheckoutSummaryResponse(
        addresses=[serialize_doc(a) async for a in addresses],
        orders=drafts,
        subtotal=sum((d.subtotal for d in drafts), Decimal("0")),
        total=sum((d.total for d in drafts), Decimal("0")),
    ))


@router.post("/order/create", response_model=OrderCreateResponse)
async def order_create(payload: OrderCreate, ctx: SessionContext = Depends(require_client), db=Depends(get_db)):
    if not payload.address_id:
        raise ValidationException("Select a delivery address")

    cart = await cart_manager.load_cart(db, ctx.session_id)
    orders = await create_orders(db, cart, payload.address_id, ctx.user_id)

    message = "Order created successfully! It will be processed soon."
    await add_flash(db, ctx.session_id, "success", message)
    return OrderCreateResponse(
        message=message,
        redirect="/client/home",
        orders=[order.id for order in orders],
    )


# --- Orders ---

@router.get("/orders", response_model=SuccessResponse[List[OrderResponse]])
async def my_orders(ctx: SessionContext = Depends(require_client), db=Depends(get_db)):
    return SuccessResponse(data=await list_orders(db, {"client_id": ctx.user_id}))


@router.get("/orders/{order_id}", response_model=SuccessResponse[OrderResponse])
async def order_detail(order_id: str, ctx: SessionContext = Depends(require_client), db=Depends(get_db)):
    order = await db.orders.find_one({"_id": str_to_oid(order_id), "client_id": ctx.user_id})
    if not order:
        raise NotFoundException("Order not found")
    return SuccessResponse(data=await populate_order(db, order, detail=True))


# --- Profile ---

@router.get("/profile", response_model=SuccessResponse[dict])
async def profile(ctx: SessionContext = Depends(require_client), db=Depends(get_db)):
    user = await db.users.find_one({"_id": str_to_oid(ctx.user_id)})
    if not user:
        raise NotFoundException("User not found")
    return SuccessResponse(data=serialize_doc(user))


@router.put("/profile", response_model=SuccessResponse[dict])
async def update_profile(payload: ProfileUpdate, ctx: SessionContext = Depends(require_client), db=Depends(get_db)):
    update = payload.model_dump(exclude_none=True)
    user = await db.users.find_one_and_update(
        {"_id": str_to_oid(ctx.user_id)},
        {"$set": update},
        return_document=ReturnDocument.AFTER,
    )
    return SuccessResponse(data=serialize_doc(user), message="Profile updated successfully")


# --- Addresses ---

@router.get("/addresses", response_model=SuccessResponse[List[dict]])
async def addresses(ctx: SessionContext = Depends(require_client), db=Depends(get_db)):
    cursor = db.addresses.find({"client_id": ctx.user_id}, sort=[("created_at", -1)])
    return SuccessResponse(data=[serialize_doc(a) async for a in cursor])


@router.post("/addresses", response_model=SuccessResponse[dict])
async def create_address(payload: AddressIn, ctx: SessionContext = Depends(require_client), db=Depends(get_db)):
    address = AddressDB(client_id=ctx.user_id, **payload.model_dump())
    result = await db.addresses.insert_one(to_document(address))
    created = await db.addresses.find_one({"_id": result.inserted_id})
    return SuccessResponse(data=serialize_doc(created), message="Address created successfully")


async def _own_address(db, address_id: str, client_id: str) -> dict:
    address = await db.addresses.find_one({"_id": str_to_oid(address_id), "client_id": client_id})
    if not address:
        raise NotFoundException("Address not found")
    return address


@router.get("/addresses/{address_id}", response_model=SuccessResponse[dict])
async def get_address(address_id: str, ctx: SessionContext = Depends(require_client), db=Depends(get_db)):
    return SuccessResponse(data=serialize_doc(await _own_address(db, address_id, ctx.user_id)))


@router.put("/addresses/{address_id}", response_model=SuccessResponse[dict])
async def update_address(address_id: str, payload: AddressIn, ctx: SessionContext = Depends(require_client), db=Depends(get_db)):
    address = await db.addresses.find_one_and_update(
        {"_id": str_to_oid(address_id), "client_id": ctx.user_id},
        {"$set": payload.model_dump()},
        return_document=ReturnDocument.AFTER,
    )
    if not address:
        raise NotFoundException("Address not found")
    return SuccessResponse(data=serialize_doc(address), message="Address updated successfully")


@router.delete("/addresses/{address_id}", response_model=SuccessResponse[dict])
async def delete_address(address_id: str, ctx: SessionContext = Depends(require_client), db=Depends(get_db)):
    result = await db.addresses.delete_one({"_id": str_to_oid(address_id), "client_id": ctx.user_id})
    if not result.deleted_count:
        raise NotFoundException("Address not found")
    return SuccessResponse(message="Address deleted successfully")


# --- Favorites ---

@router.get("/favorites", response_model=SuccessResponse[List[dict]])
async def favorites(ctx: SessionContext = Depends(require_client), db=Depends(get_db)):
    result = []
    async for fav in db.favorites.find({"client_id": ctx.user_id}):
        commerce = await db.commerces.find_one(
            {"_id": str_to_oid(fav["commerce_id"])},
            {"name": 1, "logo": 1, "phone": 1, "opens_at": 1, "closes_at": 1},
        )
        result.append({**serialize_doc(fav), "commerce": serialize_doc(commerce)})
    return SuccessResponse(data=result)


@router.post("/favorites", response_model=SuccessResponse[dict])
async def toggle_favorite(payload: FavoriteAction, ctx: SessionContext = Depends(require_client), db=Depends(get_db)):
    if payload.action == "add":
        if not await db.commerces.find_one({"_id": str_to_oid(payload.commerce_id)}, {"_id": 1}):
            raise NotFoundException("Commerce not found")
        favorite = FavoriteDB(client_id=ctx.user_id, commerce_id=payload.commerce_id)
        try:
            await db.favorites.update_one(
                {"client_id": ctx.user_id, "commerce_id": payload.commerce_id},
                {"$setOnInsert": to_document(favorite)},
                upsert=True,
            )
        except DuplicateKeyError:
            pass  # already a favorite
        return SuccessResponse(data={"action": "added"})

    if payload.action == "remove":
        await db.favorites.delete_one({"client_id": ctx.user_id, "commerce_id": payload.commerce_id})
        return SuccessResponse(data={"action": "removed"})

    raise ValidationException("Invalid action")
