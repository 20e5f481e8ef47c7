import logging
from typing import List

from bson import ObjectId
from fastapi import APIRouter, Depends
from pymongo import ReturnDocument

from shared.utils import SuccessResponse, NotFoundException, ValidationException, str_to_oid

from foodmarket.models import CategoryDB, ProductDB, Role, serialize_doc, to_document
from foodmarket.queries import list_orders, populate_order, status_counts
from foodmarket.schemas import CategoryIn, CommerceProfileUpdate, OrderResponse, ProductIn
from foodmarket.sessions import SessionContext, get_db, require_role

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/commerce", tags=["commerce"])

require_commerce = require_role(Role.COMMERCE)


@router.get("/home", response_model=SuccessResponse[dict])
async def home(ctx: SessionContext = Depends(require_commerce), db=Depends(get_db)):
    commerce = await db.commerces.find_one({"_id": str_to_oid(ctx.user_id)})
    orders = await list_orders(db, {"commerce_id": ctx.user_id})
    return SuccessResponse(data={
        "commerce": serialize_doc(commerce),
        "orders": [o.model_dump() for o in orders],
        "counts": status_counts(orders),
    })


# --- Profile ---

@router.get("/profile", response_model=SuccessResponse[dict])
async def profile(ctx: SessionContext = Depends(require_commerce), db=Depends(get_db)):
    commerce = await db.commerces.find_one({"_id": str_to_oid(ctx.user_id)})
    if not commerce:
        raise NotFoundException("Commerce not found")
    return SuccessResponse(data=serialize_doc(commerce))


@router.put("/profile", response_model=SuccessResponse[dict])
async def update_profile(payload: CommerceProfileUpdate, ctx: SessionContext = Depends(require_commerce), db=Depends(get_db)):
    if not ObjectId.is_valid(payload.commerce_type_id) or not await db.commerce_types.find_one(
        {"_id": ObjectId(payload.commerce_type_id)}
    ):
        raise ValidationException("Commerce type is required")

    update = payload.model_dump(exclude_none=True)
    update["email"] = update["email"].lower()
    commerce = await db.commerces.find_one_and_update(
        {"_id": str_to_oid(ctx.user_id)},
        {"$set": update},
        return_document=ReturnDocument.AFTER,
    )
    if not commerce:
        raise NotFoundException("Commerce not found")
    await db.users.update_one(
        {"_id": str_to_oid(ctx.user_id)},
        {"$set": {"first_name": payload.name, "phone": payload.phone}},
    )
    return SuccessResponse(data=serialize_doc(commerce), message="Profile updated successfully")


# --- Categories ---

async def _own_category(db, category_id: str, commerce_id: str) -> dict:
    category = await db.categories.find_one({"_id": str_to_oid(category_id), "commerce_id": commerce_id})
    if not category:
        raise NotFoundException("Category not found")
    return category


@router.get("/categories", response_model=SuccessResponse[List[dict]])
async def categories(ctx: SessionContext = Depends(require_commerce), db=Depends(get_db)):
    result = []
    async for category in db.categories.find({"commerce_id": ctx.user_id}, sort=[("name", 1)]):
        count = await db.products.count_documents({"category_id": str(category["_id"])})
        result.append({**serialize_doc(category), "product_count": count})
    return SuccessResponse(data=result)


@router.post("/categories", response_model=SuccessResponse[dict])
async def create_category(payload: CategoryIn, ctx: SessionContext = Depends(require_commerce), db=Depends(get_db)):
    category = CategoryDB(commerce_id=ctx.user_id, **payload.model_dump())
    result = await db.categories.insert_one(to_document(category))
    created = await db.categories.find_one({"_id": result.inserted_id})
    return SuccessResponse(data=serialize_doc(created), message="Category created successfully")


@router.put("/categories/{category_id}", response_model=SuccessResponse[dict])
async def update_category(category_id: str, payload: CategoryIn, ctx: SessionContext = Depends(require_commerce), db=Depends(get_db)):
    category = await db.categories.find_one_and_update(
        {"_id": str_to_oid(category_id), "commerce_id": ctx.user_id},
        {"$set": payload.model_dump()},
        return_document=ReturnDocument.AFTER,
    )
    if not category:
        raise NotFoundException("Category not found")
    return SuccessResponse(data=serialize_doc(category), message="Category updated successfully")


@router.delete("/categories/{category_id}", response_model=SuccessResponse[dict])
async def delete_category(category_id: str, ctx: SessionContext = Depends(require_commerce), db=Depends(get_db)):
    category = await _own_category(db, category_id, ctx.user_id)
    await db.categories.delete_one({"_id": category["_id"]})
    # Products survive as uncategorized
    await db.products.update_many({"category_id": category_id}, {"$set": {"category_id": None}})
    return SuccessResponse(message="Category deleted successfully")


# --- Products ---

async def _check_category(db, category_id, commerce_id: str) -> None:
    if category_id:
        await _own_category(db, category_id, commerce_id)


@router.get("/products", response_model=SuccessResponse[List[dict]])
async def products(ctx: SessionContext = Depends(require_commerce), db=Depends(get_db)):
    cursor = db.products.find({"commerce_id": ctx.user_id}, sort=[("name", 1)])
    return SuccessResponse(data=[serialize_doc(p) async for p in cursor])


@router.post("/products", response_model=SuccessResponse[dict])
async def create_product(payload: ProductIn, ctx: SessionContext = Depends(require_commerce), db=Depends(get_db)):
    await _check_category(db, payload.category_id, ctx.user_id)
    product = ProductDB(commerce_id=ctx.user_id, **payload.model_dump())
    result = await db.products.insert_one(to_document(product))
    created = await db.products.find_one({"_id": result.inserted_id})
    logger.info("Product created", extra={"product_id": str(result.inserted_id), "commerce_id": ctx.user_id})
    return SuccessResponse(data=serialize_doc(created), message="Product created successfully")


@router.get("/products/{product_id}", response_model=SuccessResponse[dict])
async def get_product(product_id: str, ctx: SessionContext = Depends(require_commerce), db=Depends(get_db)):
    product = await db.products.find_one({"_id": str_to_oid(product_id), "commerce_id": ctx.user_id})
    if not product:
        raise NotFoundException("Product not found")
    return SuccessResponse(data=serialize_doc(product))


@router.put("/products/{product_id}", response_model=SuccessResponse[dict])
async def update_product(product_id: str, payload: ProductIn, ctx: SessionContext = Depends(require_commerce), db=Depends(get_db)):
    await _check_category(db, payload.category_id, ctx.user_id)
    update = to_document(payload)
    product = await db.products.find_one_and_update(
        {"_id": str_to_oid(product_id), "commerce_id": ctx.user_id},
        {"$set": update},
        return_document=ReturnDocument.AFTER,
    )
    if not product:
        raise NotFoundException("Product not found")
    return SuccessResponse(data=serialize_doc(product), message="Product updated successfully")


@router.delete("/products/{product_id}", response_model=SuccessResponse[dict])
async def delete_product(product_id: str, ctx: SessionContext = Depends(require_commerce), db=Depends(get_db)):
    result = await db.products.delete_one({"_id": str_to_oid(product_id), "commerce_id": ctx.user_id})
    if not result.deleted_count:
        raise NotFoundException("Product not found")
    return SuccessResponse(message="Product deleted successfully")


# --- Orders ---

@router.get("/orders", response_model=SuccessResponse[List[OrderResponse]])
async def orders(ctx: SessionContext = Depends(require_commerce), db=Depends(get_db)):
    return SuccessResponse(data=await list_orders(db, {"commerce_id": ctx.user_id}))


@router.get("/orders/{order_id}", response_model=SuccessResponse[OrderResponse])
async def order_detail(order_id: str, ctx: SessionContext = Depends(require_commerce), db=Depends(get_db)):
    order = await db.orders.find_one({"_id": str_to_oid(order_id), "commerce_id": ctx.user_id})
    if not order:
        raise NotFoundException("Order not found")
    return SuccessResponse(data=await populate_order(db, order, detail=True))
