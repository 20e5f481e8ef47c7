import logging
from datetime import datetime
from typing import List

from fastapi import APIRouter, Depends
from pymongo import ReturnDocument

from shared.utils import (
    get_password_hash, SuccessResponse, NotFoundException, ValidationException, str_to_oid,
)
from shared.security_config import validate_password

from foodmarket.models import CommerceTypeDB, OrderStatus, Role, UserDB, serialize_doc, to_document
from foodmarket.routers.auth import insert_user
from foodmarket.schemas import AdminCreate, AdminUpdate, CommerceTypeIn, ConfigResponse, ConfigUpdate
from foodmarket.sessions import SessionContext, get_db, require_role, revoke_sessions
from foodmarket.settings_store import get_config, update_config

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/admin", tags=["admin"])

require_admin = require_role(Role.ADMIN)


@router.get("/home", response_model=SuccessResponse[dict])
async def home(ctx: SessionContext = Depends(require_admin), db=Depends(get_db)):
    today = datetime.utcnow().replace(hour=0, minute=0, second=0, microsecond=0)

    async def users(role: Role, active: bool) -> int:
        return await db.users.count_documents({"role": role.value, "is_active": active})

    return SuccessResponse(data={
        "orders": {
            "total": await db.orders.count_documents({}),
            "today": await db.orders.count_documents({"created_at": {"$gte": today}}),
        },
        "commerces": {
            "active": await db.commerces.count_documents({"is_active": True}),
            "inactive": await db.commerces.count_documents({"is_active": False}),
        },
        "clients": {
            "active": await users(Role.CLIENT, True),
            "inactive": await users(Role.CLIENT, False),
        },
        "deliveries": {
            "active": await users(Role.DELIVERY, True),
            "inactive": await users(Role.DELIVERY, False),
        },
        "products": await db.products.count_documents({}),
    })


# --- Accounts ---

async def _toggle_user(db, user_id: str, role: Role) -> dict:
    user = await db.users.find_one({"_id": str_to_oid(user_id), "role": role.value})
    if not user:
        raise NotFoundException("User not found")
    is_active = not user.get("is_active", False)
    await db.users.update_one({"_id": user["_id"]}, {"$set": {"is_active": is_active}})
    if not is_active:
        await revoke_sessions(db, user_id)
    logger.info("Account toggled", extra={"user_id": user_id, "role": role.value, "action": "activate" if is_active else "deactivate"})
    return {"id": user_id, "is_active": is_active}


@router.get("/clients", response_model=SuccessResponse[List[dict]])
async def clients(ctx: SessionContext = Depends(require_admin), db=Depends(get_db)):
    result = []
    async for user in db.users.find({"role": Role.CLIENT.value}, sort=[("created_at", -1)]):
        count = await db.orders.count_documents({"client_id": str(user["_id"])})
        result.append({**serialize_doc(user), "order_count": count})
    return SuccessResponse(data=result)


@router.post("/clients/{user_id}/toggle", response_model=SuccessResponse[dict])
async def toggle_client(user_id: str, ctx: SessionContext = Depends(require_admin), db=Depends(get_db)):
    return SuccessResponse(data=await _toggle_user(db, user_id, Role.CLIENT), message="Client status updated")


@router.get("/deliveries", response_model=SuccessResponse[List[dict]])
async def deliveries(ctx: SessionContext = Depends(require_admin), db=Depends(get_db)):
    result = []
    async for user in db.users.find({"role": Role.DELIVERY.value}, sort=[("created_at", -1)]):
        count = await db.orders.count_documents(
            {"courier_id": str(user["_id"]), "status": OrderStatus.COMPLETED.value}
        )
        result.append({**serialize_doc(user), "completed_count": count})
    return SuccessResponse(data=result)


@router.post("/deliveries/{user_id}/toggle", response_model=SuccessResponse[dict])
async def toggle_delivery(user_id: str, ctx: SessionContext = Depends(require_admin), db=Depends(get_db)):
    return SuccessResponse(data=await _toggle_user(db, user_id, Role.DELIVERY), message="Courier status updated")


@router.get("/commerces", response_model=SuccessResponse[List[dict]])
async def commerces(ctx: SessionContext = Depends(require_admin), db=Depends(get_db)):
    result = []
    async for commerce in db.commerces.find({}, sort=[("name", 1)]):
        count = await db.orders.count_documents({"commerce_id": str(commerce["_id"])})
        result.append({**serialize_doc(commerce), "order_count": count})
    return SuccessResponse(data=result)


@router.post("/commerces/{commerce_id}/toggle", response_model=SuccessResponse[dict])
async def toggle_commerce(commerce_id: str, ctx: SessionContext = Depends(require_admin), db=Depends(get_db)):
    commerce = await db.commerces.find_one({"_id": str_to_oid(commerce_id)})
    if not commerce:
        raise NotFoundException("Commerce not found")
    is_active = not commerce.get("is_active", False)
    await db.commerces.update_one({"_id": commerce["_id"]}, {"$set": {"is_active": is_active}})
    # The owning account follows the storefront
    await db.users.update_one({"_id": commerce["_id"]}, {"$set": {"is_active": is_active}})
    if not is_active:
        await revoke_sessions(db, commerce_id)
    return SuccessResponse(data={"id": commerce_id, "is_active": is_active}, message="Commerce status updated")


# --- Admins ---

@router.get("/admins", response_model=SuccessResponse[List[dict]])
async def admins(ctx: SessionContext = Depends(require_admin), db=Depends(get_db)):
    cursor = db.users.find({"role": Role.ADMIN.value}, sort=[("created_at", -1)])
    return SuccessResponse(data=[serialize_doc(u) async for u in cursor])


@router.post("/admins", response_model=SuccessResponse[dict])
async def create_admin(payload: AdminCreate, ctx: SessionContext = Depends(require_admin), db=Depends(get_db)):
    errors = validate_password(payload.password, payload.password_confirm)
    if errors:
        raise ValidationException(errors)

    user = UserDB(
        first_name=payload.first_name,
        last_name=payload.last_name,
        national_id=payload.national_id,
        phone=payload.phone,
        email=payload.email.lower(),
        username=payload.username,
        password_hash=get_password_hash(payload.password),
        role=Role.ADMIN,
        is_active=True,
    )
    user_id = await insert_user(db, user)
    logger.info("Admin created", extra={"user_id": str(user_id)})
    return SuccessResponse(data={"id": str(user_id)}, message="Administrator created successfully")


def _not_self(ctx: SessionContext, user_id: str) -> None:
    if ctx.user_id == user_id:
        raise ValidationException("You cannot modify your own account")


@router.put("/admins/{user_id}", response_model=SuccessResponse[dict])
async def update_admin(user_id: str, payload: AdminUpdate, ctx: SessionContext = Depends(require_admin), db=Depends(get_db)):
    _not_self(ctx, user_id)
    oid = str_to_oid(user_id)

    update = payload.model_dump(exclude={"password", "password_confirm"})
    update["email"] = update["email"].lower()
    if payload.password:
        errors = validate_password(payload.password, payload.password_confirm or "")
        if errors:
            raise ValidationException(errors)
        update["password_hash"] = get_password_hash(payload.password)

    taken = await db.users.find_one({
        "_id": {"$ne": oid},
        "$or": [{"email": update["email"]}, {"username": update["username"]}],
    })
    if taken:
        raise ValidationException("Email or username already exists")

    user = await db.users.find_one_and_update(
        {"_id": oid, "role": Role.ADMIN.value},
        {"$set": update},
        return_document=ReturnDocument.AFTER,
    )
    if not user:
        raise NotFoundException("User not found")
    return SuccessResponse(data=serialize_doc(user), message="Administrator updated successfully")


@router.post("/admins/{user_id}/toggle", response_model=SuccessResponse[dict])
async def toggle_admin(user_id: str, ctx: SessionContext = Depends(require_admin), db=Depends(get_db)):
    _not_self(ctx, user_id)
    return SuccessResponse(data=await _toggle_user(db, user_id, Role.ADMIN), message="Administrator status updated")


# --- Commerce types ---

@router.get("/commerce-types", response_model=SuccessResponse[List[dict]])
async def commerce_types(ctx: SessionContext = Depends(require_admin), db=Depends(get_db)):
    result = []
    async for commerce_type in db.commerce_types.find({}, sort=[("name", 1)]):
        count = await db.commerces.count_documents({"commerce_type_id": str(commerce_type["_id"])})
        result.append({**serialize_doc(commerce_type), "commerce_count": count})
    return SuccessResponse(data=result)


@router.post("/commerce-types", response_model=SuccessResponse[dict])
async def create_commerce_type(payload: CommerceTypeIn, ctx: SessionContext = Depends(require_admin), db=Depends(get_db)):
    commerce_type = CommerceTypeDB(**payload.model_dump())
    result = await db.commerce_types.insert_one(to_document(commerce_type))
    created = await db.commerce_types.find_one({"_id": result.inserted_id})
    return SuccessResponse(data=serialize_doc(created), message="Commerce type created successfully")


@router.put("/commerce-types/{type_id}", response_model=SuccessResponse[dict])
async def update_commerce_type(type_id: str, payload: CommerceTypeIn, ctx: SessionContext = Depends(require_admin), db=Depends(get_db)):
    commerce_type = await db.commerce_types.find_one_and_update(
        {"_id": str_to_oid(type_id)},
        {"$set": payload.model_dump()},
        return_document=ReturnDocument.AFTER,
    )
    if not commerce_type:
        raise NotFoundException("Commerce type not found")
    return SuccessResponse(data=serialize_doc(commerce_type), message="Commerce type updated successfully")


@router.delete("/commerce-types/{type_id}", response_model=SuccessResponse[dict])
async def delete_commerce_type(type_id: str, ctx: SessionContext = Depends(require_admin), db=Depends(get_db)):
    result = await db.commerce_types.delete_one({"_id": str_to_oid(type_id)})
    if not result.deleted_count:
        raise NotFoundException("Commerce type not found")
    removed = await db.commerces.delete_many({"commerce_type_id": type_id})
    logger.info("Commerce type deleted", extra={"action": f"cascade:{removed.deleted_count}"})
    return SuccessResponse(
        data={"deleted_commerces": removed.deleted_count},
        message="Commerce type deleted successfully",
    )


# --- Config ---

@router.get("/config", response_model=SuccessResponse[ConfigResponse])
async def config(ctx: SessionContext = Depends(require_admin), db=Depends(get_db)):
    current = await get_config(db)
    return SuccessResponse(data=ConfigResponse(**current.model_dump()))


@router.put("/config", response_model=SuccessResponse[ConfigResponse])
async def put_config(payload: ConfigUpdate, ctx: SessionContext = Depends(require_admin), db=Depends(get_db)):
    updated = await update_config(db, payload.model_dump())
    return SuccessResponse(data=ConfigResponse(**updated.model_dump()), message="Configuration updated successfully")
