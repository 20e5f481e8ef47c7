import logging
from typing import List

from fastapi import APIRouter, Depends, status
from fastapi.responses import RedirectResponse

from shared.utils import SuccessResponse, ConflictException, NotFoundException, str_to_oid

from foodmarket import lifecycle
from foodmarket.models import OrderStatus, Role, serialize_doc
from foodmarket.queries import list_orders, populate_order
from foodmarket.schemas import OrderResponse
from foodmarket.sessions import SessionContext, add_flash, get_db, require_role

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/delivery", tags=["delivery"])

require_courier = require_role(Role.DELIVERY)

HOME = "/delivery/home"


@router.get("/home", response_model=SuccessResponse[dict])
async def home(ctx: SessionContext = Depends(require_courier), db=Depends(get_db)):
    courier = await db.users.find_one({"_id": str_to_oid(ctx.user_id)})
    current = await db.orders.find_one(
        {"courier_id": ctx.user_id, "status": OrderStatus.IN_PROGRESS.value}
    )
    pending = await list_orders(db, {"status": OrderStatus.PENDING.value, "courier_id": None})
    return SuccessResponse(data={
        "courier": serialize_doc(courier),
        "current_order": (await populate_order(db, current, detail=True)).model_dump() if current else None,
        "pending_orders": [o.model_dump() for o in pending],
    })


@router.get("/orders", response_model=SuccessResponse[List[OrderResponse]])
async def orders(ctx: SessionContext = Depends(require_courier), db=Depends(get_db)):
    return SuccessResponse(data=await list_orders(db, {"courier_id": ctx.user_id, "status": OrderStatus.COMPLETED.value}))


@router.get("/orders/{order_id}", response_model=SuccessResponse[OrderResponse])
async def order_detail(order_id: str, ctx: SessionContext = Depends(require_courier), db=Depends(get_db)):
    order = await db.orders.find_one({"_id": str_to_oid(order_id)})
    # Pending orders are visible to every courier, the rest only to their own
    if not order or order.get("courier_id") not in (None, ctx.user_id):
        raise NotFoundException("Order not found")
    return SuccessResponse(data=await populate_order(db, order, detail=True))


@router.post("/orders/{order_id}/take")
async def take_order(order_id: str, ctx: SessionContext = Depends(require_courier), db=Depends(get_db)):
    try:
        await lifecycle.assign(db, order_id, ctx.user_id)
    except (ConflictException, NotFoundException) as exc:
        await add_flash(db, ctx.session_id, "error", exc.detail)
    else:
        await add_flash(db, ctx.session_id, "success", "Order assigned to you")
    return RedirectResponse(HOME, status_code=status.HTTP_303_SEE_OTHER)


@router.post("/orders/{order_id}/complete")
async def complete_order(order_id: str, ctx: SessionContext = Depends(require_courier), db=Depends(get_db)):
    try:
        await lifecycle.complete(db, order_id, ctx.user_id)
    except (ConflictException, NotFoundException) as exc:
        await add_flash(db, ctx.session_id, "error", exc.detail)
    else:
        await add_flash(db, ctx.session_id, "success", "Order marked as completed")
    return RedirectResponse(HOME, status_code=status.HTTP_303_SEE_OTHER)
