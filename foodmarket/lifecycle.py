"""Order lifecycle: pending -> in_progress -> completed.

Couriers claim pending orders themselves. Every transition is a
conditional update on the current state so that concurrent requests
cannot both win; a failed precondition is reported as a conflict and
leaves the stored state unchanged.
"""
import logging
from datetime import datetime, timedelta

from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo import ReturnDocument

from shared.utils import settings, ConflictException, NotFoundException, str_to_oid
from foodmarket.models import DeliveryStatus, OrderStatus, Role

logger = logging.getLogger(__name__)


async def _release_courier(db: AsyncIOMotorDatabase, courier_oid) -> None:
    await db.users.update_one(
        {"_id": courier_oid},
        {"$set": {"delivery_status": DeliveryStatus.AVAILABLE.value, "reserved_at": None}},
    )


async def assign(db: AsyncIOMotorDatabase, order_id: str, courier_id: str) -> dict:
    """Let ``courier_id`` claim a pending, unassigned order."""
    order_oid = str_to_oid(order_id)
    courier_oid = str_to_oid(courier_id)

    order = await db.orders.find_one({"_id": order_oid}, {"status": 1, "courier_id": 1})
    if not order:
        raise NotFoundException("Order not found")
    if order["status"] != OrderStatus.PENDING.value or order.get("courier_id"):
        raise ConflictException("This order has already been taken")

    active = await db.orders.count_documents(
        {"courier_id": courier_id, "status": OrderStatus.IN_PROGRESS.value}
    )
    if active:
        raise ConflictException("You already have an order in progress")

    # A courier holds at most one order: reserve the courier first. With no
    # in_progress order on record, a busy flag older than the reservation
    # timeout is left over from an interrupted request and may be taken over.
    now = datetime.utcnow()
    stale_before = now - timedelta(seconds=settings.COURIER_RESERVATION_TIMEOUT_SECONDS)
    courier = await db.users.find_one_and_update(
        {
            "_id": courier_oid,
            "role": Role.DELIVERY.value,
            "is_active": True,
            "$or": [
                {"delivery_status": {"$ne": DeliveryStatus.BUSY.value}},
                {"reserved_at": None},
                {"reserved_at": {"$lt": stale_before}},
            ],
        },
        {"$set": {"delivery_status": DeliveryStatus.BUSY.value, "reserved_at": now}},
    )
    if not courier:
        raise ConflictException("You already have an order in progress")
    if courier.get("delivery_status") == DeliveryStatus.BUSY.value:
        logger.warning("Stale courier reservation cleared", extra={"courier_id": courier_id})

    claimed = await db.orders.find_one_and_update(
        {"_id": order_oid, "status": OrderStatus.PENDING.value, "courier_id": None},
        {"$set": {
            "status": OrderStatus.IN_PROGRESS.value,
            "courier_id": courier_id,
            "assigned_at": datetime.utcnow(),
        }},
        return_document=ReturnDocument.AFTER,
    )
    if not claimed:
        await _release_courier(db, courier_oid)
        raise ConflictException("This order has already been taken")

    logger.info("Order assigned", extra={"order_id": order_id, "courier_id": courier_id})
    return claimed


async def complete(db: AsyncIOMotorDatabase, order_id: str, courier_id: str) -> dict:
    """Mark an in-progress order of ``courier_id`` as completed."""
    order_oid = str_to_oid(order_id)

    completed = await db.orders.find_one_and_update(
        {
            "_id": order_oid,
            "status": OrderStatus.IN_PROGRESS.value,
            "courier_id": courier_id,
        },
        {"$set": {
            "status": OrderStatus.COMPLETED.value,
            "completed_at": datetime.utcnow(),
        }},
        return_document=ReturnDocument.AFTER,
    )
    if not completed:
        if not await db.orders.find_one({"_id": order_oid}, {"_id": 1}):
            raise NotFoundException("Order not found")
        raise ConflictException("This order is not in progress under your account")

    await _release_courier(db, str_to_oid(courier_id))
    logger.info("Order completed", extra={"order_id": order_id, "courier_id": courier_id})
    return completed
