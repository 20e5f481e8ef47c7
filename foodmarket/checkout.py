"""Turn a session cart into orders.

One order is created per commerce present in the cart. Prices are the
snapshots taken when each product was added to the cart; the catalog is
only consulted to make sure every product still exists.
"""
import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Dict, List

from bson import ObjectId
from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo.errors import PyMongoError

from shared.utils import ValidationException, EmptyCartException
from foodmarket.cart import CartContext, clear_cart
from foodmarket.models import (
    CartItem, OrderDB, OrderItemDB, D, round_money, to_document,
)
from foodmarket.settings_store import get_config

logger = logging.getLogger(__name__)


@dataclass
class OrderDraft:
    commerce_id: str
    items: List[CartItem]
    subtotal: Decimal
    tax_rate: Decimal
    tax_amount: Decimal
    total: Decimal


def partition_by_commerce(items: List[CartItem]) -> Dict[str, List[CartItem]]:
    """Group items by commerce, keeping the order in which commerces first appear."""
    groups: Dict[str, List[CartItem]] = {}
    for item in items:
        groups.setdefault(item.commerce_id, []).append(item)
    return groups


def compute_totals(items: List[CartItem], tax_rate) -> tuple:
    """Return ``(subtotal, tax_amount, total)`` for one group of items."""
    subtotal = round_money(sum((item.line_total() for item in items), Decimal("0")))
    tax_amount = round_money(subtotal * D(tax_rate) / Decimal("100"))
    return subtotal, tax_amount, subtotal + tax_amount


def preview(items: List[CartItem], tax_rate) -> List[OrderDraft]:
    drafts = []
    for commerce_id, group in partition_by_commerce(items).items():
        subtotal, tax_amount, total = compute_totals(group, tax_rate)
        drafts.append(OrderDraft(
            commerce_id=commerce_id,
            items=group,
            subtotal=subtotal,
            tax_rate=D(tax_rate),
            tax_amount=tax_amount,
            total=total,
        ))
    return drafts


async def _check_address(db: AsyncIOMotorDatabase, address_id: str, client_id: str) -> None:
    if not address_id or not ObjectId.is_valid(address_id):
        raise ValidationException("Select a delivery address")
    address = await db.addresses.find_one({"_id": ObjectId(address_id), "client_id": client_id})
    if not address:
        raise ValidationException("Select a delivery address")


async def _check_products(db: AsyncIOMotorDatabase, items: List[CartItem]) -> None:
    ids = [ObjectId(item.product_id) for item in items if ObjectId.is_valid(item.product_id)]
    found = set()
    async for product in db.products.find({"_id": {"$in": ids}}, {"_id": 1}):
        found.add(str(product["_id"]))
    missing = [item.name for item in items if item.product_id not in found]
    if missing:
        raise ValidationException(
            [f"Product {name} is no longer available" for name in missing]
        )


async def create_orders(db: AsyncIOMotorDatabase, ctx: CartContext, address_id: str, client_id: str) -> List[OrderDB]:
    """Persist one pending order per commerce and clear the cart.

    The cart is only cleared once every order is stored. If an insert or
    the cart write fails, orders already written by this call are removed
    again and the error propagates with the cart untouched.
    """
    if ctx.is_empty():
        raise EmptyCartException()

    await _check_address(db, address_id, client_id)
    await _check_products(db, ctx.items)

    config = await get_config(db)
    drafts = preview(ctx.items, config.tax_rate)

    orders: List[OrderDB] = []
    inserted_ids = []
    cart_items = list(ctx.items)
    try:
        for draft in drafts:
            order = OrderDB(
                client_id=client_id,
                commerce_id=draft.commerce_id,
                address_id=address_id,
                items=[
                    OrderItemDB(product_id=item.product_id, quantity=item.quantity)
                    for item in draft.items
                ],
                subtotal=draft.subtotal,
                tax_rate=draft.tax_rate,
                tax_amount=draft.tax_amount,
                total=draft.total,
            )
            result = await db.orders.insert_one(to_document(order))
            inserted_ids.append(result.inserted_id)
            order.id = str(result.inserted_id)
            orders.append(order)
        await clear_cart(db, ctx)
    except PyMongoError:
        logger.exception("Order creation failed, rolling back", extra={"client_id": client_id})
        if inserted_ids:
            await db.orders.delete_many({"_id": {"$in": inserted_ids}})
        ctx.items = cart_items
        raise

    logger.info("Orders created", extra={
        "client_id": client_id,
        "order_ids": [order.id for order in orders],
    })
    return orders
