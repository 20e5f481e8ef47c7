"""Session cart.

The cart is an ordered list of ``CartItem`` keyed by product id and kept
in the caller's session document. Handlers load it into a ``CartContext``,
apply one action and save it back; every action returns the new subtotal.
"""
import logging
from dataclasses import dataclass, field
from decimal import Decimal
from typing import List, Optional

from motor.motor_asyncio import AsyncIOMotorDatabase

from shared.utils import NotFoundException, ValidationException, str_to_oid
from foodmarket.models import CartItem, D, round_money, to_document

logger = logging.getLogger(__name__)

ACTIONS = ("add", "increment", "decrement", "remove")


@dataclass
class CartContext:
    session_id: str
    items: List[CartItem] = field(default_factory=list)

    def index_of(self, product_id: str) -> Optional[int]:
        for i, item in enumerate(self.items):
            if item.product_id == product_id:
                return i
        return None

    def subtotal(self) -> Decimal:
        return round_money(sum((item.line_total() for item in self.items), Decimal("0")))

    def total_items(self) -> int:
        return sum(item.quantity for item in self.items)

    def is_empty(self) -> bool:
        return not self.items


async def load_cart(db: AsyncIOMotorDatabase, session_id: str) -> CartContext:
    session = await db.sessions.find_one({"_id": session_id}, {"cart": 1})
    items = [CartItem(**item) for item in (session or {}).get("cart", [])]
    return CartContext(session_id=session_id, items=items)


async def save_cart(db: AsyncIOMotorDatabase, ctx: CartContext) -> None:
    cart = [to_document(item, exclude=set()) for item in ctx.items]
    await db.sessions.update_one({"_id": ctx.session_id}, {"$set": {"cart": cart}})


async def clear_cart(db: AsyncIOMotorDatabase, ctx: CartContext) -> None:
    ctx.items = []
    await save_cart(db, ctx)


async def fetch_snapshot(db: AsyncIOMotorDatabase, product_id: str) -> CartItem:
    product = await db.products.find_one({"_id": str_to_oid(product_id)})
    if not product:
        raise NotFoundException("Product not found")

    category_name = "Uncategorized"
    if product.get("category_id"):
        category = await db.categories.find_one({"_id": str_to_oid(product["category_id"])})
        if category:
            category_name = category["name"]

    return CartItem(
        product_id=product_id,
        name=product["name"],
        price=D(product["price"]),
        photo=product.get("photo"),
        category=category_name,
        commerce_id=product["commerce_id"],
        quantity=1,
    )


async def add(db: AsyncIOMotorDatabase, ctx: CartContext, product_id: str) -> Decimal:
    index = ctx.index_of(product_id)
    if index is None:
        ctx.items.append(await fetch_snapshot(db, product_id))
    else:
        ctx.items[index].quantity += 1
    return ctx.subtotal()


def increment(ctx: CartContext, product_id: str) -> Decimal:
    index = ctx.index_of(product_id)
    if index is not None:
        ctx.items[index].quantity += 1
    return ctx.subtotal()


def decrement(ctx: CartContext, product_id: str) -> Decimal:
    index = ctx.index_of(product_id)
    if index is not None:
        item = ctx.items[index]
        if item.quantity <= 1:
            del ctx.items[index]
        else:
            item.quantity -= 1
    return ctx.subtotal()


def remove(ctx: CartContext, product_id: str) -> Decimal:
    ctx.items = [item for item in ctx.items if item.product_id != product_id]
    return ctx.subtotal()


async def apply_action(db: AsyncIOMotorDatabase, ctx: CartContext, action: str, product_id: str) -> Decimal:
    """Run one cart action and persist the result."""
    if action not in ACTIONS:
        raise ValidationException(f"Unknown cart action: {action}")

    if action == "add":
        subtotal = await add(db, ctx, product_id)
    elif action == "increment":
        subtotal = increment(ctx, product_id)
    elif action == "decrement":
        subtotal = decrement(ctx, product_id)
    else:
        subtotal = remove(ctx, product_id)

    await save_cart(db, ctx)
    logger.debug("Cart updated", extra={"action": action, "product_id": product_id})
    return subtotal
