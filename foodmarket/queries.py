"""Read-side helpers shared by the role routers."""
from typing import List, Optional

from bson import ObjectId
from motor.motor_asyncio import AsyncIOMotorDatabase

from foodmarket.models import OrderStatus, serialize_doc
from foodmarket.schemas import OrderResponse


def _oid(value: Optional[str]) -> Optional[ObjectId]:
    return ObjectId(value) if value and ObjectId.is_valid(value) else None


async def favorite_ids(db: AsyncIOMotorDatabase, client_id: str) -> List[str]:
    cursor = db.favorites.find({"client_id": client_id}, {"commerce_id": 1})
    return [fav["commerce_id"] async for fav in cursor]


async def _pick(db: AsyncIOMotorDatabase, collection: str, id: Optional[str], fields: List[str]) -> Optional[dict]:
    oid = _oid(id)
    if oid is None:
        return None
    doc = await db[collection].find_one({"_id": oid}, {f: 1 for f in fields})
    return serialize_doc(doc)


async def populate_order(db: AsyncIOMotorDatabase, order: dict, detail: bool = False) -> OrderResponse:
    """Build the API view of an order, joining the referenced documents."""
    data = serialize_doc(order)
    data["commerce"] = await _pick(db, "commerces", order["commerce_id"], ["name", "logo"])

    if detail:
        data["address"] = await _pick(db, "addresses", order["address_id"], ["name", "description"])
        data["client"] = await _pick(db, "users", order["client_id"], ["first_name", "last_name", "phone"])
        data["courier"] = await _pick(db, "users", order.get("courier_id"), ["first_name", "last_name", "phone"])

        ids = [oid for oid in (_oid(i["product_id"]) for i in order["items"]) if oid]
        products = {
            str(p["_id"]): p
            async for p in db.products.find({"_id": {"$in": ids}}, {"name": 1, "photo": 1, "price": 1})
        }
        items = []
        for item in order["items"]:
            product = products.get(item["product_id"], {})
            items.append({
                **item,
                "name": product.get("name"),
                "photo": product.get("photo"),
                "price": product.get("price"),
            })
        data["items"] = items

    return OrderResponse(**data)


async def list_orders(db: AsyncIOMotorDatabase, query: dict) -> List[OrderResponse]:
    cursor = db.orders.find(query, sort=[("created_at", -1)])
    return [await populate_order(db, order) async for order in cursor]


def status_counts(orders: List[OrderResponse]) -> dict:
    counts = {status.value: 0 for status in OrderStatus}
    for order in orders:
        counts[order.status] = counts.get(order.status, 0) + 1
    counts["total"] = len(orders)
    return counts
