import pytest

from foodmarket.seed import COMMERCE_TYPES, create_admin, seed_catalog
from foodmarket.settings_store import get_config

pytestmark = pytest.mark.anyio


async def test_seed_catalog_is_repeatable(db):
    await seed_catalog(db)
    await db.config.update_one({"_id": "global"}, {"$set": {"tax_rate": 16.0}})
    await seed_catalog(db)

    assert await db.commerce_types.count_documents({}) == len(COMMERCE_TYPES)
    assert (await get_config(db)).tax_rate == 16


async def test_create_admin(db):
    user_id = await create_admin(db, "root", "Root@Example.com", "secret1", "Root", "", "")
    user = await db.users.find_one({"username": "root"})
    assert str(user["_id"]) == user_id
    assert user["role"] == "admin"
    assert user["is_active"] is True
    assert user["email"] == "root@example.com"

    with pytest.raises(SystemExit):
        await create_admin(db, "root", "other@example.com", "secret1", "Root", "", "")


async def test_create_admin_rejects_short_password(db):
    with pytest.raises(SystemExit):
        await create_admin(db, "root", "root@example.com", "123", "Root", "", "")
    assert await db.users.count_documents({}) == 0
