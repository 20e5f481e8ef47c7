"""Bootstrap a fresh database.

Usage:
    python -m foodmarket.seed catalog
    python -m foodmarket.seed create-admin --username admin --email admin@example.com --password secret1
"""
import argparse
import asyncio
import getpass
import logging

from shared.utils import settings, get_db_client, get_password_hash
from shared.logging_config import setup_logging
from shared.security_config import validate_password

from foodmarket.models import CONFIG_ID, CommerceTypeDB, ConfigDB, Role, UserDB, to_document

logger = logging.getLogger(__name__)

COMMERCE_TYPES = [
    CommerceTypeDB(name="Restaurants", description="Fast food, traditional and gourmet", icon="restaurant.png"),
    CommerceTypeDB(name="Supermarkets", description="Groceries and household goods", icon="supermarket.png"),
    CommerceTypeDB(name="Pharmacies", description="Medicines and pharmacy products", icon="pharmacy.png"),
    CommerceTypeDB(name="Bookstores", description="Books, stationery and office supplies", icon="bookstore.png"),
]


async def seed_catalog(db) -> None:
    """Insert the default commerce types and configuration, skipping what already exists."""
    for commerce_type in COMMERCE_TYPES:
        await db.commerce_types.update_one(
            {"name": commerce_type.name},
            {"$setOnInsert": to_document(commerce_type)},
            upsert=True,
        )
    await db.config.update_one(
        {"_id": CONFIG_ID},
        {"$setOnInsert": to_document(ConfigDB())},
        upsert=True,
    )
    logger.info("Catalog seeded", extra={"action": "seed"})


async def create_admin(db, username: str, email: str, password: str, first_name: str, last_name: str, national_id: str) -> str:
    errors = validate_password(password, password)
    if errors:
        raise SystemExit("; ".join(errors))
    if await db.users.find_one({"$or": [{"username": username}, {"email": email.lower()}]}):
        raise SystemExit(f"User {username} already exists")

    user = UserDB(
        first_name=first_name,
        last_name=last_name,
        national_id=national_id,
        phone="",
        email=email.lower(),
        username=username,
        password_hash=get_password_hash(password),
        role=Role.ADMIN,
        is_active=True,
    )
    result = await db.users.insert_one(to_document(user))
    logger.info("Admin created", extra={"user_id": str(result.inserted_id)})
    return str(result.inserted_id)


async def _run(args) -> None:
    client = get_db_client(args.mongo_url)
    db = client[args.database]
    try:
        if args.command == "catalog":
            await seed_catalog(db)
        else:
            password = args.password or getpass.getpass("Admin password: ")
            await create_admin(
                db, args.username, args.email, password,
                args.first_name, args.last_name, args.national_id,
            )
    finally:
        client.close()


def main():
    parser = argparse.ArgumentParser(description="Bootstrap the food marketplace database")
    parser.add_argument("--mongo-url", default=settings.MONGO_URL)
    parser.add_argument("--database", default=settings.DATABASE_NAME)
    commands = parser.add_subparsers(dest="command", required=True)

    commands.add_parser("catalog", help="Create default commerce types and configuration")

    admin = commands.add_parser("create-admin", help="Create an active administrator")
    admin.add_argument("--username", required=True)
    admin.add_argument("--email", required=True)
    admin.add_argument("--password", help="Prompted when omitted")
    admin.add_argument("--first-name", default="Admin")
    admin.add_argument("--last-name", default="")
    admin.add_argument("--national-id", default="")

    args = parser.parse_args()
    setup_logging(settings.SERVICE_NAME, settings.LOG_LEVEL)
    asyncio.run(_run(args))


if __name__ == "__main__":
    main()
