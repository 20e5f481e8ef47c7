import logging
from datetime import datetime
from decimal import Decimal, InvalidOperation
from typing import Any, List, Optional, Tuple

from motor.motor_asyncio import AsyncIOMotorDatabase

from shared.utils import ValidationException
from foodmarket.models import CONFIG_ID, ConfigDB, to_document

logger = logging.getLogger(__name__)

MAX_TAX_RATE = Decimal("50")


async def get_config(db: AsyncIOMotorDatabase) -> ConfigDB:
    """Stored configuration merged over the defaults."""
    doc = await db.config.find_one({"_id": CONFIG_ID})
    if not doc:
        return ConfigDB()
    doc.pop("_id", None)
    return ConfigDB(**{k: v for k, v in doc.items() if v is not None})


def _number(value: Any) -> Optional[Decimal]:
    if isinstance(value, bool):
        return None
    try:
        number = Decimal(str(value).strip())
    except (InvalidOperation, ValueError):
        return None
    return number if number.is_finite() else None


def validate_config(payload: dict) -> Tuple[dict, List[str]]:
    """Check every supplied field and return ``(changes, errors)``."""
    errors = []
    changes = {}

    if payload.get("tax_rate") is not None:
        rate = _number(payload["tax_rate"])
        if rate is None:
            errors.append("Tax rate must be a number.")
        elif rate < 0:
            errors.append("Tax rate cannot be negative.")
        elif rate > MAX_TAX_RATE:
            errors.append("Tax rate is too high (maximum 50%).")
        else:
            changes["tax_rate"] = rate

    if payload.get("delivery_fee") is not None:
        fee = _number(payload["delivery_fee"])
        if fee is None or fee < 0:
            errors.append("Delivery fee cannot be negative.")
        else:
            changes["delivery_fee"] = fee

    if payload.get("delivery_time_minutes") is not None:
        minutes = _number(payload["delivery_time_minutes"])
        if minutes is None or minutes <= 0:
            errors.append("Delivery time must be greater than 0.")
        elif minutes != minutes.to_integral_value():
            errors.append("Delivery time must be a whole number of minutes.")
        else:
            changes["delivery_time_minutes"] = int(minutes)

    if not errors and not changes:
        errors.append("Nothing to update.")
    return changes, errors


async def update_config(db: AsyncIOMotorDatabase, payload: dict) -> ConfigDB:
    """Apply an admin change. All-or-nothing: any invalid field rejects the whole update."""
    changes, errors = validate_config(payload)
    if errors:
        raise ValidationException(errors)

    current = await get_config(db)
    updated = current.model_copy(update={**changes, "updated_at": datetime.utcnow()})
    await db.config.update_one(
        {"_id": CONFIG_ID},
        {"$set": to_document(updated, exclude=set())},
        upsert=True,
    )
    logger.info("Config updated", extra={"action": ",".join(sorted(changes))})
    return updated
