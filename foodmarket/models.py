from datetime import datetime
from decimal import Decimal, ROUND_HALF_UP
from enum import Enum
from typing import Optional, List
from pydantic import BaseModel, Field

MONEY = Decimal("0.01")

def D(value) -> Decimal:
    return value if isinstance(value, Decimal) else Decimal(str(value or "0"))

def round_money(value) -> Decimal:
    return D(value).quantize(MONEY, rounding=ROUND_HALF_UP)


class Role(str, Enum):
    CLIENT = "client"
    COMMERCE = "commerce"
    DELIVERY = "delivery"
    ADMIN = "admin"

ROLE_HOMES = {
    Role.CLIENT: "/client/home",
    Role.COMMERCE: "/commerce/home",
    Role.DELIVERY: "/delivery/home",
    Role.ADMIN: "/admin/home",
}

class OrderStatus(str, Enum):
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"

class DeliveryStatus(str, Enum):
    AVAILABLE = "available"
    BUSY = "busy"


class UserDB(BaseModel):
    id: Optional[str] = Field(None, alias="_id")
    first_name: str
    last_name: str = ""
    national_id: Optional[str] = None
    phone: str
    email: str
    username: str
    password_hash: str
    role: Role
    photo: Optional[str] = None
    delivery_status: Optional[DeliveryStatus] = None
    reserved_at: Optional[datetime] = None
    is_active: bool = False
    activation_token: Optional[str] = None
    reset_token: Optional[str] = None
    reset_expires: Optional[datetime] = None
    created_at: datetime = Field(default_factory=datetime.utcnow)

    class Config:
        populate_by_name = True
        use_enum_values = True

class CommerceTypeDB(BaseModel):
    id: Optional[str] = Field(None, alias="_id")
    name: str
    description: Optional[str] = None
    icon: Optional[str] = None
    created_at: datetime = Field(default_factory=datetime.utcnow)

    class Config:
        populate_by_name = True

class CommerceDB(BaseModel):
    # Shares its _id with the owning commerce user
    id: Optional[str] = Field(None, alias="_id")
    name: str
    phone: str
    email: str
    logo: Optional[str] = None
    opens_at: str
    closes_at: str
    commerce_type_id: str
    is_active: bool = False
    created_at: datetime = Field(default_factory=datetime.utcnow)

    class Config:
        populate_by_name = True

class CategoryDB(BaseModel):
    id: Optional[str] = Field(None, alias="_id")
    name: str
    description: Optional[str] = None
    commerce_id: str

    class Config:
        populate_by_name = True

class ProductDB(BaseModel):
    id: Optional[str] = Field(None, alias="_id")
    name: str
    description: Optional[str] = None
    price: Decimal
    photo: Optional[str] = None
    category_id: Optional[str] = None
    commerce_id: str

    class Config:
        populate_by_name = True

class AddressDB(BaseModel):
    id: Optional[str] = Field(None, alias="_id")
    client_id: str
    name: str
    description: str
    created_at: datetime = Field(default_factory=datetime.utcnow)

    class Config:
        populate_by_name = True

class FavoriteDB(BaseModel):
    id: Optional[str] = Field(None, alias="_id")
    client_id: str
    commerce_id: str

    class Config:
        populate_by_name = True

class CartItem(BaseModel):
    product_id: str
    name: str
    price: Decimal  # Snapshot taken when the product was first added
    photo: Optional[str] = None
    category: str = "Uncategorized"
    commerce_id: str
    quantity: int = Field(1, gt=0)

    def line_total(self) -> Decimal:
        return D(self.price) * self.quantity

class FlashMessage(BaseModel):
    category: str
    message: str

class SessionDB(BaseModel):
    id: Optional[str] = Field(None, alias="_id")
    user_id: str
    role: Role
    username: str
    cart: List[CartItem] = []
    flash: List[FlashMessage] = []
    created_at: datetime = Field(default_factory=datetime.utcnow)
    expires_at: datetime

    class Config:
        populate_by_name = True
        use_enum_values = True

class OrderItemDB(BaseModel):
    product_id: str
    quantity: int

class OrderDB(BaseModel):
    id: Optional[str] = Field(None, alias="_id")
    client_id: str
    commerce_id: str
    address_id: str
    items: List[OrderItemDB]
    subtotal: Decimal
    tax_rate: Decimal
    tax_amount: Decimal
    total: Decimal
    status: OrderStatus = OrderStatus.PENDING
    courier_id: Optional[str] = None
    created_at: datetime = Field(default_factory=datetime.utcnow)
    assigned_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    class Config:
        populate_by_name = True
        use_enum_values = True

CONFIG_ID = "global"

class ConfigDB(BaseModel):
    tax_rate: Decimal = Decimal("18")
    delivery_fee: Decimal = Decimal("150")
    delivery_time_minutes: int = 30
    updated_at: Optional[datetime] = None


def to_document(model: BaseModel, exclude: Optional[set] = None) -> dict:
    """Dump a model for Mongo: drop the unset id, store Decimals as floats."""
    doc = model.model_dump(by_alias=True, exclude=exclude or {"id"})
    return _floats(doc)

def _floats(value):
    if isinstance(value, Decimal):
        return float(value)
    if isinstance(value, dict):
        return {k: _floats(v) for k, v in value.items()}
    if isinstance(value, list):
        return [_floats(v) for v in value]
    if isinstance(value, Enum):
        return value.value
    return value

def serialize_doc(doc: Optional[dict]) -> Optional[dict]:
    """Expose a raw Mongo document with a string ``id`` instead of ``_id``."""
    if doc is None:
        return None
    doc = dict(doc)
    if "_id" in doc:
        doc["id"] = str(doc.pop("_id"))
    doc.pop("password_hash", None)
    doc.pop("activation_token", None)
    doc.pop("reset_token", None)
    doc.pop("reset_expires", None)
    return doc
