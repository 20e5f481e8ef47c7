from pydantic import BaseModel, Field, EmailStr, field_validator, ValidationInfo
from typing import Optional, List, Any
from decimal import Decimal
from datetime import datetime
from shared.security_config import sanitize_input

from foodmarket.models import Role


class _Sanitized(BaseModel):
    """Strips and HTML-escapes every free-text string field.

    Passwords are left as typed and emails are only stripped; both are
    validated on their own terms.
    """

    @field_validator("*", mode="before")
    @classmethod
    def sanitize_strings(cls, v, info: ValidationInfo):
        if not isinstance(v, str) or info.field_name.startswith("password"):
            return v
        if info.field_name == "email":
            return v.strip()
        return sanitize_input(v)


# --- Auth ---
class LoginRequest(BaseModel):
    identifier: str = Field(..., min_length=1)
    password: str = Field(..., min_length=1)

class LoginResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"
    role: Role
    redirect: str

class ClientRegister(_Sanitized):
    first_name: str = Field(..., min_length=1)
    last_name: str = Field(..., min_length=1)
    phone: str = Field(..., min_length=1)
    email: EmailStr
    username: str = Field(..., min_length=1)
    role: Role = Role.CLIENT
    password: str
    password_confirm: str

    @field_validator("role")
    @classmethod
    def client_or_delivery(cls, v):
        if v not in (Role.CLIENT, Role.DELIVERY):
            raise ValueError("Role must be client or delivery")
        return v

class CommerceRegister(_Sanitized):
    name: str = Field(..., min_length=1)
    phone: str = Field(..., min_length=1)
    email: EmailStr
    username: str = Field(..., min_length=1)
    opens_at: str = Field(..., min_length=1)
    closes_at: str = Field(..., min_length=1)
    commerce_type_id: str = Field(..., min_length=1)
    logo: Optional[str] = None
    password: str
    password_confirm: str

class ForgotPasswordRequest(BaseModel):
    identifier: str = Field(..., min_length=1)

class ResetPasswordRequest(BaseModel):
    password: str
    password_confirm: str

class MeResponse(BaseModel):
    user_id: str
    username: str
    role: Role
    home: str


# --- Cart & orders ---
class CartActionRequest(BaseModel):
    action: str
    product_id: str = Field(..., min_length=1)

class CartItemResponse(BaseModel):
    product_id: str
    name: str
    price: Decimal
    photo: Optional[str] = None
    category: str
    commerce_id: str
    quantity: int

class CartUpdateResponse(BaseModel):
    success: bool = True
    cart: List[CartItemResponse]
    subtotal: Decimal
    total_items: int = Field(..., serialization_alias="totalItems")

class OrderCreate(BaseModel):
    address_id: Optional[str] = None

class OrderCreateResponse(BaseModel):
    success: bool = True
    message: str
    redirect: str
    orders: List[str]

class OrderItemResponse(BaseModel):
    product_id: str
    quantity: int
    name: Optional[str] = None
    photo: Optional[str] = None
    price: Optional[Decimal] = None

class OrderResponse(BaseModel):
    id: str
    client_id: str
    commerce_id: str
    address_id: str
    items: List[OrderItemResponse]
    subtotal: Decimal
    tax_rate: Decimal
    tax_amount: Decimal
    total: Decimal
    status: str
    courier_id: Optional[str] = None
    created_at: datetime
    assigned_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    commerce: Optional[dict] = None
    address: Optional[dict] = None
    client: Optional[dict] = None
    courier: Optional[dict] = None

class OrderDraftResponse(BaseModel):
    commerce_id: str
    commerce_name: Optional[str] = None
    items: List[CartItemResponse]
    subtotal: Decimal
    tax_rate: Decimal
    tax_amount: Decimal
    total: Decimal

class CheckoutSummaryResponse(BaseModel):
    addresses: List[dict]
    orders: List[OrderDraftResponse]
    subtotal: Decimal
    total: Decimal


# --- Client profile, addresses, favorites ---
class ProfileUpdate(_Sanitized):
    first_name: str = Field(..., min_length=1)
    last_name: str = Field(..., min_length=1)
    phone: str = Field(..., min_length=1)
    photo: Optional[str] = None

class AddressIn(_Sanitized):
    name: str = Field(..., min_length=1)
    description: str = Field(..., min_length=1)

class FavoriteAction(BaseModel):
    commerce_id: str = Field(..., min_length=1)
    action: str


# --- Commerce ---
class CommerceProfileUpdate(_Sanitized):
    name: str = Field(..., min_length=1)
    phone: str = Field(..., min_length=1)
    email: EmailStr
    opens_at: str = Field(..., min_length=1)
    closes_at: str = Field(..., min_length=1)
    commerce_type_id: str = Field(..., min_length=1)
    logo: Optional[str] = None

class CategoryIn(_Sanitized):
    name: str = Field(..., min_length=1)
    description: Optional[str] = None

class ProductIn(_Sanitized):
    name: str = Field(..., min_length=1)
    description: Optional[str] = None
    price: Decimal = Field(..., gt=0)
    category_id: Optional[str] = None
    photo: Optional[str] = None


# --- Admin ---
class AdminCreate(_Sanitized):
    first_name: str = Field(..., min_length=1)
    last_name: str = Field(..., min_length=1)
    national_id: str = Field(..., min_length=1)
    phone: str = ""
    email: EmailStr
    username: str = Field(..., min_length=1)
    password: str
    password_confirm: str

class AdminUpdate(_Sanitized):
    first_name: str = Field(..., min_length=1)
    last_name: str = Field(..., min_length=1)
    national_id: str = Field(..., min_length=1)
    email: EmailStr
    username: str = Field(..., min_length=1)
    password: Optional[str] = None
    password_confirm: Optional[str] = None

class CommerceTypeIn(_Sanitized):
    name: str = Field(..., min_length=1)
    description: Optional[str] = None
    icon: Optional[str] = None

class ConfigUpdate(BaseModel):
    # Raw values: bounds are checked together so every problem is reported at once
    tax_rate: Optional[Any] = None
    delivery_fee: Optional[Any] = None
    delivery_time_minutes: Optional[Any] = None

class ConfigResponse(BaseModel):
    tax_rate: Decimal
    delivery_fee: Decimal
    delivery_time_minutes: int
    updated_at: Optional[datetime] = None
