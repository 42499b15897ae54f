"""
Database Schemas for the Queueless Canteen

Each document model maps to a collection. The collection name is the
lowercase of the class name (e.g., MenuItem -> "menuitem"); line items
are embedded in their order so an order is always written as one unit.
"""
from datetime import datetime
from enum import Enum
from typing import List, Optional, Literal
from pydantic import BaseModel, ConfigDict, Field

# -----------------------------
# Enumerations
# -----------------------------

class Role(str, Enum):
    STUDENT = "student"
    VENDOR = "vendor"
    ADMIN = "admin"


class OrderStatus(str, Enum):
    PENDING = "Pending"
    PREPARING = "Preparing"
    READY = "Ready"
    COMPLETED = "Completed"

    @property
    def rank(self) -> int:
        return STATUS_SEQUENCE.index(self)


STATUS_SEQUENCE = [
    OrderStatus.PENDING,
    OrderStatus.PREPARING,
    OrderStatus.READY,
    OrderStatus.COMPLETED,
]


class PaymentMethod(str, Enum):
    PAY_ON_PICKUP = "pay_on_pickup"
    RAZORPAY_SIMULATED = "razorpay_simulated"

    @property
    def label(self) -> str:
        return PAYMENT_METHOD_LABELS[self]

    @property
    def requires_confirmation(self) -> bool:
        return self is PaymentMethod.RAZORPAY_SIMULATED


PAYMENT_METHOD_LABELS = {
    PaymentMethod.PAY_ON_PICKUP: "Pay on pickup",
    PaymentMethod.RAZORPAY_SIMULATED: "Razorpay (simulated)",
}

# -----------------------------
# Core Collections
# -----------------------------

class MenuItem(BaseModel):
    id: str = Field(..., description="Stable menu item id")
    name: str = Field(..., description="Dish name")
    category: str = Field(..., description="Category like Snacks, Meals")
    price: int = Field(..., gt=0, description="Price in whole rupees")
    prep_time: int = Field(..., gt=0, description="Preparation time in minutes")
    stock: int = Field(0, ge=0, description="Units left to sell")
    available: bool = Field(True, description="Whether this item is currently on sale")


class OrderLineItem(BaseModel):
    item_id: str = Field(..., description="Menu item id")
    name: str = Field(..., description="Item name at the time of order")
    price: int = Field(..., ge=0, description="Unit price at the time of order")
    qty: int = Field(..., ge=1, description="Quantity ordered")


class Order(BaseModel):
    model_config = ConfigDict(use_enum_values=True)

    id: str
    order_number: str = Field(..., description="Zero-padded display sequence")
    user_id: str
    customer_name: str
    items: List[OrderLineItem] = Field(..., min_length=1)
    total: int = Field(..., ge=0)
    status: OrderStatus = OrderStatus.PENDING
    created_at: datetime
    eta_minutes: int = Field(..., ge=5)
    payment_method: PaymentMethod
    payment_method_label: str
    payment_id: Optional[str] = None
    pickup_token: str
    pickup_token_issued_at: datetime
    pickup_token_redeemed_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None


class PaymentIntent(BaseModel):
    id: str
    user_id: str
    amount: int = Field(..., gt=0)
    currency: str = Field("INR")
    provider: Literal["razorpay_simulated"] = Field("razorpay_simulated")
    status: Literal["created", "paid"] = Field("created")
    created_at: datetime
    paid_at: Optional[datetime] = None
    order_id: Optional[str] = Field(None, description="Order admitted against this payment")


class User(BaseModel):
    model_config = ConfigDict(use_enum_values=True)

    id: str
    name: str
    email: str
    role: Role = Role.STUDENT


class Actor(BaseModel):
    """Resolved identity handed to every core operation."""

    user_id: str
    role: Role
    name: str = ""

# -----------------------------
# Request bodies
# -----------------------------

class RegisterRequest(BaseModel):
    name: str = Field(..., min_length=1)
    email: str = Field(..., min_length=3)
    password: str = Field(..., min_length=1)


class LoginRequest(BaseModel):
    email: str
    password: str


class MenuCreate(BaseModel):
    name: str = Field(..., min_length=1)
    category: str = Field(..., min_length=1)
    price: int = Field(..., gt=0)
    prep_time: int = Field(..., gt=0)
    stock: int = Field(0, ge=0)
    available: bool = True


class MenuUpdate(BaseModel):
    name: Optional[str] = None
    category: Optional[str] = None
    price: Optional[int] = Field(None, gt=0)
    prep_time: Optional[int] = Field(None, gt=0)
    stock: Optional[int] = Field(None, ge=0)
    available: Optional[bool] = None


class StockUpdate(BaseModel):
    stock: Optional[int] = Field(None, ge=0)
    available: Optional[bool] = None


class CartLine(BaseModel):
    item_id: str
    qty: int


class OrderCreate(BaseModel):
    items: List[CartLine] = Field(default_factory=list)
    payment_method: str = PaymentMethod.PAY_ON_PICKUP.value
    payment_id: Optional[str] = None


class OrderStatusUpdate(BaseModel):
    status: str


class PaymentCreate(BaseModel):
    amount: int


class PaymentConfirm(BaseModel):
    payment_id: str = Field(..., min_length=1)


class RedeemRequest(BaseModel):
    token: str = ""

# -----------------------------
# Responses
# -----------------------------

class SessionResponse(BaseModel):
    token: str
    user: User


class OrderView(BaseModel):
    """Order projection returned to clients; pickup token only for its owner."""

    model_config = ConfigDict(use_enum_values=True)

    id: str
    order_number: str
    user_id: str
    customer_name: str
    items: List[OrderLineItem]
    total: int
    status: OrderStatus
    created_at: datetime
    eta_minutes: int
    payment_method: PaymentMethod
    payment_method_label: str
    payment_id: Optional[str] = None
    pickup_token: Optional[str] = None
    pickup_token_issued_at: Optional[datetime] = None
    pickup_token_redeemed_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None


class PaymentResponse(BaseModel):
    payment_id: str
    amount: int
    currency: str
    status: str
