import math
from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, validator


ORDER_TYPES = ("delivery", "pickup", "local")
PAYMENT_METHODS = ("credit", "debit", "pix", "cash")
ORDER_STATUSES = (
    "pending",
    "accepted",
    "reserved",
    "ready",
    "completed",
    "cancelled",
    "deleted",
    "awaiting-payment",
)
PAYMENT_STATUSES = ("pending", "paid", "paid_online", "refunded")
USER_ROLES = ("admin", "customer")


def _as_text(v: Any) -> str:
    # ассистент иногда присылает номер дома или телефон числом
    if v is None:
        return ""
    if isinstance(v, (int, float)) and not isinstance(v, bool):
        return str(v)
    return v


def _require_text(v: str, field: str) -> str:
    if not v or len(v.strip()) == 0:
        raise ValueError(f"{field} cannot be empty")
    return v.strip()


def _require_amount(v: float, field: str) -> float:
    # json.loads и pydantic пропускают NaN и Infinity
    if not math.isfinite(v):
        raise ValueError(f"{field} must be a finite number")
    if v < 0:
        raise ValueError(f"{field} cannot be negative")
    return round(v, 2)


class UserCreate(BaseModel):
    username: str
    password: str
    role: str = "customer"

    @validator("username")
    def validate_username(cls, v: str) -> str:
        v = _require_text(v, "Username")
        if len(v) < 3:
            raise ValueError("Username must be at least 3 characters")
        if len(v) > 50:
            raise ValueError("Username cannot exceed 50 characters")
        return v

    @validator("password")
    def validate_password(cls, v: str) -> str:
        if not v or len(v) == 0:
            raise ValueError("Password cannot be empty")
        if len(v) < 4:
            raise ValueError("Password must be at least 4 characters")
        return v

    @validator("role")
    def validate_role(cls, v: str) -> str:
        if v not in USER_ROLES:
            raise ValueError("Role must be either 'admin' or 'customer'")
        return v


class UserResponse(BaseModel):
    id: int
    username: str
    role: str

    class Config:
        from_attributes = True


class UserLogin(BaseModel):
    username: str
    password: str


class RoleUpdate(BaseModel):
    role: str

    @validator("role")
    def validate_role(cls, v: str) -> str:
        if v not in USER_ROLES:
            raise ValueError("Role must be either 'admin' or 'customer'")
        return v


class PasswordChange(BaseModel):
    new_password: str

    @validator("new_password")
    def validate_new_password(cls, v: str) -> str:
        if not v or len(v) == 0:
            raise ValueError("Password cannot be empty")
        if len(v) < 4:
            raise ValueError("Password must be at least 4 characters")
        return v


class OrderDetails(BaseModel):
    name: str
    phone: str
    orderType: str
    neighborhood: str = ""
    street: str = ""
    number: str = ""
    complement: str = ""
    paymentMethod: Optional[str] = None
    changeNeeded: bool = False
    changeAmount: str = ""
    notes: str = ""
    deliveryFee: float = 0

    @validator("name", "phone", "neighborhood", "street", "number", "complement", "changeAmount", "notes", pre=True)
    def coerce_text(cls, v):
        return _as_text(v)

    @validator("name")
    def validate_name(cls, v: str) -> str:
        return _require_text(v, "name")

    @validator("phone")
    def validate_phone(cls, v: str) -> str:
        return _require_text(v, "phone")

    @validator("orderType")
    def validate_order_type(cls, v: str) -> str:
        if v not in ORDER_TYPES:
            raise ValueError(f"orderType must be one of {', '.join(ORDER_TYPES)}")
        return v

    @validator("paymentMethod")
    def validate_payment_method(cls, v: Optional[str]) -> Optional[str]:
        if v is not None and v not in PAYMENT_METHODS:
            raise ValueError(f"paymentMethod must be one of {', '.join(PAYMENT_METHODS)}")
        return v

    @validator("changeNeeded", pre=True)
    def coerce_change_needed(cls, v):
        return False if v is None else v

    @validator("deliveryFee", pre=True)
    def coerce_delivery_fee(cls, v):
        return 0 if v in (None, "") else v

    @validator("deliveryFee")
    def validate_delivery_fee(cls, v: float) -> float:
        return _require_amount(v, "deliveryFee")


class CartItem(BaseModel):
    productId: str
    name: str
    size: str
    price: float
    quantity: int

    @validator("productId", "name", "size", pre=True)
    def coerce_text(cls, v):
        return _as_text(v)

    @validator("productId")
    def validate_product_id(cls, v: str) -> str:
        return _require_text(v, "productId")

    @validator("name")
    def validate_name(cls, v: str) -> str:
        return _require_text(v, "name")

    @validator("price")
    def validate_price(cls, v: float) -> float:
        return _require_amount(v, "price")

    @validator("quantity")
    def validate_quantity(cls, v: int) -> int:
        if v <= 0:
            raise ValueError("Quantity must be greater than 0")
        if v > 100:
            raise ValueError("Quantity cannot exceed 100")
        return v


class ReservationDetails(BaseModel):
    name: str
    phone: str
    reservationDate: str
    reservationTime: str
    numberOfPeople: int
    notes: str = ""

    @validator("name", "phone", "reservationDate", "reservationTime", "notes", pre=True)
    def coerce_text(cls, v):
        return _as_text(v)

    @validator("name")
    def validate_name(cls, v: str) -> str:
        return _require_text(v, "name")

    @validator("phone")
    def validate_phone(cls, v: str) -> str:
        return _require_text(v, "phone")

    @validator("reservationDate")
    def validate_date(cls, v: str) -> str:
        try:
            datetime.strptime(v.strip(), "%Y-%m-%d")
        except ValueError:
            raise ValueError("reservationDate must be in YYYY-MM-DD format")
        return v.strip()

    @validator("reservationTime")
    def validate_time(cls, v: str) -> str:
        return validate_hhmm(v, "reservationTime")

    @validator("numberOfPeople")
    def validate_people(cls, v: int) -> int:
        if v < 1:
            raise ValueError("numberOfPeople must be at least 1")
        return v


def validate_hhmm(v: str, field: str) -> str:
    try:
        datetime.strptime(v.strip(), "%H:%M")
    except ValueError:
        raise ValueError(f"{field} must be in HH:MM format")
    return v.strip()


class CreationResponse(BaseModel):
    orderId: str
    orderNumber: int


class OrderItemResponse(BaseModel):
    productId: str
    name: str
    size: str
    price: float
    quantity: int


class CustomerResponse(BaseModel):
    name: str
    phone: str
    orderType: str
    neighborhood: str = ""
    street: str = ""
    number: str = ""
    complement: str = ""
    reservationDate: Optional[str] = None
    reservationTime: Optional[str] = None


class OrderResponse(BaseModel):
    id: str
    orderNumber: int
    userId: Optional[str] = None
    customer: CustomerResponse
    items: List[OrderItemResponse] = []
    total: Optional[float] = None
    deliveryFee: float = 0
    numberOfPeople: Optional[int] = None
    paymentMethod: Optional[str] = None
    changeNeeded: bool = False
    changeAmount: str = ""
    notes: str = ""
    pickupTimeEstimate: Optional[str] = None
    status: str
    paymentStatus: str
    createdAt: Optional[datetime] = None


class OrderStatusUpdate(BaseModel):
    status: str
    pickupTimeEstimate: Optional[str] = None

    @validator("status")
    def validate_status(cls, v: str) -> str:
        if v not in ORDER_STATUSES:
            raise ValueError(f"status must be one of {', '.join(ORDER_STATUSES)}")
        return v


class PaymentStatusUpdate(BaseModel):
    paymentStatus: str

    @validator("paymentStatus")
    def validate_payment_status(cls, v: str) -> str:
        if v not in PAYMENT_STATUSES:
            raise ValueError(f"paymentStatus must be one of {', '.join(PAYMENT_STATUSES)}")
        return v


class ReservationTimeUpdate(BaseModel):
    reservationTime: str

    @validator("reservationTime")
    def validate_time(cls, v: str) -> str:
        return validate_hhmm(v, "reservationTime")


class ChatMessage(BaseModel):
    role: str
    content: str


class ChatRequest(BaseModel):
    history: List[ChatMessage] = []
    menuData: Optional[Dict[str, Any]] = None
    storeStatus: Optional[Dict[str, Any]] = None


class ActionPayload(BaseModel):
    type: str
    details: Dict[str, Any]
    cart: Optional[List[Dict[str, Any]]] = None


class ChatResponse(BaseModel):
    reply: str
    action: Optional[ActionPayload] = None


class ConfirmRequest(BaseModel):
    action: ActionPayload
    orderId: Optional[str] = None
