# storefront/schemas.py
from datetime import datetime
from enum import Enum
from typing import Any, List, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    # JSON is camelCase (storefront frontend + Mural), python attributes are snake_case
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# 📦 Заказ
class OrderStatus(str, Enum):
    PENDING = "pending"
    PAID = "paid"
    PAYOUT_PENDING = "payout_pending"
    PAYOUT_COMPLETED = "payout_completed"
    FAILED = "failed"


# forward progression; FAILED sits outside it
STATUS_RANK = {
    OrderStatus.PENDING: 0,
    OrderStatus.PAID: 1,
    OrderStatus.PAYOUT_PENDING: 2,
    OrderStatus.PAYOUT_COMPLETED: 3,
}


def can_transition(current: OrderStatus, new: OrderStatus) -> bool:
    if new == OrderStatus.FAILED:
        return current != OrderStatus.PAYOUT_COMPLETED
    if current == OrderStatus.FAILED:
        return False
    return STATUS_RANK[new] >= STATUS_RANK[current]


class OrderItem(CamelModel):
    id: str
    name: str
    price: float = Field(ge=0)
    quantity: int = Field(ge=1)


class Order(CamelModel):
    id: str
    items: List[OrderItem]
    subtotal: float
    unique_amount: float
    status: OrderStatus = OrderStatus.PENDING
    created_at: datetime
    paid_at: Optional[datetime] = None
    transaction_hash: Optional[str] = None
    payout_id: Optional[str] = None
    payout_status: Optional[str] = None
    cop_amount: Optional[float] = None
    exchange_rate: Optional[float] = None

    @model_validator(mode="after")
    def payout_fields_need_payout_status(self) -> "Order":
        has_payout_fields = any(
            v is not None for v in (self.cop_amount, self.payout_id, self.exchange_rate)
        )
        # FAILED keeps whatever payout details were recorded before the failure
        if has_payout_fields and self.status not in (
            OrderStatus.PAYOUT_PENDING,
            OrderStatus.PAYOUT_COMPLETED,
            OrderStatus.FAILED,
        ):
            raise ValueError(f"payout fields cannot be set on an order with status {self.status.value}")
        return self

    def to_json(self) -> bytes:
        return self.model_dump_json(by_alias=True, exclude_none=True).encode("utf-8")


class OrderCreate(BaseModel):
    # validated by OrderManager so bad items or subtotal give a 400, not a 422
    items: Any = None
    subtotal: Any = None


class OrderList(BaseModel):
    orders: List[Order]


class PaymentInstructions(CamelModel):
    order_id: str
    amount: str
    currency: str
    network: str
    deposit_address: str
    payment_uri: str
    status: OrderStatus


# 🛍️ Товар
class Product(BaseModel):
    id: str
    name: str
    description: str
    price: float
    image: str


# 💸 Mural Pay
class MuralModel(CamelModel):
    # Mural sends amounts and rates sometimes as strings, sometimes as numbers
    model_config = ConfigDict(
        alias_generator=to_camel, populate_by_name=True, extra="allow", coerce_numbers_to_str=True
    )


class MuralTransaction(MuralModel):
    id: str
    status: Optional[str] = None
    type: Optional[str] = None
    amount: Optional[str] = None
    token_symbol: Optional[str] = None
    created_at: Optional[str] = None
    updated_at: Optional[str] = None
    transaction_hash: Optional[str] = None


class MuralPayout(MuralModel):
    id: str
    status: Optional[str] = None
    recipient_amount: Optional[str] = None
    recipient_currency: Optional[str] = None
    sender_amount: Optional[str] = None
    sender_currency: Optional[str] = None
    exchange_rate: Optional[str] = None
    created_at: Optional[str] = None


class FxRate(CamelModel):
    rate: float
    valid_until: Optional[str] = None


# 🔁 Reconciliation results
class WebhookResult(CamelModel):
    received: bool = True
    processed: bool = False
    reason: Optional[str] = None
    order_id: Optional[str] = None
    payout_id: Optional[str] = None
    payout_error: Optional[str] = None
    note: Optional[str] = None


class PollError(CamelModel):
    order_id: str
    error: str


class PollResult(CamelModel):
    checked: int = 0
    matched: int = 0
    message: Optional[str] = None
    order_ids: List[str] = []
    errors: List[PollError] = []
