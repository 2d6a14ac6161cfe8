"""Pydantic schemas for the orders API.

Request schemas validate shape only; business rules (stock, address
completeness, transitions) are enforced by the services and reported with
their own error codes. Response schemas are built from domain objects with
``from_domain``. Money is serialized as a two-decimal string.
"""

import re
import uuid
from datetime import datetime
from decimal import Decimal
from typing import List, Optional

from pydantic import BaseModel, Field, field_validator

from ..payments.domain import PaymentMethod, PaymentRecord
from .domain import Order, OrderItem, OrderStatus, ShippingAddress

EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
METHODS = {m.value for m in PaymentMethod}
STATUSES = {s.value for s in OrderStatus}


def _payment_method(v: str) -> str:
    v2 = v.strip().upper()
    if v2 not in METHODS:
        raise ValueError("Unsupported payment method")
    return v2


# ---- Requests ----


class CreateOrderIn(BaseModel):
    """Checkout of the caller's cart.

    Attributes:
        shipping_address_id: Saved address of the caller.
        payment_method: CREDIT_CARD, PAYPAL or CASH_ON_DELIVERY
            (case-insensitive).
        notes: Optional customer note.
    """

    shipping_address_id: int = Field(gt=0)
    payment_method: str
    notes: Optional[str] = Field(default=None, max_length=1000)

    @field_validator("payment_method")
    @classmethod
    def validate_payment_method(cls, v: str) -> str:
        return _payment_method(v)


class GuestItemIn(BaseModel):
    product_id: int = Field(gt=0)
    quantity: int = Field(gt=0)


class GuestAddressIn(BaseModel):
    # blanks are allowed here and reported as ADDRESS_INCOMPLETE
    street: str = Field(default="", max_length=255)
    city: str = Field(default="", max_length=100)
    state: str = Field(default="", max_length=100)
    postal_code: str = Field(default="", max_length=20)
    country: str = Field(default="", max_length=100)

    def to_domain(self) -> ShippingAddress:
        return ShippingAddress(
            street=self.street.strip(),
            city=self.city.strip(),
            state=self.state.strip(),
            postal_code=self.postal_code.strip(),
            country=self.country.strip(),
        )


class CreateGuestOrderIn(BaseModel):
    email: str = Field(max_length=255)
    first_name: str = Field(min_length=1, max_length=100)
    last_name: str = Field(min_length=1, max_length=100)
    shipping_address: GuestAddressIn
    payment_method: str
    items: List[GuestItemIn]
    notes: Optional[str] = Field(default=None, max_length=1000)

    @field_validator("email")
    @classmethod
    def validate_email(cls, v: str) -> str:
        """Validate and normalize the guest email to lowercase.

        Raises:
            ValueError: When the email does not look like an address.
        """
        v2 = v.strip().lower()
        if not EMAIL_RE.match(v2):
            raise ValueError("Invalid email format")
        return v2

    @field_validator("payment_method")
    @classmethod
    def validate_payment_method(cls, v: str) -> str:
        return _payment_method(v)


class UpdateStatusIn(BaseModel):
    status: str
    notes: Optional[str] = Field(default=None, max_length=1000)

    @field_validator("status")
    @classmethod
    def validate_status(cls, v: str) -> str:
        v2 = v.strip().upper()
        if v2 not in STATUSES:
            raise ValueError("Unknown order status")
        return v2


class CancelOrderIn(BaseModel):
    reason: str = Field(min_length=1, max_length=500)


class BulkShipIn(BaseModel):
    order_ids: List[uuid.UUID] = Field(min_length=1)


# ---- Responses ----


class OrderItemOut(BaseModel):
    product_id: int
    product_name: str
    sku: str
    unit_price: Decimal
    quantity: int
    subtotal: Decimal

    @classmethod
    def from_domain(cls, item: OrderItem) -> "OrderItemOut":
        return cls(
            product_id=item.product_id,
            product_name=item.product_name,
            sku=item.sku,
            unit_price=item.unit_price,
            quantity=item.quantity,
            subtotal=item.subtotal,
        )


class PaymentOut(BaseModel):
    method: str
    gateway: str
    status: str
    amount: Decimal
    currency: str
    transaction_id: Optional[str] = None
    failure_reason: Optional[str] = None
    processed_at: Optional[datetime] = None

    @classmethod
    def from_domain(cls, p: PaymentRecord) -> "PaymentOut":
        return cls(
            method=p.method.value,
            gateway=p.gateway,
            status=p.status.value,
            amount=p.amount,
            currency=p.currency,
            transaction_id=p.transaction_id,
            failure_reason=p.failure_reason,
            processed_at=p.processed_at,
        )


class AddressOut(BaseModel):
    street: str
    city: str
    state: str
    postal_code: str
    country: str


class OrderOut(BaseModel):
    id: uuid.UUID
    status: str
    status_display_name: str
    user_id: Optional[int] = None
    customer_email: Optional[str] = None
    guest_email: Optional[str] = None
    guest_first_name: Optional[str] = None
    guest_last_name: Optional[str] = None
    total_amount: Decimal
    currency: str
    shipping_address: AddressOut
    items: List[OrderItemOut]
    payment: Optional[PaymentOut] = None
    order_date: Optional[datetime] = None
    shipped_date: Optional[datetime] = None
    delivered_date: Optional[datetime] = None
    notes: Optional[str] = None

    @classmethod
    def from_domain(cls, o: Order) -> "OrderOut":
        c = o.customer
        a = o.shipping_address
        return cls(
            id=o.id,
            status=o.status.value,
            status_display_name=o.status.display_name,
            user_id=c.user_id,
            customer_email=None if c.is_guest else c.email,
            guest_email=c.guest.email if c.guest else None,
            guest_first_name=c.guest.first_name if c.guest else None,
            guest_last_name=c.guest.last_name if c.guest else None,
            total_amount=o.total_amount,
            currency=o.currency,
            shipping_address=AddressOut(
                street=a.street, city=a.city, state=a.state, postal_code=a.postal_code, country=a.country
            ),
            items=[OrderItemOut.from_domain(i) for i in o.items],
            payment=PaymentOut.from_domain(o.payment) if o.payment is not None else None,
            order_date=o.order_date,
            shipped_date=o.shipped_date,
            delivered_date=o.delivered_date,
            notes=o.notes,
        )


class OrderSummaryOut(BaseModel):
    id: uuid.UUID
    status: str
    customer: str
    total_amount: Decimal
    currency: str
    item_count: int
    order_date: Optional[datetime] = None

    @classmethod
    def from_domain(cls, o: Order) -> "OrderSummaryOut":
        return cls(
            id=o.id,
            status=o.status.value,
            customer=o.customer.contact_email or o.customer.display_name,
            total_amount=o.total_amount,
            currency=o.currency,
            item_count=o.total_units,
            order_date=o.order_date,
        )


class OrderPageOut(BaseModel):
    count: int
    page: int
    page_size: int
    pages: int
    results: List[OrderSummaryOut]


class StatusHistoryOut(BaseModel):
    status: str
    status_display_name: str
    timestamp: Optional[datetime] = None
    notes: str


class RevenueReportOut(BaseModel):
    start: datetime
    end: datetime
    total_revenue: Decimal
    delivered_revenue: Decimal
    shipped_revenue: Decimal
    total_orders: int
    delivered_orders: int
    shipped_orders: int
    average_order_value: Decimal


class StatisticsOut(BaseModel):
    total_orders: int
    pending_orders: int
    confirmed_orders: int
    shipped_orders: int
    delivered_orders: int
    cancelled_orders: int
    monthly_revenue: Decimal
    monthly_order_count: int
    average_order_value: Decimal


class ActionRequiredOut(BaseModel):
    ready_to_ship: List[OrderSummaryOut]
    pending_delivery: List[OrderSummaryOut]
    pending_confirmation: List[OrderSummaryOut]
    total_requiring_action: int


class BulkShipFailureOut(BaseModel):
    order_id: str
    code: str
    message: str


class BulkShipOut(BaseModel):
    shipped: List[OrderSummaryOut]
    failures: List[BulkShipFailureOut]
