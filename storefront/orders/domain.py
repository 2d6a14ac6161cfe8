"""Domain models, state machine and ports for orders.

This module contains the dataclasses used as DTOs for orders, the order
status state machine, and protocol definitions (ports) for the external
dependencies the placement saga and lifecycle manager talk to: inventory,
catalog, carts, the address book and notifications.
"""

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal, ROUND_HALF_UP
from enum import Enum
from typing import Dict, Iterable, List, Optional, Protocol, Tuple
import uuid

from ..errors import InvalidTransition, ValidationFailed

CENT = Decimal("0.01")


def money(value) -> Decimal:
    """Quantize a value to two decimals, rounding half up."""
    return Decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)


# ---- Enums ----
class OrderStatus(str, Enum):
    """Enumeration of the possible order statuses.

    DELIVERED and CANCELLED are terminal.
    """

    PENDING = "PENDING"
    CONFIRMED = "CONFIRMED"
    SHIPPED = "SHIPPED"
    DELIVERED = "DELIVERED"
    CANCELLED = "CANCELLED"

    @property
    def display_name(self) -> str:
        return self.value.capitalize()

    @property
    def is_terminal(self) -> bool:
        return not TRANSITIONS[self]

    @classmethod
    def parse(cls, value) -> "OrderStatus":
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).strip().upper())
        except ValueError:
            raise ValidationFailed.for_field("status", f"Unknown order status: {value}") from None


TRANSITIONS: Dict[OrderStatus, frozenset] = {
    OrderStatus.PENDING: frozenset({OrderStatus.CONFIRMED, OrderStatus.CANCELLED}),
    OrderStatus.CONFIRMED: frozenset({OrderStatus.SHIPPED, OrderStatus.CANCELLED}),
    OrderStatus.SHIPPED: frozenset({OrderStatus.DELIVERED}),
    OrderStatus.DELIVERED: frozenset(),
    OrderStatus.CANCELLED: frozenset(),
}


def can_transition(current: OrderStatus, requested: OrderStatus) -> bool:
    return requested in TRANSITIONS[current]


def ensure_transition(current: OrderStatus, requested: OrderStatus, order_id=None) -> None:
    """Raise ``InvalidTransition`` unless ``current -> requested`` is allowed."""
    if not can_transition(current, requested):
        raise InvalidTransition(current, requested, order_id=order_id)


# ---- Value objects ----
@dataclass(frozen=True)
class ShippingAddress:
    """Shipping address copied by value into an order.

    Later edits of the saved address never alter historical orders.
    """

    street: str
    city: str
    state: str
    postal_code: str
    country: str

    REQUIRED = ("street", "city", "state", "postal_code", "country")

    def missing_fields(self) -> List[str]:
        return [name for name in self.REQUIRED if not (getattr(self, name) or "").strip()]

    def is_complete(self) -> bool:
        return not self.missing_fields()


@dataclass(frozen=True)
class AuthenticatedUser:
    """Identity handed over by the auth gateway; trusted as is."""

    user_id: int
    email: str
    roles: Tuple[str, ...] = ()

    @property
    def is_admin(self) -> bool:
        return "ADMIN" in self.roles


@dataclass(frozen=True)
class GuestInfo:
    email: str
    first_name: str
    last_name: str

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()


@dataclass(frozen=True)
class Customer:
    """Who an order belongs to: a registered user or a guest, never both.

    Attributes:
        user_id: Owning user for registered orders.
        email: Contact email of the registered user.
        guest: Guest contact details for guest orders.
    """

    user_id: Optional[int] = None
    email: Optional[str] = None
    guest: Optional[GuestInfo] = None

    def __post_init__(self):
        if (self.user_id is None) == (self.guest is None):
            raise ValidationFailed.for_field("customer", "exactly one of user or guest must be set")

    @classmethod
    def registered(cls, user: AuthenticatedUser) -> "Customer":
        return cls(user_id=user.user_id, email=user.email)

    @classmethod
    def for_guest(cls, email: str, first_name: str, last_name: str) -> "Customer":
        return cls(guest=GuestInfo(email, first_name, last_name))

    @property
    def is_guest(self) -> bool:
        return self.guest is not None

    @property
    def contact_email(self) -> Optional[str]:
        return self.guest.email if self.guest else self.email

    @property
    def display_name(self) -> str:
        if self.guest:
            return self.guest.full_name
        return self.email or f"user {self.user_id}"


@dataclass(frozen=True)
class LineSnapshot:
    """Priced line produced by the snapshot builder at checkout time."""

    product_id: int
    product_name: str
    sku: str
    unit_price: Decimal
    quantity: int

    @property
    def subtotal(self) -> Decimal:
        return money(self.unit_price * self.quantity)


# ---- Entities / DTOs ----
@dataclass(frozen=True)
class OrderItem:
    """A single line item in an order.

    Items are immutable snapshots of the catalog at purchase time, so the
    order stays a durable historical record after price or name changes.
    """

    product_id: int
    product_name: str
    sku: str
    unit_price: Decimal
    quantity: int
    subtotal: Decimal

    @classmethod
    def from_snapshot(cls, line: LineSnapshot) -> "OrderItem":
        return cls(
            product_id=line.product_id,
            product_name=line.product_name,
            sku=line.sku,
            unit_price=money(line.unit_price),
            quantity=line.quantity,
            subtotal=line.subtotal,
        )


@dataclass
class Order:
    """Container for order data.

    Attributes:
        id: Order id, generated before the order is persisted.
        customer: Registered user or guest.
        items: Line item snapshots, in checkout order.
        shipping_address: Address copy.
        total_amount: Sum of line subtotals, two decimals.
        status: Current ``OrderStatus``.
        notes: Append-only audit trail.
        reservation_id: Stock reservation token held for the order.
        payment: The ``PaymentRecord`` of the settlement attempt, when loaded.
    """

    id: uuid.UUID
    customer: Customer
    items: List[OrderItem]
    shipping_address: ShippingAddress
    total_amount: Decimal
    currency: str = "USD"
    status: OrderStatus = OrderStatus.PENDING
    order_date: Optional[datetime] = None
    shipped_date: Optional[datetime] = None
    delivered_date: Optional[datetime] = None
    notes: Optional[str] = None
    reservation_id: Optional[uuid.UUID] = None
    updated_at: Optional[datetime] = None
    payment: Optional[object] = field(default=None, compare=False)

    @classmethod
    def new(
        cls,
        customer: Customer,
        lines: Iterable[LineSnapshot],
        shipping_address: ShippingAddress,
        currency: str,
        notes: Optional[str] = None,
        at: Optional[datetime] = None,
    ) -> "Order":
        items = [OrderItem.from_snapshot(line) for line in lines]
        return cls(
            id=uuid.uuid4(),
            customer=customer,
            items=items,
            shipping_address=shipping_address,
            total_amount=money(sum((i.subtotal for i in items), Decimal("0"))),
            currency=currency,
            order_date=at,
            notes=notes or None,
            updated_at=at,
        )

    @property
    def total_units(self) -> int:
        return sum(i.quantity for i in self.items)

    def append_note(self, note: str) -> None:
        if not note:
            return
        self.notes = f"{self.notes}\n{note}" if self.notes else note


# ---- Ports (DIP) ----
class InventoryPort(Protocol):
    """Port describing the inventory ledger operations used by orders."""

    def reserve(self, items, order_ref: Optional[str] = None, ttl: float | None = None):
        """Reserve the full batch or nothing.

        Returns:
            ReservationToken: Token to commit or release later.

        Raises:
            InsufficientStock: If any item is short.
        """
        raise NotImplementedError()

    def release(self, token, session=None) -> bool:
        raise NotImplementedError()

    def commit(self, token, session=None) -> None:
        raise NotImplementedError()

    def increase_stock(self, product_id: int, quantity: int, session=None) -> None:
        raise NotImplementedError()

    def get_reservation(self, token, session=None):
        """Return the token with its current status, or None."""
        raise NotImplementedError()


class CatalogPort(Protocol):
    """Read path for product name/sku/price/active flag."""

    def get_products(self, product_ids: Iterable[int]) -> Dict[int, object]:
        raise NotImplementedError()


class CartPort(Protocol):
    def get_items(self, user_id: int) -> List[Tuple[int, int]]:
        """Return the user's cart as ``(product_id, quantity)`` pairs."""
        raise NotImplementedError()

    def clear(self, user_id: int, session=None) -> None:
        raise NotImplementedError()


class AddressBookPort(Protocol):
    def validate_user_address(self, user_id: int, address_id: int) -> ShippingAddress:
        """Return a complete address owned by ``user_id``.

        Raises:
            AddressNotFound, AddressNotOwned, AddressIncomplete
        """
        raise NotImplementedError()


class NotificationsPort(Protocol):
    """Fire-and-forget customer notifications."""

    def send_order_confirmation(self, order: Order) -> None:
        raise NotImplementedError()

    def send_order_status_update(self, order: Order) -> None:
        raise NotImplementedError()
