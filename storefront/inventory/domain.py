"""Value objects exchanged with the inventory ledger."""

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Tuple
import uuid


class ReservationStatus(str, Enum):
    RESERVED = "RESERVED"
    COMMITTED = "COMMITTED"
    RELEASED = "RELEASED"


@dataclass(frozen=True)
class StockRequest:
    """Quantity of one product to reserve."""

    product_id: int
    quantity: int


@dataclass(frozen=True)
class ReservationToken:
    """Handle returned by a successful reservation.

    Attributes:
        id: Token id, persisted in ``stock_reservations``.
        lines: Reserved ``StockRequest`` objects, ascending product id.
        expires_at: After this instant the sweeper may release the token.
    """

    id: uuid.UUID
    lines: Tuple[StockRequest, ...]
    expires_at: datetime
    status: ReservationStatus = ReservationStatus.RESERVED

    @property
    def total_units(self) -> int:
        return sum(line.quantity for line in self.lines)


@dataclass(frozen=True)
class ProductInfo:
    """Read-only catalog view of a product."""

    id: int
    name: str
    sku: str
    price: Decimal
    stock_quantity: int
    is_active: bool
