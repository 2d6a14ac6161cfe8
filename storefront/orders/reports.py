"""Read-only order queries and reporting aggregations.

None of these take locks; they read committed state only.
"""

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from decimal import Decimal, ROUND_HALF_UP
from typing import Callable, Dict, List, Optional
import uuid

from sqlalchemy import and_, func, or_, select, true

from .. import settings
from ..db import Database, utcnow
from ..errors import ValidationFailed
from .domain import AuthenticatedUser, Order, OrderStatus, money
from .models import OrderModel
from .repository import OrderRepository

ZERO = Decimal("0.00")


@dataclass(frozen=True)
class RevenueReport:
    start: datetime
    end: datetime
    total_revenue: Decimal
    delivered_revenue: Decimal
    shipped_revenue: Decimal
    total_orders: int
    delivered_orders: int
    shipped_orders: int
    average_order_value: Decimal


@dataclass(frozen=True)
class OrderStatistics:
    total_orders: int
    counts: Dict[OrderStatus, int]
    monthly_revenue: Decimal
    monthly_order_count: int
    average_order_value: Decimal


@dataclass
class ActionRequired:
    """Orders waiting on someone.

    Attributes:
        ready_to_ship: CONFIRMED for longer than the ship threshold.
        pending_delivery: SHIPPED for longer than the delivery threshold.
        pending_confirmation: PENDING for longer than the confirmation
            threshold (usually a stuck placement).
    """

    ready_to_ship: List[Order] = field(default_factory=list)
    pending_delivery: List[Order] = field(default_factory=list)
    pending_confirmation: List[Order] = field(default_factory=list)

    @property
    def total(self) -> int:
        return len(self.ready_to_ship) + len(self.pending_delivery) + len(self.pending_confirmation)


@dataclass(frozen=True)
class StatusHistoryEntry:
    status: OrderStatus
    timestamp: Optional[datetime]
    notes: str

    @property
    def display_name(self) -> str:
        return self.status.display_name


@dataclass(frozen=True)
class OrderSearchFilters:
    status: Optional[OrderStatus] = None
    user_id: Optional[int] = None
    customer_email: Optional[str] = None
    customer_name: Optional[str] = None
    start: Optional[datetime] = None
    end: Optional[datetime] = None


@dataclass(frozen=True)
class Page:
    items: List[Order]
    total: int
    page: int
    page_size: int

    @property
    def pages(self) -> int:
        return (self.total + self.page_size - 1) // self.page_size if self.page_size else 0


def _page_args(page: int, page_size: Optional[int]) -> tuple[int, int]:
    if page_size is None:
        page_size = getattr(settings, "DEFAULT_PAGE_SIZE", 10)
    if page < 1:
        raise ValidationFailed.for_field("page", "page must be 1 or greater")
    if page_size < 1:
        raise ValidationFailed.for_field("page_size", "page_size must be 1 or greater")
    return page, min(page_size, getattr(settings, "MAX_PAGE_SIZE", 100))


class OrderQueries:
    """Reporting and lookup queries over orders."""

    def __init__(self, db: Database, orders: OrderRepository, clock: Callable[[], datetime] = utcnow):
        self.db = db
        self.orders = orders
        self._clock = clock

    # ---- lookups ----

    def get_order(self, order_id: uuid.UUID) -> Order:
        return self.orders.get(order_id)

    def can_access(self, order_id: uuid.UUID, identity: AuthenticatedUser) -> bool:
        """Admins see every order; users see their own and guest orders under their email."""
        if identity.is_admin:
            return True
        with self.db.session() as s:
            found = s.scalar(
                select(OrderModel.id).where(
                    OrderModel.id == order_id,
                    or_(
                        OrderModel.user_id == identity.user_id,
                        func.lower(OrderModel.guest_email) == (identity.email or "").lower(),
                    ),
                )
            )
        return found is not None

    def user_orders(
        self, user_id: int, status: Optional[OrderStatus] = None, page: int = 1, page_size: Optional[int] = None
    ) -> Page:
        return self.search(OrderSearchFilters(status=status, user_id=user_id), page, page_size)

    def guest_orders(
        self,
        email: str,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
        page: int = 1,
        page_size: Optional[int] = None,
    ) -> Page:
        conds = [func.lower(OrderModel.guest_email) == email.strip().lower()]
        if start is not None:
            conds.append(OrderModel.order_date >= start)
        if end is not None:
            conds.append(OrderModel.order_date <= end)
        return self._paginate(conds, page, page_size)

    def search(self, filters: OrderSearchFilters, page: int = 1, page_size: Optional[int] = None) -> Page:
        """Filter orders, newest first.

        ``customer_email`` and ``customer_name`` are case-insensitive
        substring matches over registered and guest customers.
        """
        conds = []
        if filters.status is not None:
            conds.append(OrderModel.status == OrderStatus.parse(filters.status).value)
        if filters.user_id is not None:
            conds.append(OrderModel.user_id == filters.user_id)
        if filters.customer_email:
            pattern = f"%{filters.customer_email.strip().lower()}%"
            conds.append(
                or_(
                    func.lower(OrderModel.customer_email).like(pattern),
                    func.lower(OrderModel.guest_email).like(pattern),
                )
            )
        if filters.customer_name:
            pattern = f"%{filters.customer_name.strip().lower()}%"
            full_name = OrderModel.guest_first_name + " " + OrderModel.guest_last_name
            conds.append(
                or_(
                    func.lower(OrderModel.guest_first_name).like(pattern),
                    func.lower(OrderModel.guest_last_name).like(pattern),
                    func.lower(full_name).like(pattern),
                )
            )
        if filters.start is not None:
            conds.append(OrderModel.order_date >= filters.start)
        if filters.end is not None:
            conds.append(OrderModel.order_date <= filters.end)
        return self._paginate(conds, page, page_size)

    def _paginate(self, conds: list, page: int, page_size: Optional[int]) -> Page:
        page, page_size = _page_args(page, page_size)
        where = and_(*conds) if conds else true()
        with self.db.session() as s:
            total = s.scalar(select(func.count()).select_from(OrderModel).where(where))
            rows = (
                s.execute(
                    select(OrderModel)
                    .where(where)
                    .order_by(OrderModel.order_date.desc(), OrderModel.id)
                    .offset((page - 1) * page_size)
                    .limit(page_size)
                )
                .scalars()
                .all()
            )
            items = self.orders.load_many(s, rows)
        return Page(items=items, total=total or 0, page=page, page_size=page_size)

    def status_history(self, order_id: uuid.UUID) -> List[StatusHistoryEntry]:
        """Timeline derived from the order's timestamps and payment."""
        order = self.orders.get(order_id)
        history = [StatusHistoryEntry(OrderStatus.PENDING, order.order_date, "Order created")]
        reached_confirmation = order.shipped_date is not None or order.status in (
            OrderStatus.CONFIRMED,
            OrderStatus.SHIPPED,
            OrderStatus.DELIVERED,
        )
        if reached_confirmation:
            confirmed_at = order.payment.created_at if order.payment is not None else order.order_date
            history.append(StatusHistoryEntry(OrderStatus.CONFIRMED, confirmed_at, "Order confirmed and payment processed"))
        if order.shipped_date is not None:
            history.append(StatusHistoryEntry(OrderStatus.SHIPPED, order.shipped_date, "Order shipped"))
        if order.delivered_date is not None:
            history.append(StatusHistoryEntry(OrderStatus.DELIVERED, order.delivered_date, "Order delivered"))
        if order.status == OrderStatus.CANCELLED:
            history.append(StatusHistoryEntry(OrderStatus.CANCELLED, order.updated_at, "Order cancelled"))
        return history

    # ---- reports ----

    def revenue_report(self, start: datetime, end: datetime) -> RevenueReport:
        """Revenue of DELIVERED and SHIPPED orders placed between ``start`` and ``end``."""
        if end < start:
            raise ValidationFailed.for_field("end", "end must not be before start")
        with self.db.session() as s:
            rows = s.execute(
                select(OrderModel.status, func.count(), func.coalesce(func.sum(OrderModel.total_amount), 0))
                .where(
                    OrderModel.status.in_([OrderStatus.DELIVERED.value, OrderStatus.SHIPPED.value]),
                    OrderModel.order_date >= start,
                    OrderModel.order_date <= end,
                )
                .group_by(OrderModel.status)
            ).all()
        by_status = {status: (count, money(total)) for status, count, total in rows}
        delivered_n, delivered_rev = by_status.get(OrderStatus.DELIVERED.value, (0, ZERO))
        shipped_n, shipped_rev = by_status.get(OrderStatus.SHIPPED.value, (0, ZERO))
        total_rev = delivered_rev + shipped_rev
        total_n = delivered_n + shipped_n
        average = (total_rev / total_n).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP) if total_n else ZERO
        return RevenueReport(
            start=start,
            end=end,
            total_revenue=total_rev,
            delivered_revenue=delivered_rev,
            shipped_revenue=shipped_rev,
            total_orders=total_n,
            delivered_orders=delivered_n,
            shipped_orders=shipped_n,
            average_order_value=average,
        )

    def statistics(self, now: Optional[datetime] = None) -> OrderStatistics:
        """Counts per status and the revenue report of the current month."""
        now = now or self._clock()
        with self.db.session() as s:
            rows = s.execute(select(OrderModel.status, func.count()).group_by(OrderModel.status)).all()
        counts = {status: 0 for status in OrderStatus}
        for status, count in rows:
            counts[OrderStatus(status)] = count
        start = now.replace(day=1, hour=0, minute=0, second=0, microsecond=0)
        next_month = (start + timedelta(days=32)).replace(day=1)
        report = self.revenue_report(start, next_month - timedelta(microseconds=1))
        return OrderStatistics(
            total_orders=sum(counts.values()),
            counts=counts,
            monthly_revenue=report.total_revenue,
            monthly_order_count=report.total_orders,
            average_order_value=report.average_order_value,
        )

    def orders_requiring_action(self, now: Optional[datetime] = None) -> ActionRequired:
        now = now or self._clock()
        ship_cutoff = now - timedelta(days=getattr(settings, "READY_TO_SHIP_AFTER_DAYS", 3))
        delivery_cutoff = now - timedelta(days=getattr(settings, "PENDING_DELIVERY_AFTER_DAYS", 7))
        confirm_cutoff = now - timedelta(hours=getattr(settings, "PENDING_CONFIRMATION_AFTER_HOURS", 24))
        with self.db.session() as s:

            def fetch(*conds) -> List[Order]:
                rows = s.execute(select(OrderModel).where(*conds).order_by(OrderModel.order_date)).scalars().all()
                return self.orders.load_many(s, rows)

            return ActionRequired(
                ready_to_ship=fetch(
                    OrderModel.status == OrderStatus.CONFIRMED.value, OrderModel.order_date < ship_cutoff
                ),
                pending_delivery=fetch(
                    OrderModel.status == OrderStatus.SHIPPED.value, OrderModel.shipped_date < delivery_cutoff
                ),
                pending_confirmation=fetch(
                    OrderModel.status == OrderStatus.PENDING.value, OrderModel.order_date < confirm_cutoff
                ),
            )
