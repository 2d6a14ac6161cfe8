"""HTTP views for the orders API.

Views are kept intentionally small: they validate requests (via Pydantic),
map them to domain calls on the wired ``Services`` and return a response.
Errors raised by the services are turned into responses by the app-level
exception handler.

Identity is set by the upstream auth gateway in the ``X-User-Id``,
``X-User-Email`` and ``X-User-Roles`` headers and trusted as is.

Idempotency: when an ``Idempotency-Key`` header is provided, the create
endpoints process the first request and store its response. Retries with
the same payload return the stored response and status with
``Idempotent-Replay: true``. Reusing the key with a different payload
returns HTTP 409.
"""

from datetime import datetime
import logging
from typing import Callable, Optional
import uuid

from fastapi import APIRouter, Depends, Header, Query, Request
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse

from ..errors import Forbidden, NotAuthenticated, StorefrontError, UpstreamUnavailable, ValidationFailed
from ..gateway.errors import error_body, status_for
from .domain import AuthenticatedUser, Order, OrderStatus
from .idempotency import finalize, get_or_create_idempotent
from .providers import Services
from .reports import OrderSearchFilters, Page
from .schemas import (
    ActionRequiredOut,
    BulkShipIn,
    BulkShipOut,
    CancelOrderIn,
    CreateGuestOrderIn,
    CreateOrderIn,
    OrderOut,
    OrderPageOut,
    OrderSummaryOut,
    RevenueReportOut,
    StatisticsOut,
    StatusHistoryOut,
    UpdateStatusIn,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/orders", tags=["orders"])


# ---- dependencies ----


def get_services(request: Request) -> Services:
    return request.app.state.services


def current_user(
    x_user_id: Optional[str] = Header(default=None),
    x_user_email: Optional[str] = Header(default=None),
    x_user_roles: Optional[str] = Header(default=None),
) -> AuthenticatedUser:
    if not x_user_id:
        raise NotAuthenticated("Authentication required")
    try:
        user_id = int(x_user_id)
    except ValueError:
        raise NotAuthenticated("Invalid user id header") from None
    roles = tuple(r.strip().upper() for r in (x_user_roles or "").split(",") if r.strip())
    return AuthenticatedUser(user_id=user_id, email=(x_user_email or "").strip(), roles=roles)


def admin_user(user: AuthenticatedUser = Depends(current_user)) -> AuthenticatedUser:
    if not user.is_admin:
        raise Forbidden("Administrator role required")
    return user


def _order_body(order: Order) -> dict:
    return jsonable_encoder(OrderOut.from_domain(order))


def _page_body(page: Page) -> OrderPageOut:
    return OrderPageOut(
        count=page.total,
        page=page.page,
        page_size=page.page_size,
        pages=page.pages,
        results=[OrderSummaryOut.from_domain(o) for o in page.items],
    )


def _idempotent_create(
    svc: Services,
    idem_key: Optional[str],
    payload: dict,
    create: Callable[[], Order],
) -> JSONResponse:
    """Run ``create`` once per ``Idempotency-Key`` and replay its response."""
    rec = None
    if idem_key:
        existing, rec = get_or_create_idempotent(svc.db, idem_key, payload)
        if existing:
            resp = JSONResponse(rec.response_body, status_code=rec.response_status or 200)
            resp.headers["Idempotent-Replay"] = "true"
            return resp

    try:
        order = create()
    except StorefrontError as e:
        if rec:
            finalize(svc.db, rec, status_for(e), error_body(e))
        raise
    except Exception as e:
        logger.exception("order creation failed", extra={"idempotency_key": idem_key})
        err = UpstreamUnavailable("Order could not be processed")
        if rec:
            finalize(svc.db, rec, status_for(err), error_body(err))
        raise err from e

    body = _order_body(order)
    if rec:
        finalize(svc.db, rec, 201, body, order_id=order.id)
    return JSONResponse(body, status_code=201)


# ---- checkout ----


@router.post("/", status_code=201)
def create_order(
    payload: CreateOrderIn,
    user: AuthenticatedUser = Depends(current_user),
    svc: Services = Depends(get_services),
    idempotency_key: Optional[str] = Header(default=None),
):
    """Check out the caller's cart.

    Returns:
        - 201 with the confirmed order.
        - 200/original status with the stored body on an idempotent replay.
        - 400 for validation errors, 402 when the payment fails, 404 for an
          unknown address, 409 on an idempotency conflict, 422 for business
          rule violations (empty cart, insufficient stock, ...), 503 when
          the payments service is unavailable, 504 on placement timeout.
    """
    key_payload = {"user_id": user.user_id, **payload.model_dump(mode="json")}
    return _idempotent_create(
        svc,
        idempotency_key,
        key_payload,
        lambda: svc.placement.place_order(user, payload.shipping_address_id, payload.payment_method, payload.notes),
    )


@router.post("/guest", status_code=201)
def create_guest_order(
    payload: CreateGuestOrderIn,
    svc: Services = Depends(get_services),
    idempotency_key: Optional[str] = Header(default=None),
):
    return _idempotent_create(
        svc,
        idempotency_key,
        {"guest": True, **payload.model_dump(mode="json")},
        lambda: svc.placement.place_guest_order(
            email=payload.email,
            first_name=payload.first_name,
            last_name=payload.last_name,
            shipping_address=payload.shipping_address.to_domain(),
            payment_method=payload.payment_method,
            items=[(i.product_id, i.quantity) for i in payload.items],
            notes=payload.notes,
        ),
    )


# ---- admin (declared before /{order_id} so the paths do not collide) ----


@router.put("/admin/bulk/ship", response_model=BulkShipOut)
def bulk_ship(payload: BulkShipIn, _: AuthenticatedUser = Depends(admin_user), svc: Services = Depends(get_services)):
    result = svc.lifecycle.mark_orders_as_shipped(payload.order_ids)
    return BulkShipOut(
        shipped=[OrderSummaryOut.from_domain(o) for o in result.shipped],
        failures=result.failures,
    )


@router.put("/admin/{order_id}/status")
def admin_update_status(
    order_id: uuid.UUID,
    payload: UpdateStatusIn,
    _: AuthenticatedUser = Depends(admin_user),
    svc: Services = Depends(get_services),
):
    return _order_body(svc.lifecycle.update_status(order_id, payload.status, payload.notes))


@router.put("/admin/{order_id}/cancel")
def admin_cancel(
    order_id: uuid.UUID,
    payload: CancelOrderIn,
    _: AuthenticatedUser = Depends(admin_user),
    svc: Services = Depends(get_services),
):
    return _order_body(svc.lifecycle.cancel_order(order_id, payload.reason))


@router.get("/admin/reports/revenue", response_model=RevenueReportOut)
def revenue_report(
    start: datetime,
    end: datetime,
    _: AuthenticatedUser = Depends(admin_user),
    svc: Services = Depends(get_services),
):
    r = svc.queries.revenue_report(start.replace(tzinfo=None), end.replace(tzinfo=None))
    return RevenueReportOut(**r.__dict__)


@router.get("/admin/statistics", response_model=StatisticsOut)
def statistics(_: AuthenticatedUser = Depends(admin_user), svc: Services = Depends(get_services)):
    st = svc.queries.statistics()
    return StatisticsOut(
        total_orders=st.total_orders,
        pending_orders=st.counts[OrderStatus.PENDING],
        confirmed_orders=st.counts[OrderStatus.CONFIRMED],
        shipped_orders=st.counts[OrderStatus.SHIPPED],
        delivered_orders=st.counts[OrderStatus.DELIVERED],
        cancelled_orders=st.counts[OrderStatus.CANCELLED],
        monthly_revenue=st.monthly_revenue,
        monthly_order_count=st.monthly_order_count,
        average_order_value=st.average_order_value,
    )


@router.get("/admin/requiring-action", response_model=ActionRequiredOut)
def requiring_action(_: AuthenticatedUser = Depends(admin_user), svc: Services = Depends(get_services)):
    a = svc.queries.orders_requiring_action()
    return ActionRequiredOut(
        ready_to_ship=[OrderSummaryOut.from_domain(o) for o in a.ready_to_ship],
        pending_delivery=[OrderSummaryOut.from_domain(o) for o in a.pending_delivery],
        pending_confirmation=[OrderSummaryOut.from_domain(o) for o in a.pending_confirmation],
        total_requiring_action=a.total,
    )


@router.get("/admin/search", response_model=OrderPageOut)
def search_orders(
    status: Optional[str] = None,
    user_id: Optional[int] = None,
    customer_email: Optional[str] = None,
    customer_name: Optional[str] = None,
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
    page: int = Query(default=1, ge=1),
    page_size: Optional[int] = Query(default=None, ge=1),
    _: AuthenticatedUser = Depends(admin_user),
    svc: Services = Depends(get_services),
):
    filters = OrderSearchFilters(
        status=OrderStatus.parse(status) if status else None,
        user_id=user_id,
        customer_email=customer_email,
        customer_name=customer_name,
        start=start.replace(tzinfo=None) if start else None,
        end=end.replace(tzinfo=None) if end else None,
    )
    return _page_body(svc.queries.search(filters, page, page_size))


@router.get("/admin/guest-orders", response_model=OrderPageOut)
def guest_orders(
    email: str,
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
    page: int = Query(default=1, ge=1),
    page_size: Optional[int] = Query(default=None, ge=1),
    _: AuthenticatedUser = Depends(admin_user),
    svc: Services = Depends(get_services),
):
    if not email.strip():
        raise ValidationFailed.for_field("email", "email is required")
    return _page_body(
        svc.queries.guest_orders(
            email,
            start.replace(tzinfo=None) if start else None,
            end.replace(tzinfo=None) if end else None,
            page,
            page_size,
        )
    )


# ---- customer reads ----


@router.get("/", response_model=OrderPageOut)
def list_my_orders(
    status: Optional[str] = None,
    page: int = Query(default=1, ge=1),
    page_size: Optional[int] = Query(default=None, ge=1),
    user: AuthenticatedUser = Depends(current_user),
    svc: Services = Depends(get_services),
):
    parsed = OrderStatus.parse(status) if status else None
    return _page_body(svc.queries.user_orders(user.user_id, parsed, page, page_size))


def _accessible(svc: Services, order_id: uuid.UUID, user: AuthenticatedUser) -> Order:
    order = svc.queries.get_order(order_id)
    if not svc.queries.can_access(order_id, user):
        raise Forbidden("You do not have access to this order")
    return order


@router.get("/{order_id}")
def get_order(order_id: uuid.UUID, user: AuthenticatedUser = Depends(current_user), svc: Services = Depends(get_services)):
    return _order_body(_accessible(svc, order_id, user))


@router.get("/{order_id}/status-history", response_model=list[StatusHistoryOut])
def status_history(
    order_id: uuid.UUID, user: AuthenticatedUser = Depends(current_user), svc: Services = Depends(get_services)
):
    _accessible(svc, order_id, user)
    return [
        StatusHistoryOut(status=e.status.value, status_display_name=e.display_name, timestamp=e.timestamp, notes=e.notes)
        for e in svc.queries.status_history(order_id)
    ]


@router.put("/{order_id}/cancel")
def cancel_my_order(
    order_id: uuid.UUID,
    payload: CancelOrderIn,
    user: AuthenticatedUser = Depends(current_user),
    svc: Services = Depends(get_services),
):
    _accessible(svc, order_id, user)
    return _order_body(svc.lifecycle.cancel_order(order_id, payload.reason))
