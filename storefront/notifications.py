"""Customer notifications.

Notifications are fire-and-forget: the dispatcher hands them to a small
worker pool and logs any failure. A failed email never fails the order
operation that triggered it.
"""

import contextvars
import logging
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Callable, List

from . import settings
from .orders.domain import NotificationsPort, Order

logger = logging.getLogger(__name__)


class LoggingNotificationService:
    """Notification port that writes the messages to the log.

    Stands in for the mail service, which lives outside this core.
    """

    def __init__(self):
        self.sent: List[tuple[str, str]] = []

    def send_order_confirmation(self, order: Order) -> None:
        self.sent.append(("confirmation", str(order.id)))
        logger.info(
            "order confirmation sent",
            extra={
                "order_id": str(order.id),
                "email": order.customer.contact_email,
                "total": str(order.total_amount),
            },
        )

    def send_order_status_update(self, order: Order) -> None:
        self.sent.append(("status", str(order.id)))
        logger.info(
            "order status update sent",
            extra={"order_id": str(order.id), "email": order.customer.contact_email, "status": order.status.value},
        )


class NotificationDispatcher:
    """Runs a ``NotificationsPort`` off the request thread.

    Args:
        service: The port that actually delivers messages.
        workers: Pool size; defaults to ``settings.NOTIFICATION_WORKERS``.
    """

    def __init__(self, service: NotificationsPort, workers: int | None = None):
        self.service = service
        self._pool = ThreadPoolExecutor(
            max_workers=workers or getattr(settings, "NOTIFICATION_WORKERS", 2),
            thread_name_prefix="notifications",
        )

    def order_confirmed(self, order: Order) -> Future | None:
        return self._submit(self.service.send_order_confirmation, order, "confirmation")

    def status_changed(self, order: Order) -> Future | None:
        return self._submit(self.service.send_order_status_update, order, "status update")

    def _submit(self, fn: Callable[[Order], None], order: Order, kind: str) -> Future | None:
        try:
            future = self._pool.submit(contextvars.copy_context().run, fn, order)
        except RuntimeError:
            # pool already shut down
            logger.warning("notification dropped", extra={"order_id": str(order.id), "kind": kind})
            return None
        future.add_done_callback(lambda f: self._log_failure(f, order, kind))
        return future

    @staticmethod
    def _log_failure(future: Future, order: Order, kind: str) -> None:
        exc = future.exception()
        if exc is not None:
            logger.error(
                "notification failed",
                extra={"order_id": str(order.id), "kind": kind, "error": repr(exc)},
            )

    def shutdown(self, wait: bool = False) -> None:
        self._pool.shutdown(wait=wait)
