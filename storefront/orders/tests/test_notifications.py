from decimal import Decimal

from storefront.gateway.middleware import REQUEST_ID_CTX
from storefront.notifications import LoggingNotificationService, NotificationDispatcher
from storefront.orders.domain import Customer, LineSnapshot, Order, ShippingAddress


class RecordingService(LoggingNotificationService):
    def __init__(self):
        super().__init__()
        self.request_ids = []

    def send_order_confirmation(self, order):
        self.request_ids.append(REQUEST_ID_CTX.get())
        super().send_order_confirmation(order)


def _order():
    address = ShippingAddress("1 Main St", "Springfield", "IL", "62701", "US")
    return Order.new(Customer(user_id=1, email="a@example.com"), [LineSnapshot(1, "Mug", "S", Decimal("4"), 1)], address, "USD")


def test_dispatched_notification_keeps_request_id():
    service = RecordingService()
    dispatcher = NotificationDispatcher(service, workers=1)
    token = REQUEST_ID_CTX.set("rid-789")
    try:
        dispatcher.order_confirmed(_order()).result(timeout=2)
    finally:
        REQUEST_ID_CTX.reset(token)
        dispatcher.shutdown(wait=True)

    assert service.request_ids == ["rid-789"]
    assert service.sent[0][0] == "confirmation"


def test_notification_after_shutdown_is_dropped():
    dispatcher = NotificationDispatcher(LoggingNotificationService(), workers=1)
    dispatcher.shutdown(wait=True)
    assert dispatcher.order_confirmed(_order()) is None
