"""Client for the remote payments service.

``HttpPaymentGateway`` implements the payment gateway port over ``httpx``.
Every request carries the caller's ``X-Request-ID`` and an ``Idempotency-Key``
derived from the order reference (or the refunded transaction), so a retry
never charges twice. Transport errors and 5xx responses are retried with
capped exponential backoff; repeated failures trip a shared circuit breaker
that refuses calls until a single probe succeeds.
"""

import threading
import time
from decimal import Decimal
from typing import Callable, Optional

import httpx

from .. import settings
from ..errors import UpstreamUnavailable
from ..gateway.middleware import REQUEST_ID_CTX
from .domain import PaymentMethod, PaymentOutcome, PaymentStatus

# ---- circuit breaker ----


class CircuitBreaker:
    """Per-dependency breaker guarding calls to the payments service.

    ``CLOSED`` lets calls through and counts consecutive failures; reaching
    ``fail_threshold`` trips it to ``OPEN``, where calls are refused with
    ``UpstreamUnavailable``. Once ``reset_timeout`` seconds have passed the
    breaker reports ``HALF_OPEN`` and admits exactly one probe: success
    closes it, failure trips it again.
    """

    def __init__(self, name: str, fail_threshold: int, reset_timeout: float, clock: Callable[[], float] = time.monotonic):
        self.name = name
        self.fail_threshold = fail_threshold
        self.reset_timeout = reset_timeout
        self._clock = clock
        self._lock = threading.RLock()
        self._state = "CLOSED"
        self._consecutive_failures = 0
        self._tripped_at = 0.0
        self._probe_taken = False

    def _trip(self) -> None:
        self._state = "OPEN"
        self._tripped_at = self._clock()
        self._probe_taken = False

    @property
    def state(self) -> str:
        with self._lock:
            if self._state == "OPEN" and self._clock() - self._tripped_at >= self.reset_timeout:
                self._state = "HALF_OPEN"
                self._probe_taken = False
            return self._state

    def before_call(self) -> str:
        """Admit or refuse a call.

        Returns:
            str: The state the call was admitted under.

        Raises:
            UpstreamUnavailable: ``CIRCUIT_OPEN`` while open, or
                ``CIRCUIT_HALF_OPEN_BUSY`` while another probe is running.
        """
        with self._lock:
            current = self.state
            if current == "OPEN":
                raise UpstreamUnavailable("CIRCUIT_OPEN")
            if current == "HALF_OPEN":
                if self._probe_taken:
                    raise UpstreamUnavailable("CIRCUIT_HALF_OPEN_BUSY")
                self._probe_taken = True
            return current

    def on_success(self) -> None:
        with self._lock:
            self._state = "CLOSED"
            self._consecutive_failures = 0
            self._probe_taken = False

    def on_failure(self) -> None:
        with self._lock:
            self._consecutive_failures += 1
            if self._state == "HALF_OPEN":
                self._trip()
            elif self._state == "CLOSED" and self._consecutive_failures >= self.fail_threshold:
                self._trip()

    def on_finish(self) -> None:
        # a probe that ended without a verdict frees the slot
        with self._lock:
            if self._state == "HALF_OPEN":
                self._probe_taken = False


_payments_cb = CircuitBreaker(
    "payments",
    getattr(settings, "HTTP_CIRCUIT_FAIL_THRESHOLD", 5),
    getattr(settings, "HTTP_CIRCUIT_RESET_TIMEOUT", 30.0),
)


# ---- helpers ----


def _request_headers(extra: Optional[dict] = None) -> dict:
    """Outgoing headers: the current request id plus ``extra``."""
    headers: dict[str, str] = {}
    rid = REQUEST_ID_CTX.get()
    if rid and rid != "-":
        headers["X-Request-ID"] = rid
    if extra:
        headers.update(extra)
    return headers


def _retry_policy():
    """``(attempts, backoff_base_seconds)`` from settings."""
    return (
        max(1, getattr(settings, "HTTP_RETRY_MAX", 3)),
        getattr(settings, "HTTP_RETRY_BACKOFF_BASE", 0.15),
    )


def _should_retry(resp: Optional[httpx.Response], exc: Optional[Exception]) -> bool:
    """Retry only on transport exceptions or HTTP 5xx."""
    if exc is not None:
        return True
    if resp is not None and 500 <= resp.status_code < 600:
        return True
    return False


def _json(resp) -> dict:
    try:
        data = resp.json()
    except (AttributeError, ValueError):
        return {}
    return data if isinstance(data, dict) else {}


# ---- adapter ----


class HttpPaymentGateway:
    """Payment gateway port backed by the remote payments service.

    Business mappings:
    - 200 → outcome reported by the service (SUCCESS or PENDING; REFUNDED
      for refunds)
    - 402 or 409 → FAILED; not counted as circuit failures
    """

    def __init__(self, base_url: str | None = None, timeout: float | None = None, breaker: CircuitBreaker | None = None):
        self.base_url = base_url or getattr(settings, "PAYMENTS_BASE_URL")
        self.timeout = timeout or getattr(settings, "HTTP_TIMEOUT_SECS", 5.0)
        self.breaker = breaker or _payments_cb

    def process_payment(self, amount: Decimal, method: PaymentMethod, order_ref: str) -> PaymentOutcome:
        """Charge ``amount`` for ``order_ref``.

        Raises:
            UpstreamUnavailable: If the circuit is open.
            httpx.RequestError: For network/transport errors after retries.
            UpstreamUnavailable: When 5xx responses outlast the retries.
            httpx.HTTPStatusError: For other non-2xx responses.
        """
        payload = {
            "amount": str(amount),
            "currency": getattr(settings, "CURRENCY", "USD"),
            "method": method.value,
            "order_ref": str(order_ref),
        }

        def on_ok(data: dict) -> PaymentOutcome:
            status = PaymentStatus(str(data.get("status", "SUCCESS")).upper())
            return PaymentOutcome(
                status=status,
                transaction_id=data.get("transaction_id"),
                gateway=data.get("gateway") or method.gateway,
                gateway_payment_id=data.get("gateway_payment_id"),
                gateway_response=data.get("gateway_response") or None,
                failure_reason=data.get("failure_reason"),
            )

        def on_declined(data: dict) -> PaymentOutcome:
            return PaymentOutcome.failed(data.get("detail") or "PAYMENT_DECLINED", gateway=method.gateway)

        return self._post("/charge", payload, {"Idempotency-Key": str(order_ref)}, on_ok, on_declined)

    def refund(self, transaction_id: str, amount: Decimal) -> PaymentOutcome:
        payload = {"transaction_id": transaction_id, "amount": str(amount)}

        def on_ok(data: dict) -> PaymentOutcome:
            return PaymentOutcome(status=PaymentStatus.REFUNDED, transaction_id=data.get("refund_id"))

        def on_declined(data: dict) -> PaymentOutcome:
            return PaymentOutcome.failed(data.get("detail") or "REFUND_REJECTED")

        return self._post("/refund", payload, {"Idempotency-Key": f"refund-{transaction_id}"}, on_ok, on_declined)

    def _post(
        self,
        path: str,
        payload: dict,
        extras: dict,
        on_ok: Callable[[dict], PaymentOutcome],
        on_declined: Callable[[dict], PaymentOutcome],
    ) -> PaymentOutcome:
        max_retries, backoff = _retry_policy()
        tries = 0

        state = self.breaker.before_call()
        headers = _request_headers({**extras, "X-Circuit-State": state, "X-Retry-Count": "0"})

        try:
            with httpx.Client(timeout=self.timeout) as client:
                while True:
                    resp = None
                    exc = None
                    try:
                        resp = client.post(f"{self.base_url}{path}", json=payload, headers=headers)
                        if resp.status_code == 200:
                            self.breaker.on_success()
                            return on_ok(_json(resp))
                        if resp.status_code in (402, 409):
                            self.breaker.on_success()  # business outcome, not a circuit failure
                            return on_declined(_json(resp))
                        if not _should_retry(resp, None):
                            resp.raise_for_status()
                    except httpx.RequestError as e:
                        exc = e

                    tries += 1
                    headers["X-Retry-Count"] = str(tries)

                    if tries >= max_retries or not _should_retry(resp, exc):
                        self.breaker.on_failure()
                        if exc:
                            raise exc
                        raise UpstreamUnavailable(f"payments returned {resp.status_code}")

                    time.sleep(min(backoff * 2 ** (tries - 1), getattr(settings, "HTTP_RETRY_MAX_SLEEP", 0.5)))
        finally:
            self.breaker.on_finish()
