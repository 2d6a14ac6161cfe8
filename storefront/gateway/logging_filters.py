"""Logging filters for enriching log records with request context.

Adding the filter to a handler enables per-request correlation in logs
without modifying individual log statements.
"""

from logging import Filter, LogRecord

from .middleware import REQUEST_ID_CTX


class RequestIdFilter(Filter):
    """Attach a ``request_id`` attribute to log records.

    The value is retrieved from the ``REQUEST_ID_CTX`` ContextVar set by the
    request-id middleware. Outside a request a hyphen ("-") is used so
    formatters can reliably reference ``%(request_id)s``.
    """

    def filter(self, record: LogRecord) -> bool:
        if not getattr(record, "request_id", None):
            record.request_id = REQUEST_ID_CTX.get()
        return True
