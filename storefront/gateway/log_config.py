import logging

from pythonjsonlogger import jsonlogger

from .. import settings
from .logging_filters import RequestIdFilter

FORMAT = "%(asctime)s %(levelname)s %(name)s %(message)s %(request_id)s"


def configure_logging(level: str | None = None) -> logging.Logger:
    """Install one JSON stream handler on the ``storefront`` logger.

    Calling it again is a no-op, so app factories and tests can both call it.
    """
    logger = logging.getLogger("storefront")
    if not logger.handlers:
        h = logging.StreamHandler()
        h.setFormatter(jsonlogger.JsonFormatter(FORMAT))
        h.addFilter(RequestIdFilter())
        logger.addHandler(h)
    logger.setLevel(level or getattr(settings, "LOG_LEVEL", "INFO"))
    return logger
