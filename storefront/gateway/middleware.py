"""HTTP middlewares that assign a request identifier and cap payload size.

Every incoming request receives a request identifier. It is read from the
incoming ``X-Request-ID`` header when the client provides one, or generated
server-side otherwise. The id is stored on ``request.state`` and in a
context variable so code running downstream (log filters, the payments
HTTP client) can access it without passing it explicitly.

Behavior contract:
- If the incoming request contains ``X-Request-ID``, that value is reused.
- Otherwise a new UUIDv4 is generated.
- The response carries the same id in the ``X-Request-ID`` header.
"""

import contextvars
import logging
import uuid

from fastapi import Request
from fastapi.responses import JSONResponse

from .. import settings

REQUEST_ID_CTX = contextvars.ContextVar("request_id", default="-")

HEADER = "X-Request-ID"

logger = logging.getLogger(__name__)


async def add_request_id(request: Request, call_next):
    """Populate ``request.state.request_id`` and the context var, echo the header."""
    rid = request.headers.get(HEADER) or str(uuid.uuid4())
    request.state.request_id = rid
    token = REQUEST_ID_CTX.set(rid)
    try:
        response = await call_next(request)
        logger.info(
            "request handled",
            extra={"path": request.url.path, "method": request.method, "status": response.status_code},
        )
    finally:
        REQUEST_ID_CTX.reset(token)
    response.headers[HEADER] = rid
    return response


async def api_size_limit(request: Request, call_next):
    """Reject ``/api/`` requests whose declared body exceeds ``API_MAX_BYTES``."""
    if request.url.path.startswith("/api/"):
        clen = request.headers.get("content-length")
        if clen and clen.isdigit() and int(clen) > getattr(settings, "API_MAX_BYTES", 1024 * 1024):
            return JSONResponse({"detail": "PAYLOAD_TOO_LARGE"}, status_code=413)
    return await call_next(request)
