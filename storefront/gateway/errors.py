"""Mapping of storefront errors to HTTP responses.

Bodies have the shape ``{"detail": CODE, "message": ..., **extra}``.
"""

from fastapi import Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from ..errors import (
    AddressNotOwned,
    Forbidden,
    IdempotencyConflict,
    InvalidTransition,
    NotAuthenticated,
    NotFound,
    PaymentFailed,
    PlacementTimeout,
    StorefrontError,
    UpstreamUnavailable,
    ValidationFailed,
)

# first match wins; anything else is a 422 business-rule error
_STATUS = (
    (ValidationFailed, 400),
    (NotAuthenticated, 401),
    (PaymentFailed, 402),
    (Forbidden, 403),
    (AddressNotOwned, 403),
    (NotFound, 404),
    (InvalidTransition, 409),
    (IdempotencyConflict, 409),
    (UpstreamUnavailable, 503),
    (PlacementTimeout, 504),
)


def status_for(exc: StorefrontError) -> int:
    for cls, status in _STATUS:
        if isinstance(exc, cls):
            return status
    return 422


def error_body(exc: StorefrontError) -> dict:
    return {"detail": exc.code, "message": exc.message, **exc.extra()}


async def storefront_error_handler(request: Request, exc: StorefrontError) -> JSONResponse:
    return JSONResponse(error_body(exc), status_code=status_for(exc))


async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    errors = [
        {
            "field": ".".join(str(p) for p in err.get("loc", ()) if p != "body"),
            "message": err.get("msg", ""),
        }
        for err in exc.errors()
    ]
    return JSONResponse(
        {"detail": ValidationFailed.code, "message": "Invalid request", "errors": errors},
        status_code=400,
    )
