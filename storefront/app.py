"""FastAPI application factory for the storefront order API.

``create_app`` installs JSON logging, the request-id and payload-size
middlewares and the error handlers, mounts the routers and attaches the
wired ``Services`` container to ``app.state``. Tables are created and the
orphan reservation sweeper is started on startup; every worker pool is
shut down on shutdown.
"""

from typing import Optional

from fastapi import FastAPI
from fastapi.exceptions import RequestValidationError

from . import __version__
from .errors import StorefrontError
from .gateway.errors import storefront_error_handler, validation_error_handler
from .gateway.log_config import configure_logging
from .gateway.middleware import add_request_id, api_size_limit
from .monitoring.api import router as monitoring_router
from .orders.providers import Services, build_services
from .orders.views import router as orders_router


def create_app(services: Optional[Services] = None, start_sweeper: bool = True) -> FastAPI:
    configure_logging()
    app = FastAPI(title="Storefront Orders", version=__version__)
    app.state.services = services or build_services()

    # the last registered middleware runs first
    app.middleware("http")(api_size_limit)
    app.middleware("http")(add_request_id)

    app.add_exception_handler(StorefrontError, storefront_error_handler)
    app.add_exception_handler(RequestValidationError, validation_error_handler)

    app.include_router(monitoring_router)
    app.include_router(orders_router)

    @app.on_event("startup")
    def _startup() -> None:
        app.state.services.db.create_all()
        if start_sweeper:
            app.state.services.sweeper.start()

    @app.on_event("shutdown")
    def _shutdown() -> None:
        app.state.services.shutdown()

    return app
