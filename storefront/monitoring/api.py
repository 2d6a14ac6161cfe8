import logging

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError

router = APIRouter(tags=["monitoring"])

logger = logging.getLogger(__name__)


@router.get("/health")
def health(request: Request):
    db_ok = False
    try:
        db_ok = request.app.state.services.db.ping()
    except SQLAlchemyError:
        logger.warning("database health check failed", exc_info=True)
        db_ok = False

    ok = db_ok
    code = 200 if ok else 503
    return JSONResponse(
        {"ok": ok, "components": {"db": {"ok": db_ok}}},
        status_code=code,
    )
