import logging

from fastapi import APIRouter
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from keksobooking.db.session import get_session

router = APIRouter(prefix="/health", tags=["health"])
logger = logging.getLogger(__name__)


@router.get("", summary="Health check")
def healthcheck() -> dict[str, str]:
    database = "ok"
    try:
        with get_session() as session:
            session.execute(text("SELECT 1"))
    except SQLAlchemyError as exc:
        logger.warning("Database health probe failed: %s", exc)
        database = "unavailable"
    return {"status": "ok", "database": database}
