from __future__ import annotations

from datetime import datetime
from typing import Any, Optional

from fastapi import APIRouter, HTTPException, Query
from pydantic import BaseModel

from keksobooking.core.config import settings
from keksobooking.core.log_buffer import buffer_limits, get_log_entries, get_request_entries

router = APIRouter(prefix="/diagnostics", tags=["diagnostics"])


class BufferedLogEntry(BaseModel):
    timestamp: datetime
    level: str
    logger: str
    message: str
    details: dict[str, Any] | None = None


class BufferedRequest(BaseModel):
    timestamp: datetime
    method: str
    path: str
    status: int
    duration_ms: float
    offer_key: str | None = None


class LogsResponse(BaseModel):
    logs: list[BufferedLogEntry]
    requests: list[BufferedRequest]
    limits: dict[str, int]


def _ensure_dev_environment() -> None:
    if settings.environment.lower() in {"prod", "production"}:
        raise HTTPException(status_code=403, detail="Logs are unavailable in production")


@router.get("/logs", response_model=LogsResponse, summary="Recent log records and offer requests")
def get_logs(
    limit: int = Query(default=50, ge=1, le=500),
    key: Optional[str] = Query(default=None, description="Only requests for this offer key"),
) -> LogsResponse:
    _ensure_dev_environment()
    logs = [
        BufferedLogEntry(
            timestamp=entry.timestamp,
            level=entry.level,
            logger=entry.logger,
            message=entry.message,
            details=entry.details,
        )
        for entry in get_log_entries(limit=limit)
    ]
    requests = [
        BufferedRequest(
            timestamp=entry.timestamp,
            method=entry.method,
            path=entry.path,
            status=entry.status,
            duration_ms=entry.duration_ms,
            offer_key=entry.offer_key,
        )
        for entry in get_request_entries()
        if key is None or entry.offer_key == key
    ]
    return LogsResponse(logs=logs, requests=requests[-limit:], limits=buffer_limits())
