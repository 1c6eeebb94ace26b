"""Error taxonomy for the offers API.

Services raise :class:`NotFoundError` or :class:`ValidationError`; anything
else is treated as unclassified. :func:`build_error_envelope` is the single
mapping from a raised exception to the HTTP status and payload, and the
exception handlers in ``keksobooking.main`` are the only callers.
"""

from __future__ import annotations

from dataclasses import dataclass
from http import HTTPStatus
from typing import Any, Iterable, Mapping, Sequence

from fastapi.exceptions import RequestValidationError
from pydantic import BaseModel, ConfigDict, Field
from starlette.exceptions import HTTPException as StarletteHTTPException

NOT_FOUND_CATEGORY = "no data found"
VALIDATION_MESSAGE = "data validation error"
INTERNAL_CATEGORY = "internal server error"
INTERNAL_MESSAGE = "The server failed to process the request."
MISSING_CATEGORY = "missing field"
INVALID_CATEGORY = "invalid field"

# Parameter sources FastAPI prefixes to error locations.
_REQUEST_SOURCES = ("body", "query", "path", "header", "cookie")


class ErrorEntry(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    error: str
    error_message: str = Field(alias="errorMessage")


class ErrorEnvelope(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    status_code: int = Field(alias="statusCode")
    errors: tuple[ErrorEntry, ...]

    def to_payload(self) -> dict:
        return self.model_dump(by_alias=True, mode="json")


@dataclass(frozen=True)
class Violation:
    """One field-level reason an offer was rejected."""

    field: str
    error: str
    error_message: str

    def to_entry(self) -> ErrorEntry:
        return ErrorEntry(error=self.error, error_message=self.error_message)


class OfferApiError(Exception):
    """Base class for errors that carry their own status and payload."""

    status_code: int = HTTPStatus.INTERNAL_SERVER_ERROR

    def __init__(self, message: str, errors: Iterable[ErrorEntry]) -> None:
        super().__init__(message)
        self.message = message
        self.errors: tuple[ErrorEntry, ...] = tuple(errors)


class NotFoundError(OfferApiError):
    """Raised as soon as a required lookup comes back empty."""

    status_code = HTTPStatus.NOT_FOUND

    def __init__(self, message: str) -> None:
        super().__init__(message, [ErrorEntry(error=NOT_FOUND_CATEGORY, error_message=message)])


class ValidationError(OfferApiError):
    """Raised with every violation found, never just the first one."""

    status_code = HTTPStatus.BAD_REQUEST

    def __init__(self, violations: Sequence[Violation]) -> None:
        self.violations: tuple[Violation, ...] = tuple(violations)
        super().__init__(VALIDATION_MESSAGE, [violation.to_entry() for violation in self.violations])

    @property
    def fields(self) -> list[str]:
        return [violation.field for violation in self.violations]


def _declared_status(exc: BaseException) -> int:
    for attr in ("status_code", "statusCode"):
        value = getattr(exc, attr, None)
        if isinstance(value, int) and not isinstance(value, bool) and 400 <= value <= 599:
            return value
    return HTTPStatus.INTERNAL_SERVER_ERROR


def violations_from_errors(errors: Iterable[Mapping[str, Any]]) -> list[Violation]:
    """Turn pydantic error dicts into violations, one per error, in order.

    Only the top-level field of each error location is kept, so an error on
    ``features[1]`` is reported against ``features``.
    """

    violations: list[Violation] = []
    for item in errors:
        location = [str(part) for part in item.get("loc", ()) if part not in _REQUEST_SOURCES]
        field = location[0] if location else "request"
        if item.get("type") == "missing":
            violations.append(Violation(field, MISSING_CATEGORY, f"'{field}' is required"))
            continue
        message = str(item.get("msg") or "is invalid")
        violations.append(Violation(field, INVALID_CATEGORY, f"'{field}' {message[:1].lower()}{message[1:]}"))
    return violations


def build_error_envelope(exc: BaseException) -> ErrorEnvelope:
    """Map any raised exception onto the public error envelope."""

    if isinstance(exc, OfferApiError):
        return ErrorEnvelope(status_code=int(exc.status_code), errors=exc.errors)

    if isinstance(exc, RequestValidationError):
        return ErrorEnvelope(
            status_code=int(HTTPStatus.BAD_REQUEST),
            errors=[violation.to_entry() for violation in violations_from_errors(exc.errors())],
        )

    if isinstance(exc, StarletteHTTPException):
        try:
            phrase = HTTPStatus(exc.status_code).phrase
        except ValueError:
            phrase = "HTTP error"
        detail = exc.detail if isinstance(exc.detail, str) else phrase
        category = NOT_FOUND_CATEGORY if exc.status_code == HTTPStatus.NOT_FOUND else phrase.lower()
        return ErrorEnvelope(
            status_code=exc.status_code,
            errors=[ErrorEntry(error=category, error_message=detail)],
        )

    return ErrorEnvelope(
        status_code=int(_declared_status(exc)),
        errors=[ErrorEntry(error=INTERNAL_CATEGORY, error_message=INTERNAL_MESSAGE)],
    )


__all__ = [
    "ErrorEntry",
    "ErrorEnvelope",
    "NotFoundError",
    "OfferApiError",
    "ValidationError",
    "Violation",
    "build_error_envelope",
    "violations_from_errors",
]
