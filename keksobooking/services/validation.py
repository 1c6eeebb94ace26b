"""Field rules for offer submissions.

The rules live on :class:`OfferIn`; pydantic checks every field on every
submission, so a rejected request reports all of its problems at once.
"""

from __future__ import annotations

import time
from typing import Any, Literal, Optional

from pydantic import BaseModel, Field, field_validator
from pydantic import ValidationError as PydanticValidationError
from pydantic_core import PydanticCustomError

from keksobooking.core.errors import ValidationError, violations_from_errors
from keksobooking.services.normalizer import parse_int
from keksobooking.services.types import OfferDraft

OfferType = Literal["flat", "palace", "house", "bungalo"]
Feature = Literal["dishwasher", "elevator", "conditioner", "parking", "washer", "wifi"]

TIME_PATTERN = r"^([01]\d|2[0-3]):[0-5]\d$"
# Largest millisecond timestamp that survives a round trip through a JSON number.
MAX_DATE = 2**53


def _now_ms() -> int:
    return int(time.time() * 1000)


def _is_blank(value: Any) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


class AttachmentIn(BaseModel):
    name: str = Field(..., min_length=1)
    mimetype: str = Field(..., pattern=r"^image/")


class OfferIn(BaseModel):
    title: str = Field(..., min_length=30, max_length=140)
    type: OfferType
    price: int = Field(..., ge=1, le=100_000)
    address: str = Field(..., min_length=1, max_length=100)
    checkin: str = Field(..., pattern=TIME_PATTERN)
    checkout: str = Field(..., pattern=TIME_PATTERN)
    rooms: int = Field(..., ge=1, le=1000)
    guests: int = Field(..., ge=0, le=1000)
    features: list[Feature] = Field(default_factory=list)
    description: Optional[str] = Field(default=None, max_length=100)
    name: Optional[str] = Field(default=None, min_length=1, max_length=100)
    date: int = Field(default_factory=_now_ms, ge=0, le=MAX_DATE)
    avatar: Optional[AttachmentIn] = None
    preview: Optional[AttachmentIn] = None

    @field_validator("features", mode="before")
    @classmethod
    def wrap_single_feature(cls, value: Any) -> Any:
        return [value] if isinstance(value, str) else value

    @field_validator("features")
    @classmethod
    def reject_repeated_features(cls, value: list[str]) -> list[str]:
        if len(set(value)) != len(value):
            raise PydanticCustomError("repeated_feature", "must not repeat a feature")
        return value

    @field_validator("date", mode="before")
    @classmethod
    def parse_date(cls, value: Any) -> Any:
        return parse_int(value)


def _submitted_values(draft: OfferDraft) -> dict[str, Any]:
    # A field left blank in the raw submission counts as absent, so required
    # fields report as missing and optional ones fall back to their defaults.
    values = {
        key: value
        for key, value in draft.fields.items()
        if key not in ("avatar", "preview") and not _is_blank(draft.raw.get(key))
    }
    for kind in ("avatar", "preview"):
        info = getattr(draft, kind)
        if info is not None:
            values[kind] = info.as_dict()
    return values


def validate_offer(draft: OfferDraft) -> OfferDraft:
    """Check ``draft`` against :class:`OfferIn`.

    Fills in ``date`` and ``features`` defaults, then raises
    :class:`ValidationError` listing every violation, or returns the draft.
    """

    try:
        offer = OfferIn.model_validate(_submitted_values(draft))
    except PydanticValidationError as exc:
        raise ValidationError(violations_from_errors(exc.errors())) from None

    for key, value in offer.model_dump(exclude={"avatar", "preview"}).items():
        if value is None:
            draft.fields.pop(key, None)
        else:
            draft.fields[key] = value
    return draft


__all__ = ["AttachmentIn", "OfferIn", "validate_offer"]
