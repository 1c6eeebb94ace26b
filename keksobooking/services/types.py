from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import Any, Callable, Iterator, Mapping, Optional
from uuid import UUID

from keksobooking.db import models


@dataclass(frozen=True)
class Location:
    """Coordinates derived from an ``"x,y"`` address; NaN marks an unparsable half."""

    x: float | int
    y: float | int

    def as_record_values(self) -> tuple[Optional[int], Optional[int]]:
        return _finite_or_none(self.x), _finite_or_none(self.y)


def _finite_or_none(value: float | int) -> Optional[int]:
    if isinstance(value, float) and math.isnan(value):
        return None
    return int(value)


@dataclass(frozen=True)
class AttachmentInfo:
    name: str
    mimetype: str

    def as_dict(self) -> dict[str, str]:
        return {"name": self.name, "mimetype": self.mimetype}


@dataclass(frozen=True)
class ListingParams:
    limit: int = 20
    skip: int = 0


@dataclass(frozen=True)
class InsertResult:
    inserted_id: UUID


@dataclass
class StoredImage:
    """An open binary blob; ``close`` must be called once iteration stops."""

    chunks: Iterator[bytes]
    length: int
    close: Callable[[], None] = lambda: None


@dataclass
class OfferDraft:
    """An offer under construction.

    ``raw`` is the submission as received and is never modified; ``fields``
    holds the normalized values the pipeline fills in step by step. Only
    :meth:`build` produces a persistable :class:`models.Offer`.
    """

    raw: Mapping[str, Any]
    fields: dict[str, Any] = field(default_factory=dict)
    avatar: Optional[AttachmentInfo] = None
    preview: Optional[AttachmentInfo] = None
    location: Optional[Location] = None

    def get(self, key: str, default: Any = None) -> Any:
        return self.fields.get(key, default)

    @property
    def name(self) -> Any:
        return self.fields.get("name")

    @property
    def address(self) -> Any:
        return self.fields.get("address")

    def build(self) -> models.Offer:
        location_x, location_y = self.location.as_record_values() if self.location else (None, None)
        description = self.fields.get("description")
        return models.Offer(
            date=self.fields["date"],
            title=self.fields["title"],
            type=self.fields["type"],
            name=self.fields["name"],
            price=self.fields["price"],
            rooms=self.fields["rooms"],
            guests=self.fields["guests"],
            address=self.fields["address"],
            location_x=location_x,
            location_y=location_y,
            checkin=self.fields["checkin"],
            checkout=self.fields["checkout"],
            features=list(self.fields.get("features") or []),
            description=description or None,
            avatar=self.avatar.as_dict() if self.avatar else None,
            preview=self.preview.as_dict() if self.preview else None,
        )
