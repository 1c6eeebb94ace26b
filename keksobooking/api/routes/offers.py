from __future__ import annotations

from typing import Any, Iterator, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import StreamingResponse
from pydantic import BaseModel
from starlette.datastructures import UploadFile

from keksobooking.api.deps import get_offer_service
from keksobooking.core.config import settings
from keksobooking.core.errors import INVALID_CATEGORY, ValidationError, Violation
from keksobooking.db import models
from keksobooking.services.attachments import extract_attachments
from keksobooking.services.normalizer import BIGINT_RANGE
from keksobooking.services.offers import OfferService
from keksobooking.services.types import ListingParams, StoredImage

router = APIRouter(prefix="/offers", tags=["offers"])

AVATAR_MEDIA_TYPE = "image/png"
BIGINT_MAX = BIGINT_RANGE[1]


class LocationOut(BaseModel):
    x: int | None = None
    y: int | None = None


class AttachmentOut(BaseModel):
    name: str
    mimetype: str


class OfferOut(BaseModel):
    id: UUID
    date: int
    title: str
    type: str
    name: str
    price: int
    rooms: int
    guests: int
    address: str
    location: LocationOut | None = None
    checkin: str
    checkout: str
    features: list[str] = []
    description: str | None = None
    avatar: AttachmentOut | None = None
    preview: AttachmentOut | None = None

    @classmethod
    def from_record(cls, offer: models.Offer) -> "OfferOut":
        return cls(
            id=offer.id,
            date=offer.date,
            title=offer.title,
            type=offer.type,
            name=offer.name,
            price=offer.price,
            rooms=offer.rooms,
            guests=offer.guests,
            address=offer.address,
            location=LocationOut(x=offer.location_x, y=offer.location_y),
            checkin=offer.checkin,
            checkout=offer.checkout,
            features=offer.features or [],
            description=offer.description,
            avatar=AttachmentOut(**offer.avatar) if offer.avatar else None,
            preview=AttachmentOut(**offer.preview) if offer.preview else None,
        )


async def _read_submission(request: Request) -> tuple[dict[str, Any], dict[str, list[Any]]]:
    """Split a JSON or multipart body into scalar fields and uploaded files."""

    content_type = request.headers.get("content-type", "")
    if content_type.startswith("application/json"):
        try:
            body = await request.json()
        except ValueError:
            body = None
        if not isinstance(body, dict):
            raise ValidationError(
                [Violation("body", INVALID_CATEGORY, "request body must be a JSON object")]
            )
        return body, {}

    form = await request.form()
    submission: dict[str, Any] = {}
    files: dict[str, list[Any]] = {}
    for key in form.keys():
        values = form.getlist(key)
        uploads = [value for value in values if isinstance(value, UploadFile)]
        scalars = [value for value in values if not isinstance(value, UploadFile)]
        if uploads:
            files[key] = uploads
        if scalars:
            submission[key] = scalars[0] if len(scalars) == 1 else scalars
    return submission, files


def _iter_image(image: StoredImage) -> Iterator[bytes]:
    try:
        yield from image.chunks
    finally:
        image.close()


@router.get("", response_model=list[OfferOut], summary="List offers, newest first")
async def list_offers(
    limit: Optional[int] = Query(default=None, ge=1, le=BIGINT_MAX),
    skip: int = Query(default=0, ge=0, le=BIGINT_MAX),
    service: OfferService = Depends(get_offer_service),
) -> list[OfferOut]:
    params = ListingParams(limit=limit or settings.offers_default_limit, skip=skip)
    offers = await service.list_offers(params)
    return [OfferOut.from_record(offer) for offer in offers]


@router.get("/{key}", response_model=OfferOut, summary="Get an offer by its date key")
async def get_offer(key: str, service: OfferService = Depends(get_offer_service)) -> OfferOut:
    offer = await service.get_offer(key)
    return OfferOut.from_record(offer)


@router.get("/{key}/avatar", summary="Stream the offer avatar")
async def get_offer_avatar(key: str, service: OfferService = Depends(get_offer_service)) -> StreamingResponse:
    image = await service.open_avatar(key)
    return StreamingResponse(
        _iter_image(image),
        media_type=AVATAR_MEDIA_TYPE,
        headers={"Content-Length": str(image.length)},
    )


@router.post("", response_model=OfferOut, summary="Create an offer with optional avatar and preview")
async def create_offer(request: Request, service: OfferService = Depends(get_offer_service)) -> OfferOut:
    submission, files = await _read_submission(request)
    attachments = extract_attachments(files)
    offer = await service.create_offer(submission, attachments)
    return OfferOut.from_record(offer)
