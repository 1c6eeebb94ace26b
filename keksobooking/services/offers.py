from __future__ import annotations

import asyncio
import logging
import random
from typing import Any, Awaitable, Callable, Mapping, Optional, Sequence
from uuid import UUID

from keksobooking.core.errors import NotFoundError
from keksobooking.db import models
from keksobooking.services.attachments import ExtractedAttachments
from keksobooking.services.image_storage import BaseImageStorage
from keksobooking.services.normalizer import (
    BIGINT_RANGE,
    derive_location,
    is_nan,
    normalize_submission,
    parse_int,
)
from keksobooking.services.offer_store import BaseOfferStore
from keksobooking.services.types import ListingParams, OfferDraft, StoredImage
from keksobooking.services.validation import validate_offer

logger = logging.getLogger(__name__)

NAMES = ("Keks", "Pavel", "Nikolay", "Alex", "Ulyana", "Anastasyia", "Julia")


def pick_random_name() -> str:
    return random.choice(NAMES)


async def run_all(labelled: Sequence[tuple[str, Awaitable[Any]]]) -> list[tuple[str, BaseException]]:
    """Await every operation concurrently and return the ones that failed.

    Nothing is cancelled when a sibling fails; the caller decides what to do
    with the failures once all operations have settled.
    """

    if not labelled:
        return []
    outcomes = await asyncio.gather(*(operation for _, operation in labelled), return_exceptions=True)
    return [
        (label, outcome)
        for (label, _), outcome in zip(labelled, outcomes)
        if isinstance(outcome, BaseException)
    ]


class OfferService:
    """Co-ordinates offer reads and the creation pipeline across both stores.

    A record is written before its attachments. If an attachment write fails
    afterwards the record stays in the record store unless
    ``rollback_on_attachment_failure`` is set, in which case a best-effort
    compensating delete of the record and its images runs before the original
    failure is re-raised.
    """

    def __init__(
        self,
        offer_store: BaseOfferStore,
        image_store: BaseImageStorage,
        *,
        name_picker: Callable[[], str] = pick_random_name,
        rollback_on_attachment_failure: bool = False,
    ) -> None:
        self.offer_store = offer_store
        self.image_store = image_store
        self._name_picker = name_picker
        self._rollback_on_attachment_failure = rollback_on_attachment_failure

    async def list_offers(self, params: ListingParams) -> list[models.Offer]:
        return await self.offer_store.get_offers(params)

    async def get_offer(self, key: Any) -> models.Offer:
        date = parse_int(key, BIGINT_RANGE)
        offer = None if is_nan(date) else await self.offer_store.get_offer(date)
        if offer is None:
            raise NotFoundError(f"There is no offer with key {key}")
        return offer

    async def open_avatar(self, key: Any) -> StoredImage:
        offer = await self.get_offer(key)
        image = await self.image_store.get_avatar(offer.id)
        if image is None:
            raise NotFoundError(f"Offer {key} has no avatar")
        return image

    def prepare(self, submission: Mapping[str, Any], attachments: ExtractedAttachments) -> OfferDraft:
        """Run the pure part of the pipeline and return a ready-to-save draft."""

        draft = OfferDraft(raw=submission, fields=normalize_submission(submission))
        attachments.apply_to(draft)
        validate_offer(draft)
        if not draft.name:
            draft.fields["name"] = self._name_picker()
        if draft.address:
            draft.location = derive_location(draft.address)
        return draft

    async def create_offer(
        self,
        submission: Mapping[str, Any],
        attachments: Optional[ExtractedAttachments] = None,
    ) -> models.Offer:
        attachments = attachments or ExtractedAttachments()
        record = self.prepare(submission, attachments).build()

        result = await self.offer_store.save_offer(record)
        record.id = result.inserted_id
        logger.info("Saved offer %s (date=%s)", result.inserted_id, record.date)

        writes: list[tuple[str, Awaitable[None]]] = []
        if attachments.avatar is not None:
            writes.append(("avatar", self.image_store.save_avatar(result.inserted_id, attachments.avatar.source)))
        if attachments.preview is not None:
            writes.append(("preview", self.image_store.save_preview(result.inserted_id, attachments.preview.source)))

        failures = await run_all(writes)
        if failures:
            if self._rollback_on_attachment_failure:
                await self._compensate(result.inserted_id)
            else:
                logger.warning(
                    "Offer %s kept without its %s; rollback is disabled",
                    result.inserted_id,
                    ", ".join(label for label, _ in failures),
                )
            raise failures[0][1]

        return record

    async def _compensate(self, offer_id: UUID) -> None:
        cleanups = [
            ("record", self.offer_store.delete_offer(offer_id)),
            ("images", self.image_store.delete_images(offer_id)),
        ]
        for label, exc in await run_all(cleanups):
            logger.error("Rollback of %s for offer %s failed: %s", label, offer_id, exc)
