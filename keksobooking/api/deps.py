from functools import lru_cache

from fastapi import Depends

from keksobooking.core.config import settings
from keksobooking.services.image_storage import BaseImageStorage, get_image_storage
from keksobooking.services.offer_store import BaseOfferStore, SqlOfferStore
from keksobooking.services.offers import OfferService


@lru_cache
def get_offer_store() -> BaseOfferStore:
    """FastAPI dependency returning the process-wide record store."""

    return SqlOfferStore()


def get_image_store() -> BaseImageStorage:
    """FastAPI dependency returning the process-wide blob store."""

    return get_image_storage()


def get_offer_service(
    offer_store: BaseOfferStore = Depends(get_offer_store),
    image_store: BaseImageStorage = Depends(get_image_store),
) -> OfferService:
    return OfferService(
        offer_store,
        image_store,
        rollback_on_attachment_failure=settings.offers_rollback_on_attachment_failure,
    )
