from __future__ import annotations

from contextlib import AbstractContextManager
from typing import Callable, Optional
from uuid import UUID

from sqlmodel import Session, select
from starlette.concurrency import run_in_threadpool

from keksobooking.db import models
from keksobooking.db.session import get_session
from keksobooking.services.types import InsertResult, ListingParams

SessionFactory = Callable[[], AbstractContextManager[Session]]


class BaseOfferStore:
    """Record store for offers."""

    async def get_offers(self, params: ListingParams) -> list[models.Offer]:
        raise NotImplementedError

    async def get_offer(self, date: int) -> Optional[models.Offer]:
        raise NotImplementedError

    async def save_offer(self, offer: models.Offer) -> InsertResult:
        raise NotImplementedError

    async def delete_offer(self, offer_id: UUID) -> None:
        raise NotImplementedError


class SqlOfferStore(BaseOfferStore):
    """Offer store backed by SQLModel; blocking work runs in the threadpool."""

    def __init__(self, session_factory: SessionFactory = get_session) -> None:
        self._session_factory = session_factory

    async def get_offers(self, params: ListingParams) -> list[models.Offer]:
        return await run_in_threadpool(self._get_offers, params)

    def _get_offers(self, params: ListingParams) -> list[models.Offer]:
        statement = (
            select(models.Offer)
            .order_by(models.Offer.date.desc())
            .offset(params.skip)
            .limit(params.limit)
        )
        with self._session_factory() as session:
            return list(session.exec(statement).all())

    async def get_offer(self, date: int) -> Optional[models.Offer]:
        return await run_in_threadpool(self._get_offer, date)

    def _get_offer(self, date: int) -> Optional[models.Offer]:
        statement = select(models.Offer).where(models.Offer.date == date).limit(1)
        with self._session_factory() as session:
            return session.exec(statement).first()

    async def save_offer(self, offer: models.Offer) -> InsertResult:
        return await run_in_threadpool(self._save_offer, offer)

    def _save_offer(self, offer: models.Offer) -> InsertResult:
        with self._session_factory() as session:
            session.add(offer)
            session.flush()
            return InsertResult(inserted_id=offer.id)

    async def delete_offer(self, offer_id: UUID) -> None:
        await run_in_threadpool(self._delete_offer, offer_id)

    def _delete_offer(self, offer_id: UUID) -> None:
        with self._session_factory() as session:
            offer = session.get(models.Offer, offer_id)
            if offer is not None:
                session.delete(offer)
