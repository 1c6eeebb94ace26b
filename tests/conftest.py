from __future__ import annotations

import asyncio
from collections.abc import Generator
from contextlib import contextmanager
from pathlib import Path
import sys
from typing import Iterator, Optional
from uuid import UUID, uuid4

import pytest
ROOT_DIR = Path(__file__).resolve().parents[1]
if str(ROOT_DIR) not in sys.path:
    sys.path.insert(0, str(ROOT_DIR))

from fastapi.testclient import TestClient  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402
from sqlmodel import SQLModel, Session, create_engine  # noqa: E402

from keksobooking.api.deps import get_image_store, get_offer_store  # noqa: E402
from keksobooking.core.log_buffer import reset_buffers  # noqa: E402
from keksobooking.db import models  # noqa: F401, E402 - ensure models are imported for metadata
from keksobooking.main import app  # noqa: E402
from keksobooking.services.image_storage import (  # noqa: E402
    BaseImageStorage,
    ImageStorageError,
    LocalImageStorage,
)
from keksobooking.services.offer_store import BaseOfferStore, SqlOfferStore  # noqa: E402
from keksobooking.services.types import InsertResult, ListingParams, StoredImage  # noqa: E402


class MemoryOfferStore(BaseOfferStore):
    def __init__(self) -> None:
        self.records: dict[UUID, models.Offer] = {}

    async def get_offers(self, params: ListingParams) -> list[models.Offer]:
        ordered = sorted(self.records.values(), key=lambda offer: offer.date, reverse=True)
        return ordered[params.skip : params.skip + params.limit]

    async def get_offer(self, date: int) -> Optional[models.Offer]:
        return next((offer for offer in self.records.values() if offer.date == date), None)

    async def save_offer(self, offer: models.Offer) -> InsertResult:
        await asyncio.sleep(0)
        offer.id = uuid4()
        self.records[offer.id] = offer
        return InsertResult(inserted_id=offer.id)

    async def delete_offer(self, offer_id: UUID) -> None:
        self.records.pop(offer_id, None)


class MemoryImageStore(BaseImageStorage):
    backend_name = "memory"

    def __init__(self) -> None:
        self.blobs: dict[tuple[str, UUID], bytes] = {}
        self.calls: list[tuple[str, UUID]] = []
        self.fail_on: set[str] = set()

    async def save(self, kind, offer_id, source) -> None:
        self.calls.append((kind, offer_id))
        content = await source.read()
        await asyncio.sleep(0)
        if kind in self.fail_on:
            raise ImageStorageError(f"{kind} write refused")
        self.blobs[(kind, offer_id)] = content

    async def open(self, kind, offer_id) -> Optional[StoredImage]:
        content = self.blobs.get((kind, offer_id))
        if content is None:
            return None
        return StoredImage(chunks=iter([content]), length=len(content))

    async def delete_images(self, offer_id) -> None:
        for kind in ("avatar", "preview"):
            self.blobs.pop((kind, offer_id), None)


@pytest.fixture()
def engine():
    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    SQLModel.metadata.create_all(engine)
    yield engine
    SQLModel.metadata.drop_all(engine)


@pytest.fixture()
def session_factory(engine):
    @contextmanager
    def _session() -> Iterator[Session]:
        session = Session(engine, expire_on_commit=False)
        try:
            yield session
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    return _session


@pytest.fixture()
def offer_store(session_factory) -> SqlOfferStore:
    return SqlOfferStore(session_factory)


@pytest.fixture()
def image_store(tmp_path) -> LocalImageStorage:
    return LocalImageStorage(tmp_path / "images", chunk_size=4)


@pytest.fixture()
def memory_offer_store() -> MemoryOfferStore:
    return MemoryOfferStore()


@pytest.fixture()
def memory_image_store() -> MemoryImageStore:
    return MemoryImageStore()


@pytest.fixture()
def offer_fields() -> dict:
    return {
        "title": "Cozy flat in the very heart of old Tokyo",
        "type": "flat",
        "price": "30000",
        "address": "55,37",
        "checkin": "12:00",
        "checkout": "13:00",
        "rooms": "2",
        "guests": "3",
        "features": ["wifi", "parking"],
        "description": "Quiet street",
    }


@pytest.fixture()
def client(offer_store, image_store) -> Generator[TestClient, None, None]:
    app.dependency_overrides[get_offer_store] = lambda: offer_store
    app.dependency_overrides[get_image_store] = lambda: image_store
    reset_buffers()
    yield TestClient(app)
    app.dependency_overrides.pop(get_offer_store, None)
    app.dependency_overrides.pop(get_image_store, None)
