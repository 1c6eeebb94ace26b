from __future__ import annotations

from typing import Optional, List
from uuid import UUID, uuid4

from sqlalchemy import BigInteger, Column, JSON
from sqlmodel import Field, SQLModel


class Offer(SQLModel, table=True):
    __tablename__ = "offers"

    id: UUID = Field(default_factory=uuid4, primary_key=True, index=True)
    date: int = Field(sa_column=Column(BigInteger, nullable=False, index=True))
    title: str = Field(nullable=False)
    type: str = Field(nullable=False, index=True)
    name: str = Field(nullable=False)
    price: int = Field(nullable=False)
    rooms: int = Field(nullable=False)
    guests: int = Field(nullable=False)
    address: str = Field(nullable=False)
    # NULL stands in for a coordinate that did not parse.
    location_x: Optional[int] = None
    location_y: Optional[int] = None
    checkin: str = Field(nullable=False)
    checkout: str = Field(nullable=False)
    features: List[str] = Field(default_factory=list, sa_column=Column(JSON, nullable=False))
    description: Optional[str] = None
    avatar: Optional[dict] = Field(default=None, sa_column=Column(JSON))
    preview: Optional[dict] = Field(default=None, sa_column=Column(JSON))


__all__ = ["Offer"]
