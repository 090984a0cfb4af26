"""SQLAlchemy database models and session management.

This module defines the token registry schema. Each row is one token
contract on one chain; the (address, chain_key) pair is unique. Metadata is
kept as JSON text so partially resolved records round-trip unchanged.
"""

from datetime import datetime, timezone
from pathlib import Path

from sqlalchemy import Column, DateTime, Index, Integer, String, Text
from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine, async_sessionmaker
from sqlalchemy.orm import DeclarativeBase

from supply_registry.config import get_settings


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Base(DeclarativeBase):
    pass


class TokenRecord(Base):
    __tablename__ = "tokens"

    id = Column(Integer, primary_key=True, autoincrement=True)
    address = Column(String(42), nullable=False)
    chain_key = Column(String(64), nullable=False)
    chain_name = Column(String(128), nullable=True)
    supply_input = Column(Text, nullable=True)  # Manual or on-chain supply, as text
    metadata_json = Column("metadata", Text, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, index=True)

    __table_args__ = (
        Index("idx_tokens_address_chain", "address", "chain_key", unique=True),
    )


def _ensure_sqlite_dir(database_url: str) -> None:
    url = make_url(database_url)
    if url.get_backend_name() == "sqlite" and url.database and url.database != ":memory:":
        Path(url.database).parent.mkdir(parents=True, exist_ok=True)


class Database:
    def __init__(self, database_url: str | None = None):
        self.database_url = database_url or get_settings().database_url
        _ensure_sqlite_dir(self.database_url)
        self.engine = create_async_engine(self.database_url, echo=False)
        self.async_session = async_sessionmaker(
            self.engine, class_=AsyncSession, expire_on_commit=False
        )

    async def init_db(self):
        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

    async def close(self):
        await self.engine.dispose()
