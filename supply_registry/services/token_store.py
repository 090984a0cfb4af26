"""Token record storage backed by the async SQLAlchemy session."""

from __future__ import annotations

import json
import logging
from typing import Any, Dict, List

from sqlalchemy import delete, func, select
from sqlalchemy.exc import IntegrityError

from supply_registry.database import Database, TokenRecord, utcnow
from supply_registry.errors import StorageConflict, TokenNotFound
from supply_registry.services.token_metadata import TokenMetadata

logger = logging.getLogger(__name__)

# Columns a partial update may touch; None values keep the stored value
UPDATABLE_FIELDS = ("address", "chain_key", "chain_name", "supply_input")


def dump_metadata(metadata: TokenMetadata | None) -> str | None:
    if metadata is None:
        return None
    return json.dumps(metadata.to_dict())


def load_metadata(raw: str | None) -> TokenMetadata | None:
    if not raw:
        return None
    try:
        return TokenMetadata.from_dict(json.loads(raw))
    except (ValueError, TypeError) as e:
        logger.warning(f"Discarding unreadable stored metadata: {e}")
        return None


def record_to_dict(record: TokenRecord) -> Dict[str, Any]:
    metadata = load_metadata(record.metadata_json)
    return {
        "id": record.id,
        "address": record.address,
        "chainKey": record.chain_key,
        "chainName": record.chain_name,
        "supplyInput": record.supply_input,
        "metadata": metadata.to_dict() if metadata else None,
        "createdAt": record.created_at.isoformat() if record.created_at else None,
    }


class TokenStore:
    """CRUD access to token records with (address, chain_key) uniqueness."""

    def __init__(self, database: Database):
        self._db = database

    async def create(
        self,
        address: str,
        chain_key: str,
        chain_name: str | None = None,
        supply_input: str | None = None,
        metadata: TokenMetadata | None = None,
    ) -> TokenRecord:
        """Insert a token record.

        Raises:
            StorageConflict: if the (address, chain_key) pair already exists
        """
        record = TokenRecord(
            address=address,
            chain_key=chain_key,
            chain_name=chain_name or chain_key,
            supply_input=supply_input,
            metadata_json=dump_metadata(metadata),
            created_at=utcnow(),
        )
        async with self._db.async_session() as session:
            session.add(record)
            try:
                await session.commit()
            except IntegrityError:
                await session.rollback()
                raise StorageConflict(address, chain_key)
            await session.refresh(record)
        return record

    async def get_by_id(self, token_id: int) -> TokenRecord | None:
        async with self._db.async_session() as session:
            return await session.get(TokenRecord, token_id)

    async def update(self, token_id: int, partial: Dict[str, Any]) -> TokenRecord:
        """Apply a partial update.

        Args:
            token_id: Record id
            partial: Any of address, chain_key, chain_name, supply_input
                (None keeps the stored value) and metadata (TokenMetadata,
                dict or None; replaces the stored metadata when present)

        Raises:
            TokenNotFound: if no record has this id
            StorageConflict: if the update collides with another record
        """
        async with self._db.async_session() as session:
            record = await session.get(TokenRecord, token_id)
            if record is None:
                raise TokenNotFound(token_id)

            for name in UPDATABLE_FIELDS:
                value = partial.get(name)
                if value is not None:
                    setattr(record, name, value)

            if "metadata" in partial:
                metadata = partial["metadata"]
                if metadata is not None and not isinstance(metadata, TokenMetadata):
                    metadata = TokenMetadata.from_dict(metadata)
                record.metadata_json = dump_metadata(metadata)

            address, chain_key = record.address, record.chain_key
            try:
                await session.commit()
            except IntegrityError:
                await session.rollback()
                raise StorageConflict(address, chain_key)
            await session.refresh(record)
        return record

    async def delete(self, token_id: int) -> bool:
        async with self._db.async_session() as session:
            result = await session.execute(
                delete(TokenRecord).where(TokenRecord.id == token_id)
            )
            await session.commit()
        return result.rowcount > 0

    async def list_all(self) -> List[TokenRecord]:
        """All records, newest first."""
        async with self._db.async_session() as session:
            result = await session.execute(
                select(TokenRecord).order_by(TokenRecord.created_at.desc(), TokenRecord.id.desc())
            )
            return list(result.scalars().all())

    async def count(self) -> int:
        async with self._db.async_session() as session:
            result = await session.execute(select(func.count(TokenRecord.id)))
            return result.scalar_one()
