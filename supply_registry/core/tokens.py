"""Token registration workflow.

Creating or refreshing a token record never fails because metadata could
not be resolved: the record is stored with whatever metadata is available
and the resolution problem is returned as a warning.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Tuple

from supply_registry.core.chains import ChainRegistry, EndpointOverrides
from supply_registry.core.resolver import MetadataResolver
from supply_registry.database import TokenRecord
from supply_registry.errors import MetadataFetchFailed, NoEndpoints, TokenNotFound, UnknownChain
from supply_registry.services.metrics import update_token_count
from supply_registry.services.token_metadata import TokenMetadata, validate_address
from supply_registry.services.token_store import TokenStore, load_metadata
from supply_registry.services.tokenlists import TokenListService

logger = logging.getLogger(__name__)

# Resolution problems that downgrade to warnings in the CRUD workflow
RESOLUTION_WARNINGS = (MetadataFetchFailed, UnknownChain, NoEndpoints)


@dataclass(frozen=True)
class BrandingPreset:
    """Fixed name/symbol/logo applied over resolved metadata."""
    name: str
    symbol: str
    logo: str

    @classmethod
    def from_settings(cls, settings) -> "BrandingPreset":
        return cls(
            name=settings.branding_name,
            symbol=settings.branding_symbol,
            logo=settings.branding_logo,
        )

    def as_metadata(self) -> TokenMetadata:
        return TokenMetadata(name=self.name, symbol=self.symbol, logo=self.logo)


class TokenService:
    def __init__(
        self,
        store: TokenStore,
        resolver: MetadataResolver,
        branding: BrandingPreset,
        tokenlists: TokenListService | None = None,
        overrides: EndpointOverrides | None = None,
    ):
        self._store = store
        self._resolver = resolver
        self._branding = branding
        self._tokenlists = tokenlists
        self._overrides = overrides or EndpointOverrides()

    @property
    def registry(self) -> ChainRegistry:
        return self._resolver.registry

    @property
    def overrides(self) -> EndpointOverrides:
        return self._overrides

    def rpc_stats(self) -> Dict[str, Any]:
        """Per-chain pooled connection and endpoint statistics."""
        return self._resolver.provider_cache.stats

    def set_endpoint_overrides(self, overrides: EndpointOverrides) -> None:
        """Replace the endpoint overrides and drop every cached pooled connection."""
        self._overrides = overrides
        dropped = self._resolver.provider_cache.invalidate()
        logger.info(f"Endpoint overrides updated, {dropped} pooled connection(s) discarded")

    async def list_tokens(self) -> List[TokenRecord]:
        return await self._store.list_all()

    async def get_token(self, token_id: int) -> TokenRecord:
        record = await self._store.get_by_id(token_id)
        if record is None:
            raise TokenNotFound(token_id)
        return record

    async def _resolve(self, address: str, chain_key: str, warnings: List[str]) -> TokenMetadata | None:
        try:
            return await self._resolver.resolve_token_metadata(address, chain_key, self._overrides)
        except RESOLUTION_WARNINGS as e:
            logger.warning(f"On-chain metadata fetch failed for {address} on {chain_key}: {e}")
            warnings.append(str(e))
            return None

    async def _find_logo(self, chain_key: str, address: str, warnings: List[str]) -> str | None:
        if self._tokenlists is None:
            return None
        try:
            return await self._tokenlists.find_logo(chain_key, address)
        except OSError as e:
            logger.warning(f"Token list logo lookup failed: {e}")
            warnings.append(f"Token list logo lookup failed: {e}")
            return None

    async def create_token(
        self,
        address: str,
        chain_key: str,
        chain_name: str | None = None,
        supply_input: str | None = None,
        fetch_onchain: bool = False,
        apply_branding: bool = False,
    ) -> Tuple[TokenRecord, List[str]]:
        """
        Register a token, optionally populating its metadata.

        Args:
            address: Token contract address
            chain_key: Chain identifier
            chain_name: Display name (defaults to the registry name or the key)
            supply_input: Manually entered supply; filled from totalSupply when empty
            fetch_onchain: Resolve metadata from the chain's RPC endpoints
            apply_branding: Apply the branding preset over the metadata

        Returns:
            (stored record, warnings)

        Raises:
            InvalidAddress: malformed address
            StorageConflict: the token is already registered on this chain
        """
        checksum_address = validate_address(address)
        chain_key = chain_key.strip().lower()
        if chain_name is None:
            descriptor = self.registry.get(chain_key)
            chain_name = descriptor.display_name if descriptor else chain_key

        warnings: List[str] = []
        supply = (supply_input or "").strip() or None
        metadata = None

        if fetch_onchain:
            metadata = await self._resolve(checksum_address, chain_key, warnings)
            if metadata is not None and supply is None and metadata.total_supply:
                supply = metadata.total_supply

        if metadata is None or metadata.logo is None:
            logo = await self._find_logo(chain_key, checksum_address, warnings)
            if logo:
                metadata = (metadata or TokenMetadata()).merged_with(TokenMetadata(logo=logo))

        if apply_branding:
            metadata = (metadata or TokenMetadata()).merged_with(self._branding.as_metadata())

        record = await self._store.create(
            address=checksum_address,
            chain_key=chain_key,
            chain_name=chain_name,
            supply_input=supply,
            metadata=metadata,
        )
        update_token_count(await self._store.count())
        logger.info(f"Registered token {checksum_address} on {chain_key} (id={record.id})")
        return record, warnings

    async def refresh_token(self, token_id: int) -> Tuple[TokenRecord, List[str]]:
        """Re-resolve metadata and merge the resolved fields over the stored ones."""
        record = await self.get_token(token_id)
        warnings: List[str] = []

        resolved = await self._resolve(record.address, record.chain_key, warnings)
        if resolved is None:
            return record, warnings

        current = load_metadata(record.metadata_json) or TokenMetadata()
        record = await self._store.update(token_id, {"metadata": current.merged_with(resolved)})
        return record, warnings

    async def apply_branding(self, token_id: int) -> TokenRecord:
        record = await self.get_token(token_id)
        current = load_metadata(record.metadata_json) or TokenMetadata()
        return await self._store.update(
            token_id, {"metadata": current.merged_with(self._branding.as_metadata())}
        )

    async def update_token(self, token_id: int, partial: Dict[str, Any]) -> TokenRecord:
        partial = dict(partial)
        if partial.get("address") is not None:
            partial["address"] = validate_address(partial["address"])
        if partial.get("chain_key") is not None:
            partial["chain_key"] = partial["chain_key"].strip().lower()
        return await self._store.update(token_id, partial)

    async def delete_token(self, token_id: int) -> None:
        if not await self._store.delete(token_id):
            raise TokenNotFound(token_id)
        update_token_count(await self._store.count())
