import pytest
from unittest.mock import AsyncMock, MagicMock

from conftest import DEAD
from supply_registry.core.chains import DEFAULT_REGISTRY, EndpointOverrides
from supply_registry.core.tokens import BrandingPreset, TokenService
from supply_registry.errors import (
    AllEndpointsExhausted,
    InvalidAddress,
    StorageConflict,
    TokenNotFound,
    UnknownChain,
)
from supply_registry.services.metrics import REGISTRY
from supply_registry.services.token_metadata import TokenMetadata
from supply_registry.services.token_store import TokenStore, load_metadata

BRANDING = BrandingPreset(name="MEDIAXR", symbol="RXR", logo="https://example.org/rxr.png")

RESOLVED = TokenMetadata(name="Dead Token", symbol="DEAD", decimals=18, total_supply="1000")


@pytest.fixture
def resolver():
    resolver = MagicMock()
    resolver.registry = DEFAULT_REGISTRY
    resolver.resolve_token_metadata = AsyncMock(return_value=RESOLVED)
    return resolver


@pytest.fixture
def tokenlists():
    tokenlists = MagicMock()
    tokenlists.find_logo = AsyncMock(return_value=None)
    return tokenlists


@pytest.fixture
def service(database, resolver, tokenlists):
    return TokenService(TokenStore(database), resolver, BRANDING, tokenlists)


class TestCreateToken:
    @pytest.mark.asyncio
    async def test_plain_create(self, service, resolver):
        record, warnings = await service.create_token(DEAD.lower(), " ETH ")

        assert warnings == []
        assert record.address == DEAD
        assert record.chain_key == "eth"
        assert record.chain_name == "Ethereum Mainnet"
        assert record.supply_input is None
        resolver.resolve_token_metadata.assert_not_called()
        assert REGISTRY.get_sample_value("supply_registry_registered_tokens") == 1

    @pytest.mark.asyncio
    async def test_fetch_onchain_fills_supply(self, service):
        record, warnings = await service.create_token(DEAD, "eth", fetch_onchain=True)

        assert warnings == []
        assert record.supply_input == "1000"
        assert load_metadata(record.metadata_json) == RESOLVED

    @pytest.mark.asyncio
    async def test_manual_supply_is_kept(self, service):
        record, _ = await service.create_token(DEAD, "eth", supply_input="5", fetch_onchain=True)
        assert record.supply_input == "5"

    @pytest.mark.asyncio
    async def test_resolution_failure_is_a_warning(self, service, resolver):
        resolver.resolve_token_metadata.side_effect = AllEndpointsExhausted("eth", 2)

        record, warnings = await service.create_token(DEAD, "eth", fetch_onchain=True)

        assert record.id is not None
        assert record.metadata_json is None
        assert len(warnings) == 1
        assert "eth" in warnings[0]

    @pytest.mark.asyncio
    async def test_unknown_chain_is_a_warning(self, service, resolver):
        resolver.resolve_token_metadata.side_effect = UnknownChain("devnet")

        record, warnings = await service.create_token(DEAD, "devnet", fetch_onchain=True)

        assert record.chain_name == "devnet"
        assert warnings == ["Unknown chain: devnet"]

    @pytest.mark.asyncio
    async def test_logo_from_token_list(self, service, tokenlists):
        tokenlists.find_logo.return_value = "https://example.org/dead.png"

        record, _ = await service.create_token(DEAD, "eth", fetch_onchain=True)

        assert load_metadata(record.metadata_json).logo == "https://example.org/dead.png"
        tokenlists.find_logo.assert_awaited_once_with("eth", DEAD)

    @pytest.mark.asyncio
    async def test_token_list_outage_is_a_warning(self, service, tokenlists):
        tokenlists.find_logo.side_effect = OSError("disk full")

        record, warnings = await service.create_token(DEAD, "eth")

        assert record.metadata_json is None
        assert warnings == ["Token list logo lookup failed: disk full"]

    @pytest.mark.asyncio
    async def test_branding_overrides_resolved_fields(self, service):
        record, _ = await service.create_token(DEAD, "eth", fetch_onchain=True, apply_branding=True)

        metadata = load_metadata(record.metadata_json)
        assert metadata.name == "MEDIAXR"
        assert metadata.symbol == "RXR"
        assert metadata.logo == "https://example.org/rxr.png"
        assert metadata.decimals == 18
        assert metadata.total_supply == "1000"

    @pytest.mark.asyncio
    async def test_invalid_address(self, service):
        with pytest.raises(InvalidAddress):
            await service.create_token("0x0000000000000000000000000000000000dEaD", "eth")

    @pytest.mark.asyncio
    async def test_duplicate_is_case_insensitive(self, service):
        await service.create_token(DEAD, "eth")
        with pytest.raises(StorageConflict):
            await service.create_token(DEAD.lower(), "eth")


class TestRefreshToken:
    @pytest.mark.asyncio
    async def test_refresh_merges_resolved_fields(self, service, resolver):
        record, _ = await service.create_token(DEAD, "eth")
        await service.update_token(record.id, {"metadata": {"logo": "https://example.org/a.png"}})
        resolver.resolve_token_metadata.return_value = TokenMetadata(symbol="DEAD")

        refreshed, warnings = await service.refresh_token(record.id)

        assert warnings == []
        assert load_metadata(refreshed.metadata_json) == TokenMetadata(
            symbol="DEAD", logo="https://example.org/a.png"
        )
        resolver.resolve_token_metadata.assert_awaited_with(DEAD, "eth", EndpointOverrides())

    @pytest.mark.asyncio
    async def test_refresh_failure_keeps_record(self, service, resolver):
        record, _ = await service.create_token(DEAD, "eth", fetch_onchain=True)
        resolver.resolve_token_metadata.side_effect = AllEndpointsExhausted("eth", 1)

        refreshed, warnings = await service.refresh_token(record.id)

        assert load_metadata(refreshed.metadata_json) == RESOLVED
        assert len(warnings) == 1

    @pytest.mark.asyncio
    async def test_refresh_missing(self, service):
        with pytest.raises(TokenNotFound):
            await service.refresh_token(42)


class TestOtherOperations:
    @pytest.mark.asyncio
    async def test_apply_branding(self, service):
        record, _ = await service.create_token(DEAD, "eth", fetch_onchain=True)
        branded = await service.apply_branding(record.id)
        metadata = load_metadata(branded.metadata_json)
        assert (metadata.name, metadata.symbol, metadata.decimals) == ("MEDIAXR", "RXR", 18)

    @pytest.mark.asyncio
    async def test_update_validates_address(self, service):
        record, _ = await service.create_token(DEAD, "eth")
        with pytest.raises(InvalidAddress):
            await service.update_token(record.id, {"address": "nope"})

    @pytest.mark.asyncio
    async def test_delete(self, service):
        record, _ = await service.create_token(DEAD, "eth")
        await service.delete_token(record.id)
        assert await service.list_tokens() == []
        with pytest.raises(TokenNotFound):
            await service.delete_token(record.id)

    @pytest.mark.asyncio
    async def test_set_endpoint_overrides_invalidates_connections(self, service, resolver):
        overrides = EndpointOverrides.from_mapping(global_endpoints=["http://g"])
        service.set_endpoint_overrides(overrides)
        assert service.overrides is overrides
        resolver.provider_cache.invalidate.assert_called_once_with()
