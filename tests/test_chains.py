import pytest

from supply_registry.config import Settings
from supply_registry.core.chains import (
    ChainDescriptor,
    ChainRegistry,
    DEFAULT_REGISTRY,
    EndpointOverrides,
    dedupe,
    resolve_endpoints,
)
from supply_registry.errors import UnknownChain


class TestResolveEndpoints:
    @pytest.fixture
    def registry(self):
        return ChainRegistry([ChainDescriptor("x", "Chain X", ("A", "B"), 99)])

    def test_defaults_without_overrides(self, registry):
        assert registry.resolve_endpoints("x") == ["A", "B"]

    def test_chain_override_replaces_defaults(self, registry):
        overrides = EndpointOverrides.from_mapping({"x": ["B"]})
        assert registry.resolve_endpoints("x", overrides) == ["B"]

    def test_global_override_is_prepended(self, registry):
        overrides = EndpointOverrides.from_mapping({"x": ["B"]}, ["G"])
        assert registry.resolve_endpoints("x", overrides) == ["G", "B"]

    def test_global_override_over_defaults(self, registry):
        overrides = EndpointOverrides.from_mapping(global_endpoints=["G"])
        assert registry.resolve_endpoints("x", overrides) == ["G", "A", "B"]

    def test_duplicates_keep_first_occurrence(self, registry):
        overrides = EndpointOverrides.from_mapping({"x": ["A", "G", "A"]}, ["G"])
        assert registry.resolve_endpoints("x", overrides) == ["G", "A"]

    def test_empty_chain_override_falls_back_to_defaults(self, registry):
        overrides = EndpointOverrides.from_mapping({"x": []})
        assert registry.resolve_endpoints("x", overrides) == ["A", "B"]

    def test_chain_key_is_case_insensitive(self, registry):
        overrides = EndpointOverrides.from_mapping({"X": ["B"]})
        assert registry.resolve_endpoints("X", overrides) == ["B"]

    def test_unknown_chain_raises(self, registry):
        with pytest.raises(UnknownChain) as exc_info:
            registry.resolve_endpoints("nope")
        assert exc_info.value.chain_key == "nope"
        assert str(exc_info.value) == "Unknown chain: nope"

    def test_unknown_chain_with_global_override_still_raises(self, registry):
        overrides = EndpointOverrides.from_mapping(global_endpoints=["G"])
        with pytest.raises(UnknownChain):
            registry.resolve_endpoints("nope", overrides)

    def test_override_defines_unregistered_chain(self, registry):
        overrides = EndpointOverrides.from_mapping({"devnet": ["http://localhost:8545"]})
        assert registry.resolve_endpoints("devnet", overrides) == ["http://localhost:8545"]

    def test_module_level_helper_uses_default_registry(self):
        endpoints = resolve_endpoints("eth")
        assert endpoints == list(DEFAULT_REGISTRY.get("eth").endpoints)


class TestChainRegistry:
    def test_default_registry_contents(self):
        eth = DEFAULT_REGISTRY.get("eth")
        assert eth.display_name == "Ethereum Mainnet"
        assert eth.chain_id == 1
        assert "polygon" in DEFAULT_REGISTRY
        assert "ETH" in DEFAULT_REGISTRY
        assert "nope" not in DEFAULT_REGISTRY
        assert DEFAULT_REGISTRY.get("nope") is None

    def test_every_default_chain_has_endpoints(self):
        for chain in DEFAULT_REGISTRY.chains():
            assert chain.endpoints, chain.key
            assert len(set(chain.endpoints)) == len(chain.endpoints)

    def test_with_provider_keys_prepends_keyed_urls(self):
        registry = DEFAULT_REGISTRY.with_provider_keys("alc", "inf")
        endpoints = registry.get("eth").endpoints
        assert endpoints[0] == "https://eth-mainnet.alchemyapi.io/v2/alc"
        assert endpoints[1] == "https://mainnet.infura.io/v3/inf"
        assert endpoints[2:] == DEFAULT_REGISTRY.get("eth").endpoints

    def test_with_provider_keys_leaves_other_chains(self):
        registry = DEFAULT_REGISTRY.with_provider_keys("alc")
        assert registry.get("bsc") == DEFAULT_REGISTRY.get("bsc")
        # The default registry itself is untouched
        assert not DEFAULT_REGISTRY.get("eth").endpoints[0].startswith("https://eth-mainnet")

    def test_without_keys_is_equivalent(self):
        registry = DEFAULT_REGISTRY.with_provider_keys()
        assert registry.chains() == DEFAULT_REGISTRY.chains()


class TestEndpointOverrides:
    def test_dedupe(self):
        assert dedupe(["a", "b", "a", "", "c", "b"]) == ["a", "b", "c"]

    def test_is_empty(self):
        assert EndpointOverrides().is_empty
        assert EndpointOverrides.from_mapping({"eth": []}).is_empty
        assert not EndpointOverrides.from_mapping(global_endpoints=["G"]).is_empty

    def test_from_settings(self, monkeypatch):
        monkeypatch.setenv("RPC_OVERRIDES", '{"ETH": [" http://a ", ""], "bsc": ["http://b"]}')
        monkeypatch.setenv("RPC_GLOBAL_OVERRIDES", '["http://g"]')
        overrides = EndpointOverrides.from_settings(Settings(_env_file=None))
        assert overrides.per_chain == {"eth": ("http://a",), "bsc": ("http://b",)}
        assert overrides.global_endpoints == ("http://g",)
