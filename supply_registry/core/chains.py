"""Chain registry with prioritized RPC endpoints.

Each chain carries an ordered list of public JSON-RPC endpoints (earlier
entries are tried first). The effective list for a resolution is computed
from the registry defaults and an explicit EndpointOverrides object:

- a non-empty per-chain override replaces the chain's defaults entirely
- global overrides are prepended to whichever list results
- duplicates are removed, keeping the first occurrence
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from typing import Dict, Iterable, List, Mapping, Tuple

from supply_registry.errors import UnknownChain


@dataclass(frozen=True)
class ChainDescriptor:
    key: str
    display_name: str
    endpoints: Tuple[str, ...]
    chain_id: int | None = None


@dataclass(frozen=True)
class EndpointOverrides:
    per_chain: Mapping[str, Tuple[str, ...]] = field(default_factory=dict)
    global_endpoints: Tuple[str, ...] = ()

    @classmethod
    def from_mapping(
        cls,
        per_chain: Mapping[str, Iterable[str]] | None = None,
        global_endpoints: Iterable[str] | None = None,
    ) -> "EndpointOverrides":
        return cls(
            per_chain={
                key.lower(): tuple(urls) for key, urls in (per_chain or {}).items()
            },
            global_endpoints=tuple(global_endpoints or ()),
        )

    @classmethod
    def from_settings(cls, settings) -> "EndpointOverrides":
        """Build overrides from RPC_OVERRIDES / RPC_GLOBAL_OVERRIDES settings."""
        return cls.from_mapping(settings.rpc_overrides, settings.rpc_global_overrides)

    @property
    def is_empty(self) -> bool:
        return not self.global_endpoints and not any(self.per_chain.values())


NO_OVERRIDES = EndpointOverrides()


# Prefer public endpoints first, then the Ankr fallback
DEFAULT_CHAINS: Tuple[ChainDescriptor, ...] = (
    ChainDescriptor("eth", "Ethereum Mainnet", ("https://cloudflare-eth.com", "https://rpc.ankr.com/eth"), 1),
    ChainDescriptor("goerli", "Ethereum Goerli", ("https://rpc.ankr.com/eth_goerli",), 5),
    ChainDescriptor("sepolia", "Ethereum Sepolia", ("https://rpc.ankr.com/eth_sepolia",), 11155111),
    ChainDescriptor("polygon", "Polygon Mainnet", ("https://polygon-rpc.com", "https://rpc.ankr.com/polygon"), 137),
    ChainDescriptor("mumbai", "Polygon Mumbai", ("https://rpc.ankr.com/polygon_mumbai",), 80001),
    ChainDescriptor("bsc", "BSC Mainnet", ("https://bsc-dataseed.binance.org", "https://rpc.ankr.com/bsc"), 56),
    ChainDescriptor("bsc-testnet", "BSC Testnet", ("https://rpc.ankr.com/bsc_testnet",), 97),
    ChainDescriptor("avalanche", "Avalanche C-Chain", ("https://api.avax.network/ext/bc/C/rpc", "https://rpc.ankr.com/avalanche"), 43114),
    ChainDescriptor("fuji", "Avalanche Fuji", ("https://rpc.ankr.com/avalanche_fuji",), 43113),
    ChainDescriptor("fantom", "Fantom Opera", ("https://rpc.ankr.com/fantom",), 250),
    ChainDescriptor("arbitrum", "Arbitrum One", ("https://arb1.arbitrum.io/rpc", "https://rpc.ankr.com/arbitrum"), 42161),
    ChainDescriptor("arbitrum-goerli", "Arbitrum Goerli", ("https://rpc.ankr.com/arbitrum_goerli",), 421613),
    ChainDescriptor("optimism", "Optimism", ("https://mainnet.optimism.io", "https://rpc.ankr.com/optimism"), 10),
    ChainDescriptor("optimism-goerli", "Optimism Goerli", ("https://rpc.ankr.com/optimism_goerli",), 420),
    ChainDescriptor("moonbeam", "Moonbeam", ("https://rpc.ankr.com/moonbeam",), 1284),
    ChainDescriptor("moonriver", "Moonriver", ("https://rpc.ankr.com/moonriver",), 1285),
    ChainDescriptor("aurora", "Aurora", ("https://mainnet.aurora.dev", "https://rpc.ankr.com/aurora"), 1313161554),
    ChainDescriptor("celo", "Celo", ("https://forno.celo.org", "https://rpc.ankr.com/celo"), 42220),
    ChainDescriptor("klaytn", "Klaytn", ("https://public-node-api.klaytn.net/v1/cypress",), 8217),
    ChainDescriptor("harmony", "Harmony (One)", ("https://rpc.ankr.com/harmony",), 1666600000),
    ChainDescriptor("cronos", "Cronos", ("https://evm-cronos.crypto.org", "https://rpc.ankr.com/cronos"), 25),
    ChainDescriptor("metis", "Metis Andromeda", ("https://andromeda.metis.io/?owner=1088", "https://rpc.ankr.com/metis"), 1088),
    ChainDescriptor("okc", "OKC (OKExChain)", ("https://exchainrpc.okex.org",), 66),
    ChainDescriptor("zksync", "zkSync Era", ("https://mainnet.era.zksync.io",), 324),
    ChainDescriptor("base", "Base", ("https://mainnet.base.org",), 8453),
    ChainDescriptor("evmos", "Evmos", ("https://evm.evmos.org:8545", "https://rpc.ankr.com/evmos"), 9001),
    ChainDescriptor("palm", "Palm", ("https://palm-mainnet.infura.io",), 11297108109),
    ChainDescriptor("boba", "Boba Network", ("https://mainnet.boba.network",), 288),
    ChainDescriptor("telos", "Telos EVM", ("https://mainnet.telos.net/evm",), 40),
)

# Keyed provider URL patterns, prepended when the matching key is configured
ALCHEMY_PATTERNS = {
    "eth": "https://eth-mainnet.alchemyapi.io/v2/{key}",
    "polygon": "https://polygon-mainnet.g.alchemy.com/v2/{key}",
}

INFURA_PATTERNS = {
    "eth": "https://mainnet.infura.io/v3/{key}",
    "polygon": "https://polygon-mainnet.infura.io/v3/{key}",
}


def dedupe(urls: Iterable[str]) -> List[str]:
    """Remove duplicate URLs, preserving first occurrence order."""
    seen = set()
    unique = []
    for url in urls:
        if url and url not in seen:
            unique.append(url)
            seen.add(url)
    return unique


class ChainRegistry:
    """Immutable lookup of ChainDescriptor by chain key."""

    def __init__(self, chains: Iterable[ChainDescriptor] = DEFAULT_CHAINS):
        self._chains: Dict[str, ChainDescriptor] = {c.key: c for c in chains}

    def get(self, chain_key: str) -> ChainDescriptor | None:
        return self._chains.get(chain_key.lower())

    def chains(self) -> List[ChainDescriptor]:
        return list(self._chains.values())

    def __contains__(self, chain_key: str) -> bool:
        return chain_key.lower() in self._chains

    def with_provider_keys(
        self,
        alchemy_api_key: str | None = None,
        infura_project_id: str | None = None,
    ) -> "ChainRegistry":
        """Return a registry with keyed Alchemy/Infura URLs ahead of the public ones."""
        chains = []
        for chain in self._chains.values():
            keyed = []
            if alchemy_api_key and chain.key in ALCHEMY_PATTERNS:
                keyed.append(ALCHEMY_PATTERNS[chain.key].format(key=alchemy_api_key))
            if infura_project_id and chain.key in INFURA_PATTERNS:
                keyed.append(INFURA_PATTERNS[chain.key].format(key=infura_project_id))
            if keyed:
                chain = replace(chain, endpoints=tuple(dedupe(keyed + list(chain.endpoints))))
            chains.append(chain)
        return ChainRegistry(chains)

    def resolve_endpoints(
        self,
        chain_key: str,
        overrides: EndpointOverrides | None = None,
    ) -> List[str]:
        """Compute the ordered endpoint list for a chain.

        Args:
            chain_key: Chain identifier (e.g. "eth", "polygon")
            overrides: Optional per-chain and global endpoint overrides

        Returns:
            De-duplicated list of RPC URLs, highest priority first

        Raises:
            UnknownChain: if the chain has neither a descriptor nor a per-chain override
        """
        overrides = overrides or NO_OVERRIDES
        key = chain_key.lower()
        chain_override = list(overrides.per_chain.get(key, ()))

        if chain_override:
            endpoints = chain_override
        else:
            descriptor = self._chains.get(key)
            if descriptor is None:
                raise UnknownChain(chain_key)
            endpoints = list(descriptor.endpoints)

        return dedupe(list(overrides.global_endpoints) + endpoints)


DEFAULT_REGISTRY = ChainRegistry()


def resolve_endpoints(
    chain_key: str,
    overrides: EndpointOverrides | None = None,
    registry: ChainRegistry = DEFAULT_REGISTRY,
) -> List[str]:
    return registry.resolve_endpoints(chain_key, overrides)
