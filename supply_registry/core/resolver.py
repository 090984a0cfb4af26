"""Multi-endpoint ERC20 metadata resolution.

Resolution order for one (address, chain) request:

1. Validate the address and compute the chain's endpoint list. Failures here
   raise before any network call.
2. Fast path: probe the chain's pooled connection and, if it answers,
   read the metadata through it.
3. Slow path: walk the endpoints in priority order. Each endpoint is probed
   first and skipped if the probe fails; otherwise its metadata is read.
4. The first read with a name, symbol or total supply wins. Partial answers
   from different endpoints are never merged.

Worst-case latency is bounded by the probe and per-call timeouts:
probe_timeout + call_timeout for the fast path, and the same again per endpoint.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Tuple, Union

from supply_registry.config import get_settings
from supply_registry.core.chains import ChainRegistry, DEFAULT_REGISTRY, EndpointOverrides
from supply_registry.errors import (
    AllEndpointsExhausted,
    EndpointError,
    EndpointTimedOut,
    EndpointUnreachable,
    NoEndpoints,
)
from supply_registry.services.metrics import ResolutionTimer, record_resolution
from supply_registry.services.rpc import (
    PooledConnection,
    ProbeResult,
    ProviderCache,
    get_provider_cache,
    probe_endpoint,
)
from supply_registry.services.token_metadata import TokenMetadata, read_fields, validate_address

logger = logging.getLogger(__name__)


class ResolutionPath(Enum):
    POOLED = "pooled"
    ENDPOINT = "endpoint"


class FailureReason(Enum):
    ALL_ENDPOINTS_EXHAUSTED = "all_endpoints_exhausted"


@dataclass(frozen=True)
class Success:
    metadata: TokenMetadata
    endpoint: str
    path: ResolutionPath

    ok = True


@dataclass(frozen=True)
class Failure:
    reason: FailureReason
    chain_key: str
    errors: Tuple[EndpointError, ...] = field(default_factory=tuple)

    ok = False

    @property
    def attempts(self) -> int:
        return len(self.errors)


ResolutionOutcome = Union[Success, Failure]


class MetadataResolver:
    """Resolve ERC20 metadata across a chain's prioritized RPC endpoints."""

    def __init__(
        self,
        registry: ChainRegistry = DEFAULT_REGISTRY,
        provider_cache: ProviderCache | None = None,
        probe_timeout: float = 2.5,
        call_timeout: float = 7.0,
        use_pooled: bool = True,
    ):
        self._registry = registry
        self._providers = provider_cache if provider_cache is not None else ProviderCache()
        self.probe_timeout = probe_timeout
        self.call_timeout = call_timeout
        self.use_pooled = use_pooled

    @property
    def registry(self) -> ChainRegistry:
        return self._registry

    @property
    def provider_cache(self) -> ProviderCache:
        return self._providers

    async def resolve(
        self,
        address: str,
        chain_key: str,
        overrides: EndpointOverrides | None = None,
    ) -> ResolutionOutcome:
        """
        Resolve token metadata for a contract on a chain.

        Args:
            address: 0x-prefixed 40-hex-char contract address
            chain_key: Chain identifier from the registry (or an override key)
            overrides: Optional endpoint overrides for this resolution

        Returns:
            Success with the first useful metadata, or Failure once every
            endpoint was tried

        Raises:
            InvalidAddress: malformed address
            UnknownChain: chain not in the registry and not overridden
            NoEndpoints: the effective endpoint list is empty
        """
        checksum_address = validate_address(address)
        endpoints = self._registry.resolve_endpoints(chain_key, overrides)
        if not endpoints:
            raise NoEndpoints(chain_key)

        pooled = self._providers.get(chain_key, endpoints)

        with ResolutionTimer(chain_key):
            outcome = None
            if self.use_pooled:
                probe = await probe_endpoint(pooled, self.probe_timeout)
                if probe is ProbeResult.OK:
                    outcome = await self._resolve_pooled(pooled, checksum_address)
                else:
                    logger.warning(f"Skipping pooled read on {pooled.name}: probe {probe.value}")
            if outcome is None:
                outcome = await self._resolve_sequential(pooled, checksum_address, chain_key)

        if outcome.ok:
            record_resolution(chain_key, "success", outcome.path.value)
            logger.info(
                f"Resolved metadata for {checksum_address} on {chain_key} "
                f"via {outcome.endpoint} ({outcome.path.value})"
            )
        else:
            record_resolution(chain_key, "failure", "exhausted")
            logger.warning(
                f"Metadata resolution failed for {checksum_address} on {chain_key} "
                f"after {outcome.attempts} endpoint(s)"
            )
        return outcome

    async def resolve_token_metadata(
        self,
        address: str,
        chain_key: str,
        overrides: EndpointOverrides | None = None,
    ) -> TokenMetadata:
        """Like resolve(), but raise AllEndpointsExhausted instead of returning Failure."""
        outcome = await self.resolve(address, chain_key, overrides)
        if not outcome.ok:
            raise AllEndpointsExhausted(chain_key, outcome.attempts)
        return outcome.metadata

    async def _resolve_pooled(
        self,
        pooled: PooledConnection,
        address: str,
    ) -> Success | None:
        try:
            metadata = await read_fields(pooled, address, self.call_timeout)
        except Exception as e:
            logger.warning(f"Pooled metadata read failed on {pooled.name}: {e}")
            return None

        if metadata.is_useful:
            return Success(metadata=metadata, endpoint=pooled.name, path=ResolutionPath.POOLED)
        logger.warning(f"Pooled read on {pooled.name} returned no usable fields for {address}")
        return None

    async def _resolve_sequential(
        self,
        pooled: PooledConnection,
        address: str,
        chain_key: str,
    ) -> ResolutionOutcome:
        errors = []

        # Strictly one endpoint at a time to preserve priority order
        for endpoint in pooled.endpoints:
            probe = await probe_endpoint(endpoint, self.probe_timeout)
            if probe is ProbeResult.TIMED_OUT:
                errors.append(EndpointTimedOut(endpoint.url, f"probe exceeded {self.probe_timeout}s"))
                continue
            if probe is ProbeResult.UNREACHABLE:
                errors.append(EndpointUnreachable(endpoint.url, "probe failed"))
                continue

            metadata = await read_fields(endpoint, address, self.call_timeout)
            if metadata.is_useful:
                return Success(metadata=metadata, endpoint=endpoint.name, path=ResolutionPath.ENDPOINT)

            logger.warning(f"No usable metadata for {address} from {endpoint.name}")
            errors.append(EndpointError(endpoint.url, "no usable metadata fields"))

        return Failure(
            reason=FailureReason.ALL_ENDPOINTS_EXHAUSTED,
            chain_key=chain_key,
            errors=tuple(errors),
        )


# Singleton instance
_resolver: MetadataResolver | None = None


def get_metadata_resolver() -> MetadataResolver:
    """Get the process-wide MetadataResolver built from settings."""
    global _resolver
    if _resolver is None:
        settings = get_settings()
        _resolver = MetadataResolver(
            registry=DEFAULT_REGISTRY.with_provider_keys(
                settings.alchemy_api_key, settings.infura_project_id
            ),
            provider_cache=get_provider_cache(),
            probe_timeout=settings.probe_timeout_seconds,
            call_timeout=settings.call_timeout_seconds,
        )
    return _resolver


async def resolve_token_metadata(
    address: str,
    chain_key: str,
    overrides: EndpointOverrides | None = None,
) -> TokenMetadata:
    """Resolve metadata with the default resolver and settings-based overrides.

    Raises:
        InvalidAddress, UnknownChain, NoEndpoints, AllEndpointsExhausted
    """
    if overrides is None:
        overrides = EndpointOverrides.from_settings(get_settings())
    return await get_metadata_resolver().resolve_token_metadata(address, chain_key, overrides)
