"""Error taxonomy for token registration and metadata resolution.

Endpoint-level errors (EndpointUnreachable, EndpointTimedOut) are raised and
absorbed inside the resolver. Only InvalidAddress, UnknownChain, NoEndpoints
and AllEndpointsExhausted reach callers of the resolver; StorageConflict and
TokenNotFound come from the storage layer.
"""

from __future__ import annotations


class SupplyRegistryError(Exception):
    """Base class for all errors raised by this package."""


class InvalidAddress(SupplyRegistryError, ValueError):
    def __init__(self, address: object):
        self.address = address
        super().__init__(
            f"Invalid contract address: {address!r} (expected 0x followed by 40 hex chars)"
        )


class UnknownChain(SupplyRegistryError, KeyError):
    def __init__(self, chain_key: str):
        self.chain_key = chain_key
        super().__init__(chain_key)

    def __str__(self) -> str:
        return f"Unknown chain: {self.chain_key}"


class NoEndpoints(SupplyRegistryError):
    def __init__(self, chain_key: str):
        self.chain_key = chain_key
        super().__init__(f"No RPC endpoints configured for chain {chain_key}")


class EndpointError(SupplyRegistryError):
    """A single endpoint failed. Never surfaced past the resolver."""

    def __init__(self, url: str, message: str):
        self.url = url
        super().__init__(f"{url}: {message}")


class EndpointUnreachable(EndpointError):
    pass


class EndpointTimedOut(EndpointError):
    pass


class MetadataFetchFailed(SupplyRegistryError):
    pass


class AllEndpointsExhausted(MetadataFetchFailed):
    def __init__(self, chain_key: str, attempts: int):
        self.chain_key = chain_key
        self.attempts = attempts
        super().__init__(
            f"Metadata fetch failed on chain {chain_key}: "
            f"no usable answer from {attempts} endpoint(s)"
        )


class StorageConflict(SupplyRegistryError):
    def __init__(self, address: str, chain_key: str):
        self.address = address
        self.chain_key = chain_key
        super().__init__(f"Token {address} is already registered on {chain_key}")


class TokenNotFound(SupplyRegistryError, LookupError):
    def __init__(self, token_id: int):
        self.token_id = token_id
        super().__init__(f"Token {token_id} not found")


class InvalidInput(SupplyRegistryError, ValueError):
    """A request field has the wrong type or an out-of-range value."""
