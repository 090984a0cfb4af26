"""On-chain ERC20 token metadata reads.

This module reads name, symbol, decimals and totalSupply from a token
contract through any endpoint handle (a single Endpoint or a
PooledConnection). Each call has its own timeout and a failing call only
blanks its own field.
"""

from __future__ import annotations

import asyncio
import logging
import re
from dataclasses import dataclass, fields
from typing import Any, Dict

from web3 import AsyncWeb3
from web3.exceptions import BadFunctionCallOutput

from supply_registry.errors import InvalidAddress, InvalidInput

logger = logging.getLogger(__name__)

ADDRESS_PATTERN = re.compile(r"^0x[0-9a-fA-F]{40}$")

# ERC20 ABI for metadata calls
ERC20_METADATA_ABI = [
    {
        "inputs": [],
        "name": "name",
        "outputs": [{"internalType": "string", "name": "", "type": "string"}],
        "stateMutability": "view",
        "type": "function",
    },
    {
        "inputs": [],
        "name": "symbol",
        "outputs": [{"internalType": "string", "name": "", "type": "string"}],
        "stateMutability": "view",
        "type": "function",
    },
    {
        "inputs": [],
        "name": "decimals",
        "outputs": [{"internalType": "uint8", "name": "", "type": "uint8"}],
        "stateMutability": "view",
        "type": "function",
    },
    {
        "inputs": [],
        "name": "totalSupply",
        "outputs": [{"internalType": "uint256", "name": "", "type": "uint256"}],
        "stateMutability": "view",
        "type": "function",
    },
]

METADATA_FUNCTIONS = ("name", "symbol", "decimals", "totalSupply")

# Older tokens (MKR, SAI) return name and symbol as bytes32
ERC20_BYTES32_ABI = [
    {
        "inputs": [],
        "name": function,
        "outputs": [{"internalType": "bytes32", "name": "", "type": "bytes32"}],
        "stateMutability": "view",
        "type": "function",
    }
    for function in ("name", "symbol")
]
BYTES32_FUNCTIONS = frozenset(("name", "symbol"))

# JSON keys used in storage and the HTTP API
_JSON_KEYS = {
    "name": "name",
    "symbol": "symbol",
    "decimals": "decimals",
    "total_supply": "totalSupply",
    "logo": "logo",
}


@dataclass
class TokenMetadata:
    """ERC20 token metadata. Every field is independently optional."""
    name: str | None = None
    symbol: str | None = None
    decimals: int | None = None
    total_supply: str | None = None  # Decimal string, uint256 can exceed 64 bits
    logo: str | None = None

    @property
    def is_useful(self) -> bool:
        """True when name, symbol or total supply was obtained."""
        return any(v is not None for v in (self.name, self.symbol, self.total_supply))

    def merged_with(self, other: "TokenMetadata") -> "TokenMetadata":
        """Return a copy where other's non-null fields replace ours."""
        values = {}
        for f in fields(self):
            theirs = getattr(other, f.name)
            values[f.name] = theirs if theirs is not None else getattr(self, f.name)
        return TokenMetadata(**values)

    def to_dict(self) -> Dict[str, Any]:
        return {key: getattr(self, attr) for attr, key in _JSON_KEYS.items()}

    @classmethod
    def from_dict(cls, data: Dict[str, Any] | None) -> "TokenMetadata":
        """Build metadata from its JSON form.

        Raises:
            InvalidInput: data is not an object, or a field has the wrong type
        """
        if data is None:
            return cls()
        if not isinstance(data, dict):
            raise InvalidInput("metadata must be a JSON object")

        values = {attr: data.get(key) for attr, key in _JSON_KEYS.items()}
        for attr in ("name", "symbol", "logo"):
            if values[attr] is not None and not isinstance(values[attr], str):
                raise InvalidInput(f"metadata.{_JSON_KEYS[attr]} must be a string")

        supply = values["total_supply"]
        if supply is not None:
            if isinstance(supply, bool) or not isinstance(supply, (int, str)) or (
                isinstance(supply, int) and supply < 0
            ):
                raise InvalidInput("metadata.totalSupply must be a decimal string")
            if isinstance(supply, str) and not supply.isdigit():
                raise InvalidInput(f"metadata.totalSupply is not a decimal integer: {supply!r}")
            values["total_supply"] = str(supply)

        decimals = values["decimals"]
        if decimals is not None:
            try:
                decimals = int(decimals)
            except (TypeError, ValueError):
                raise InvalidInput(f"metadata.decimals is not an integer: {decimals!r}")
            if isinstance(values["decimals"], bool) or not 0 <= decimals <= 255:
                raise InvalidInput(f"metadata.decimals out of range 0..255: {values['decimals']!r}")
            values["decimals"] = decimals
        return cls(**values)


def is_valid_address(address: object) -> bool:
    return isinstance(address, str) and bool(ADDRESS_PATTERN.match(address))


def validate_address(address: object) -> str:
    """Return the checksummed form of a 0x-prefixed 40-hex-char address.

    Raises:
        InvalidAddress: if the address does not match ^0x[0-9a-fA-F]{40}$
    """
    if not is_valid_address(address):
        raise InvalidAddress(address)
    return AsyncWeb3.to_checksum_address(address)


def _clean_text(value: Any) -> str | None:
    if isinstance(value, bytes):
        value = value.decode("utf-8", errors="ignore")
    if not isinstance(value, str):
        return None
    value = value.strip("\x00").strip()
    return value or None


def _clean_decimals(value: Any) -> int | None:
    if isinstance(value, bool) or not isinstance(value, int):
        return None
    if 0 <= value <= 255:
        return value
    return None


def _clean_supply(value: Any) -> str | None:
    if isinstance(value, bool) or not isinstance(value, int) or value < 0:
        return None
    return str(value)


async def _read_field(handle, address: str, function: str, timeout: float) -> Any:
    async def call(web3: AsyncWeb3):
        contract = web3.eth.contract(address=address, abi=ERC20_METADATA_ABI)
        try:
            return await getattr(contract.functions, function)().call()
        except BadFunctionCallOutput:
            if function not in BYTES32_FUNCTIONS:
                raise
        legacy = web3.eth.contract(address=address, abi=ERC20_BYTES32_ABI)
        return await getattr(legacy.functions, function)().call()

    label = getattr(handle, "name", repr(handle))
    try:
        return await asyncio.wait_for(handle.execute(call, function), timeout)
    except asyncio.TimeoutError:
        logger.debug(f"{function}() timed out after {timeout}s on {label} for {address}")
    except Exception as e:
        logger.debug(f"{function}() failed on {label} for {address}: {e}")
    return None


async def read_fields(handle, address: str, per_call_timeout: float) -> TokenMetadata:
    """
    Read ERC20 metadata fields from a contract.

    The four calls are issued concurrently and each is raced against its own
    timeout, so one slow call cannot starve the others. A failed or timed out
    call leaves its field as None.

    Args:
        handle: Endpoint or PooledConnection used for the calls
        address: Token contract address
        per_call_timeout: Seconds allowed for each individual call

    Returns:
        TokenMetadata with whatever fields succeeded (logo is never set here)

    Raises:
        InvalidAddress: if the address is malformed; no call is attempted
    """
    checksum_address = validate_address(address)

    name, symbol, decimals, total_supply = await asyncio.gather(
        *(
            _read_field(handle, checksum_address, function, per_call_timeout)
            for function in METADATA_FUNCTIONS
        )
    )

    return TokenMetadata(
        name=_clean_text(name),
        symbol=_clean_text(symbol),
        decimals=_clean_decimals(decimals),
        total_supply=_clean_supply(total_supply),
    )
