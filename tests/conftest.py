import asyncio
from unittest.mock import MagicMock

import pytest
import pytest_asyncio
from web3.exceptions import BadFunctionCallOutput

import supply_registry.core.resolver as resolver_module
import supply_registry.services.rpc as rpc_module
from supply_registry.config import get_settings
from supply_registry.database import Database
from supply_registry.services.rpc import Endpoint
from supply_registry.services.token_metadata import ERC20_BYTES32_ABI, METADATA_FUNCTIONS

# Checksummed burn address used throughout the tests
DEAD = "0x000000000000000000000000000000000000dEaD"

DEAD_TOKEN_FIELDS = {
    "name": "Dead Token",
    "symbol": "DEAD",
    "decimals": 18,
    "totalSupply": 1000000000000000000000,
}

# Field value that never resolves
HANG = object()


class FakeEth:
    """Stand-in for web3.eth that records every call made against it."""

    def __init__(self, fields=None, down=False, hang=False, block_number=19_000_000, bytes32_fields=None):
        self.fields = dict(fields or {})
        # Functions whose string decoding fails, answered only through the bytes32 ABI
        self.bytes32_fields = dict(bytes32_fields or {})
        self.down = down
        self.hang = hang
        self._block_number = block_number
        self.block_number_calls = 0
        self.read_calls = []
        self.contract_addresses = []

    async def _respond(self, value):
        if self.hang or value is HANG:
            await asyncio.sleep(3600)
        if self.down:
            raise ConnectionError("connection refused")
        if isinstance(value, Exception):
            raise value
        return value

    @property
    def block_number(self):
        self.block_number_calls += 1
        return self._respond(self._block_number)

    def contract(self, address, abi):
        self.contract_addresses.append(address)
        contract = MagicMock()
        legacy = abi is ERC20_BYTES32_ABI
        for function in METADATA_FUNCTIONS:
            getattr(contract.functions, function).return_value.call = self._reader(function, legacy)
        return contract

    def _reader(self, function, legacy):
        async def call():
            self.read_calls.append(function)
            if legacy:
                value = self.bytes32_fields.get(function, ValueError("execution reverted"))
            elif function in self.bytes32_fields:
                value = BadFunctionCallOutput(f"Could not decode contract function call to {function}()")
            else:
                value = self.fields.get(function, ValueError("execution reverted"))
            return await self._respond(value)
        return call


def make_web3(**kwargs):
    web3 = MagicMock()
    web3.eth = FakeEth(**kwargs)
    return web3


@pytest.fixture
def fake_web3():
    """Factory for mock AsyncWeb3 instances backed by FakeEth."""
    return make_web3


@pytest.fixture
def endpoint_factory():
    """Build an Endpoint factory that maps each URL to a prepared mock web3."""

    def build(web3_by_url):
        def factory(url, priority=0, stall_timeout=0.75, request_timeout=10.0):
            return Endpoint(
                url,
                priority=priority,
                stall_timeout=stall_timeout,
                request_timeout=request_timeout,
                web3=web3_by_url[url],
            )
        return factory

    return build


@pytest_asyncio.fixture
async def database(tmp_path):
    db = Database(f"sqlite+aiosqlite:///{tmp_path / 'supply.db'}")
    await db.init_db()
    yield db
    await db.close()


@pytest.fixture(autouse=True)
def reset_singletons(monkeypatch):
    """Reset module singletons and cached settings between tests to prevent cross-test pollution."""
    for name in ("RPC_OVERRIDES", "RPC_GLOBAL_OVERRIDES", "ALCHEMY_API_KEY", "INFURA_PROJECT_ID"):
        monkeypatch.delenv(name, raising=False)
    rpc_module._provider_cache = None
    resolver_module._resolver = None
    get_settings.cache_clear()
    yield
    rpc_module._provider_cache = None
    resolver_module._resolver = None
    get_settings.cache_clear()
