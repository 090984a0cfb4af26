"""RPC endpoint handles, liveness probing and the pooled provider.

This module provides:
- Endpoint: a handle for a single JSON-RPC URL backed by an AsyncWeb3 instance
- probe_endpoint: a bounded-time reachability gate (current block number)
- PooledConnection: races several endpoints and accepts the first success
- ProviderCache: one PooledConnection per chain, rebuilt when the endpoint list changes

Timeouts are implemented by racing the call against a deadline. A call that
loses the race is abandoned; the HTTP request underneath may still complete
and its result is discarded.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections import deque
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Sequence, Tuple
from urllib.parse import urlparse

import aiohttp
from web3 import AsyncWeb3, AsyncHTTPProvider
from web3.eth import AsyncEth

from supply_registry.config import get_settings
from supply_registry.errors import NoEndpoints
from supply_registry.services.metrics import record_probe, record_rpc_call

logger = logging.getLogger(__name__)

Web3Call = Callable[[AsyncWeb3], Awaitable[Any]]


def endpoint_label(url: str) -> str:
    """Host part of an RPC URL, safe for logs and metric labels (no API keys)."""
    parsed = urlparse(url)
    return parsed.hostname or url


def build_web3(url: str, request_timeout: float = 10.0) -> AsyncWeb3:
    return AsyncWeb3(
        AsyncHTTPProvider(
            url,
            request_kwargs={"timeout": aiohttp.ClientTimeout(total=request_timeout)},
        ),
        modules={"eth": (AsyncEth,)},
    )


class CallWindow:
    """Sliding window of (timestamp, ok, duration) samples for one endpoint."""

    def __init__(self, window_seconds: float = 60.0):
        self.window_seconds = window_seconds
        self._samples: deque = deque()

    def record(self, ok: bool, duration: float):
        now = time.time()
        self._samples.append((now, ok, duration))
        self._expire(now)

    def _expire(self, now: float):
        cutoff = now - self.window_seconds
        while self._samples and self._samples[0][0] < cutoff:
            self._samples.popleft()

    def snapshot(self) -> dict:
        self._expire(time.time())
        total = len(self._samples)
        if not total:
            return {"calls": 0, "error_rate": 0.0, "avg_latency_ms": None}
        errors = sum(1 for _, ok, _ in self._samples if not ok)
        latency = sum(d for _, _, d in self._samples) / total
        return {
            "calls": total,
            "error_rate": round(errors / total, 4),
            "avg_latency_ms": round(latency * 1000, 1),
        }


class Endpoint:
    """Handle for a single RPC endpoint."""

    def __init__(
        self,
        url: str,
        priority: int = 0,
        stall_timeout: float = 0.75,
        web3: AsyncWeb3 | None = None,
        request_timeout: float = 10.0,
    ):
        self.url = url
        self.name = endpoint_label(url)
        self.priority = priority
        self.stall_timeout = stall_timeout
        self.consecutive_failures = 0
        self._request_timeout = request_timeout
        self._web3 = web3
        self._window = CallWindow()

    @property
    def web3(self) -> AsyncWeb3:
        if self._web3 is None:
            self._web3 = build_web3(self.url, self._request_timeout)
        return self._web3

    async def execute(self, func: Web3Call, method: str = "call") -> Any:
        """Run func against this endpoint's web3 instance, tracking the outcome."""
        start_time = time.time()
        try:
            result = await func(self.web3)
        except asyncio.CancelledError:
            record_rpc_call(self.name, method, "cancelled", time.time() - start_time)
            raise
        except Exception as e:
            duration = time.time() - start_time
            self.consecutive_failures += 1
            self._window.record(False, duration)
            record_rpc_call(self.name, method, "error", duration, e)
            if self.consecutive_failures == 3:
                logger.warning(f"RPC endpoint {self.name} failed 3 calls in a row, last: {e}")
            raise
        duration = time.time() - start_time
        self.consecutive_failures = 0
        self._window.record(True, duration)
        record_rpc_call(self.name, method, "success", duration)
        return result

    @property
    def stats(self) -> dict:
        return {
            "name": self.name,
            "priority": self.priority,
            "stall_timeout": self.stall_timeout,
            "consecutive_failures": self.consecutive_failures,
            **self._window.snapshot(),
        }

    def __repr__(self) -> str:
        return f"Endpoint({self.name!r}, priority={self.priority})"


class ProbeResult(Enum):
    OK = "ok"
    TIMED_OUT = "timed_out"
    UNREACHABLE = "unreachable"


async def _block_number(web3: AsyncWeb3) -> int:
    return await web3.eth.block_number


async def probe_endpoint(endpoint, timeout: float) -> ProbeResult:
    """
    Check within a bounded time whether an endpoint answers a cheap read.

    The block number itself is discarded; the probe only gates whether the
    metadata reads are worth attempting.

    Args:
        endpoint: Endpoint (or any handle exposing execute())
        timeout: Seconds allowed before the probe counts as timed out

    Returns:
        ProbeResult.OK, ProbeResult.TIMED_OUT or ProbeResult.UNREACHABLE
    """
    label = getattr(endpoint, "name", repr(endpoint))
    try:
        await asyncio.wait_for(endpoint.execute(_block_number, "eth_blockNumber"), timeout)
    except asyncio.TimeoutError:
        logger.warning(f"RPC probe timed out after {timeout}s on {label}")
        result = ProbeResult.TIMED_OUT
    except Exception as e:
        logger.warning(f"RPC probe failed on {label}: {e}")
        result = ProbeResult.UNREACHABLE
    else:
        result = ProbeResult.OK
    record_probe(label, result.value)
    return result


class PooledConnection:
    """
    Aggregated connection over several endpoints of one chain.

    Each call starts on the highest-priority endpoint. When that endpoint
    stalls past its stall timeout, or fails, the next one is started as
    well. The first successful response wins (quorum of 1) and the calls
    still in flight are cancelled.
    """

    QUORUM = 1

    def __init__(self, chain_key: str, endpoints: Sequence[Endpoint]):
        self.chain_key = chain_key
        self._endpoints = sorted(endpoints, key=lambda e: e.priority)
        self.name = f"pooled:{chain_key}"

    @classmethod
    def from_urls(
        cls,
        chain_key: str,
        urls: Sequence[str],
        stall_timeout: float = 0.75,
        request_timeout: float = 10.0,
        endpoint_factory: Callable[..., Endpoint] = Endpoint,
    ) -> "PooledConnection":
        # Earlier endpoints get a shorter stall window before the next one joins
        endpoints = [
            endpoint_factory(
                url,
                priority=i,
                stall_timeout=stall_timeout * (i + 1),
                request_timeout=request_timeout,
            )
            for i, url in enumerate(urls)
        ]
        return cls(chain_key, endpoints)

    @property
    def endpoints(self) -> List[Endpoint]:
        return list(self._endpoints)

    @property
    def urls(self) -> Tuple[str, ...]:
        return tuple(e.url for e in self._endpoints)

    async def execute(self, func: Web3Call, method: str = "call") -> Any:
        """Run func on the pool, returning the first successful result.

        Raises:
            NoEndpoints: if the pool is empty
            Exception: the last endpoint error when every endpoint failed
        """
        if not self._endpoints:
            raise NoEndpoints(self.chain_key)

        in_flight: Dict[asyncio.Future, Endpoint] = {}
        next_index = 0
        last_error: BaseException | None = None

        def start_next() -> Endpoint:
            nonlocal next_index
            endpoint = self._endpoints[next_index]
            next_index += 1
            task = asyncio.ensure_future(endpoint.execute(func, method))
            in_flight[task] = endpoint
            return endpoint

        current = start_next()
        try:
            while in_flight:
                has_more = next_index < len(self._endpoints)
                done, _ = await asyncio.wait(
                    list(in_flight),
                    timeout=current.stall_timeout if has_more else None,
                    return_when=asyncio.FIRST_COMPLETED,
                )

                if not done:
                    logger.debug(
                        f"{self.name}: {current.name} stalled for "
                        f"{current.stall_timeout}s, starting next endpoint"
                    )
                    current = start_next()
                    continue

                for task in done:
                    endpoint = in_flight.pop(task)
                    error = task.exception()
                    if error is None:
                        return task.result()
                    last_error = error
                    logger.debug(f"{self.name}: {endpoint.name} failed {method}: {error}")

                # A failure hands over to the next endpoint right away
                if next_index < len(self._endpoints):
                    current = start_next()
        finally:
            for task in in_flight:
                task.cancel()

        raise last_error or RuntimeError(f"All RPC endpoints failed for {self.chain_key}")

    @property
    def stats(self) -> dict:
        return {
            "chain": self.chain_key,
            "quorum": self.QUORUM,
            "endpoints": [e.stats for e in self._endpoints],
        }


class ProviderCache:
    """
    Per-chain cache of PooledConnection instances.

    An entry is rebuilt whenever it is requested with an endpoint list that
    differs from the one it was built from, so override changes take effect
    on the next resolution. Entries are replaced or removed whole, which
    keeps the plain dict safe under interleaved coroutines.
    """

    def __init__(
        self,
        stall_timeout: float = 0.75,
        request_timeout: float = 10.0,
        endpoint_factory: Callable[..., Endpoint] = Endpoint,
    ):
        self._stall_timeout = stall_timeout
        self._request_timeout = request_timeout
        self._endpoint_factory = endpoint_factory
        self._connections: Dict[str, PooledConnection] = {}

    def get(self, chain_key: str, endpoints: Sequence[str]) -> PooledConnection:
        key = chain_key.lower()
        urls = tuple(endpoints)
        pooled = self._connections.get(key)
        if pooled is not None and pooled.urls == urls:
            return pooled

        if pooled is not None:
            logger.info(f"Endpoint list changed for {key}, rebuilding pooled connection")
        pooled = PooledConnection.from_urls(
            key,
            urls,
            stall_timeout=self._stall_timeout,
            request_timeout=self._request_timeout,
            endpoint_factory=self._endpoint_factory,
        )
        self._connections[key] = pooled
        return pooled

    def invalidate(self, chain_key: str | None = None) -> int:
        """Discard one chain's pooled connection, or all of them.

        Returns:
            Number of entries discarded
        """
        if chain_key is None:
            count = len(self._connections)
            self._connections.clear()
            return count
        return 1 if self._connections.pop(chain_key.lower(), None) is not None else 0

    def __contains__(self, chain_key: str) -> bool:
        return chain_key.lower() in self._connections

    def __len__(self) -> int:
        return len(self._connections)

    @property
    def stats(self) -> dict:
        return {key: pooled.stats for key, pooled in self._connections.items()}


# Singleton instance
_provider_cache: ProviderCache | None = None


def get_provider_cache() -> ProviderCache:
    """Get the process-wide ProviderCache."""
    global _provider_cache
    if _provider_cache is None:
        settings = get_settings()
        _provider_cache = ProviderCache(
            stall_timeout=settings.stall_timeout_seconds,
            request_timeout=settings.rpc_request_timeout_seconds,
        )
    return _provider_cache
