"""Token list based logo discovery.

Downloads token lists (Uniswap format by default), caches the combined
entries on disk and in memory, and looks up a logo URL by contract address.
"""

from __future__ import annotations

import asyncio
import json
import logging
import time
from pathlib import Path
from typing import Any, Dict, List, Sequence

import aiohttp

from supply_registry.core.chains import ChainRegistry, DEFAULT_REGISTRY

logger = logging.getLogger(__name__)


class TokenListService:
    def __init__(
        self,
        urls: Sequence[str],
        cache_path: str | Path,
        ttl_seconds: float = 3600.0,
        registry: ChainRegistry = DEFAULT_REGISTRY,
        request_timeout: float = 5.0,
    ):
        self._urls = list(urls)
        self._cache_path = Path(cache_path)
        self._ttl = ttl_seconds
        self._registry = registry
        self._request_timeout = request_timeout
        self._memory: tuple[List[Dict[str, Any]], float] | None = None

    async def _fetch_list(self, session: aiohttp.ClientSession, url: str) -> List[Dict[str, Any]]:
        try:
            timeout = aiohttp.ClientTimeout(total=self._request_timeout)
            async with session.get(url, timeout=timeout) as response:
                if response.status != 200:
                    logger.warning(f"Token list {url} returned HTTP {response.status}")
                    return []
                data = await response.json(content_type=None)
        except (aiohttp.ClientError, asyncio.TimeoutError, ValueError) as e:
            logger.warning(f"Token list {url} fetch failed: {e}")
            return []

        tokens = data.get("tokens") if isinstance(data, dict) else None
        if not isinstance(tokens, list):
            logger.warning(f"Token list {url} has no tokens array")
            return []
        return [{**t, "source": url} for t in tokens if isinstance(t, dict) and t.get("address")]

    async def refresh(self) -> List[Dict[str, Any]]:
        """Download every configured list and rewrite the cache.

        Returns:
            Combined token entries (lists that failed to download are skipped)
        """
        entries: List[Dict[str, Any]] = []
        async with aiohttp.ClientSession() as session:
            for url in self._urls:
                entries.extend(await self._fetch_list(session, url))

        self._cache_path.parent.mkdir(parents=True, exist_ok=True)
        self._cache_path.write_text(json.dumps(entries, indent=2), encoding="utf-8")
        self._memory = (entries, time.time())
        logger.info(f"Token list cache refreshed with {len(entries)} entries")
        return entries

    def load_cached(self) -> List[Dict[str, Any]]:
        if self._memory is not None:
            entries, loaded_at = self._memory
            if time.time() - loaded_at < self._ttl:
                return entries

        if not self._cache_path.exists():
            return []
        try:
            entries = json.loads(self._cache_path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as e:
            logger.warning(f"Unreadable token list cache {self._cache_path}: {e}")
            return []
        if not isinstance(entries, list):
            return []
        self._memory = (entries, time.time())
        return entries

    async def find_logo(self, chain_key: str, address: str) -> str | None:
        """Find a logo URL for a token, refreshing the cache once if it is empty."""
        tokens = self.load_cached()
        if not tokens:
            tokens = await self.refresh()

        chain = self._registry.get(chain_key)
        chain_id = chain.chain_id if chain else None
        normalized = address.lower()

        for token in tokens:
            if str(token.get("address", "")).lower() != normalized:
                continue
            token_chain_id = token.get("chainId")
            if chain_id is not None and token_chain_id is not None and token_chain_id != chain_id:
                continue
            logo = token.get("logoURI") or token.get("logo")
            if logo:
                return logo
        return None
