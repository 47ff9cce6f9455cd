"""Riot match-v5 client used by the sync worker.

Only two calls are needed: the (paged, newest-first) match id list for a
player and the detail of a single match. HTTP failures are mapped onto the
sync error taxonomy so the worker can decide between skip and abort.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any

import aiohttp

from matchsync.net.rate_limit import TokenBucket
from matchsync.sync.config import SyncConfig
from matchsync.sync.errors import MatchNotFound, ProviderRateLimited, ProviderUnavailable
from matchsync.sync.models import MatchDetail

logger = logging.getLogger(__name__)

PAGE_SIZE = 100


def _retry_after(resp: aiohttp.ClientResponse) -> float | None:
    v = resp.headers.get("Retry-After")
    if not v:
        return None
    try:
        return float(v)
    except ValueError:
        return None


class RiotMatchProvider:
    def __init__(self, config: SyncConfig, session: aiohttp.ClientSession | None = None):
        self.config = config
        self.base_url = config.provider_base_url.rstrip("/")
        self.bucket = TokenBucket(rate_per_sec=config.provider_requests_per_sec, burst=config.provider_burst)
        self._session = session
        self._owns_session = session is None
        self._headers = {"X-Riot-Token": config.provider_api_key} if config.provider_api_key else {}

    async def __aenter__(self) -> "RiotMatchProvider":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self.config.provider_timeout),
            )
            self._owns_session = True
        return self._session

    async def close(self) -> None:
        if self._session is not None and self._owns_session and not self._session.closed:
            await self._session.close()
        self._session = None

    async def _get_json(self, path: str, params: dict[str, Any] | None = None) -> Any:
        await self.bucket.acquire()
        url = f"{self.base_url}{path}"
        try:
            async with self._get_session().get(url, params=params, headers=self._headers) as resp:
                if resp.status == 429:
                    raise ProviderRateLimited(
                        f"rate limited by match provider ({path})", retry_after=_retry_after(resp)
                    )
                if resp.status == 404:
                    raise MatchNotFound(f"not found: {path}")
                if resp.status >= 400:
                    raise ProviderUnavailable(f"provider returned HTTP {resp.status} for {path}")
                return await resp.json()
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise ProviderUnavailable(f"provider request failed for {path}: {e!r}") from e

    async def list_match_ids(self, account_key: str, since: float | None = None, limit: int = 500) -> list[str]:
        """Match ids for a player, newest first, at most `limit`."""
        out: list[str] = []
        start = 0
        while len(out) < limit:
            params: dict[str, Any] = {"start": start, "count": PAGE_SIZE}
            if since is not None:
                params["startTime"] = int(since)
            page = await self._get_json(f"/lol/match/v5/matches/by-puuid/{account_key}/ids", params=params)
            if not isinstance(page, list):
                raise ProviderUnavailable("match id list is not an array")
            ids = [str(m) for m in page if m]
            out.extend(ids)
            if len(page) < PAGE_SIZE:
                break
            start += PAGE_SIZE
        return out[:limit]

    async def fetch_match_detail(self, match_id: str) -> MatchDetail:
        payload = await self._get_json(f"/lol/match/v5/matches/{match_id}")
        if not isinstance(payload, dict):
            raise ProviderUnavailable(f"match {match_id} payload is not an object")
        return MatchDetail.from_provider(match_id, payload)
