# tests/helpers.py

from __future__ import annotations

import asyncio
import json
from collections import namedtuple
from typing import Any, Callable

import aiohttp

from matchsync.sync.errors import PersistenceFailure
from matchsync.sync.models import MatchDetail

WsMsg = namedtuple("WsMsg", "type data extra")


class FakeClock:
    def __init__(self, now: float = 1_000.0):
        self.now = float(now)

    def __call__(self) -> float:
        return self.now

    def advance(self, dt: float) -> float:
        self.now += dt
        return self.now


class FakeProvider:
    """Match provider double; ids are listed newest first like the real API."""

    def __init__(self, match_ids: list[str] | None = None, list_error: Exception | None = None):
        self.match_ids = list(match_ids or [])
        self.list_error = list_error
        self.detail_errors: dict[str, Exception] = {}
        self.list_calls: list[dict[str, Any]] = []
        self.fetched: list[str] = []

    async def list_match_ids(self, account_key: str, since: float | None = None, limit: int = 500) -> list[str]:
        self.list_calls.append({"account_key": account_key, "since": since, "limit": limit})
        if self.list_error:
            raise self.list_error
        return self.match_ids[:limit]

    async def fetch_match_detail(self, match_id: str) -> MatchDetail:
        self.fetched.append(match_id)
        err = self.detail_errors.get(match_id)
        if err:
            raise err
        return MatchDetail(match_id=match_id, data={"metadata": {"matchId": match_id}})


class FailingLedger:
    """Wraps a store so `record_match` fails for chosen match ids."""

    def __init__(self, store, fail_ids: set[str]):
        self._store = store
        self.fail_ids = set(fail_ids)

    def record_match(self, account_key: str, detail: MatchDetail) -> bool:
        if detail.match_id in self.fail_ids:
            raise PersistenceFailure(f"disk full while writing {detail.match_id}")
        return self._store.record_match(account_key, detail)

    def __getattr__(self, name: str):
        return getattr(self._store, name)


class FakeServerWs:
    """Stands in for a hub-side web.WebSocketResponse."""

    def __init__(self, fail: bool = False):
        self.sent: list[str] = []
        self.closed = False
        self.fail = fail

    async def send_str(self, data: str) -> None:
        if self.fail:
            raise ConnectionResetError("peer went away")
        self.sent.append(data)

    async def close(self) -> None:
        self.closed = True

    def events(self) -> list[dict[str, Any]]:
        return [json.loads(s) for s in self.sent]


class FakeClientWs:
    """Stands in for aiohttp's ClientWebSocketResponse."""

    def __init__(self):
        self.sent: list[str] = []
        self.closed = False
        self._q: asyncio.Queue = asyncio.Queue()

    async def send_str(self, data: str) -> None:
        if self.closed:
            raise ConnectionResetError("socket closed")
        self.sent.append(data)

    def feed(self, payload: dict[str, Any]) -> None:
        self._q.put_nowait(WsMsg(aiohttp.WSMsgType.TEXT, json.dumps(payload), None))

    def drop(self) -> None:
        self._q.put_nowait(None)

    async def close(self) -> None:
        self.closed = True
        self._q.put_nowait(None)

    def __aiter__(self):
        return self

    async def __anext__(self):
        msg = await self._q.get()
        if msg is None:
            self.closed = True
            raise StopAsyncIteration
        return msg


class FakeSession:
    """`ws_connect` hands out the scripted sockets / errors in order."""

    def __init__(self, outcomes: list[Any]):
        self.outcomes = list(outcomes)
        self.connects = 0
        self.closed = False

    async def ws_connect(self, url: str, **kwargs) -> FakeClientWs:
        self.connects += 1
        if not self.outcomes:
            raise aiohttp.ClientConnectionError("connection refused")
        nxt = self.outcomes.pop(0)
        if isinstance(nxt, Exception):
            raise nxt
        return nxt

    async def close(self) -> None:
        self.closed = True


async def wait_until(pred: Callable[[], bool], timeout: float = 2.0) -> None:
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not pred():
        if loop.time() > deadline:
            raise AssertionError("condition not reached in time")
        await asyncio.sleep(0.001)
