"""Long-lived progress client with reconnect + subscription replay.

Usage:
    async with aiohttp.ClientSession() as session:
        client = ProgressClient("ws://localhost:8780/ws", session=session)
        client.start()
        await client.subscribe("puuid-123")
        ...
        print(client.get_progress("puuid-123"))
        await client.close()

Transport failures never raise into caller code: `is_connected` goes False,
`connection_error` holds the last error, and the client reconnects on its
own with exponential backoff.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable

import aiohttp

from matchsync.sync import protocol

logger = logging.getLogger(__name__)

BASE_RECONNECT_DELAY = 1.0
MAX_RECONNECT_DELAY = 30.0
MAX_RECONNECT_ATTEMPTS = 10


class ConnectionState(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    OPEN = "open"


class ProgressStatus(str, Enum):
    IDLE = "idle"
    SYNCING = "syncing"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass
class ProgressRecord:
    status: ProgressStatus = ProgressStatus.IDLE
    progress: int = 0
    total: int = 0
    matchId: str | None = None
    totalSynced: int | None = None
    error: str | None = None

    def reset(self) -> None:
        self.status = ProgressStatus.IDLE
        self.progress = 0
        self.total = 0
        self.matchId = None
        self.totalSynced = None
        self.error = None

    def apply(self, event: protocol.ProgressEvent) -> None:
        if isinstance(event, protocol.SyncProgressEvent):
            self.status = ProgressStatus.SYNCING
            self.progress = event.current
            self.total = event.total
            self.matchId = event.matchId or self.matchId
            self.error = None
        elif isinstance(event, protocol.SyncCompleteEvent):
            self.status = ProgressStatus.COMPLETED
            self.totalSynced = event.totalSynced
            # Fill the bar.
            self.progress = self.total
            self.error = None
        elif isinstance(event, protocol.SyncErrorEvent):
            self.status = ProgressStatus.FAILED
            self.error = event.message


class ProgressClient:
    def __init__(
        self,
        url: str,
        *,
        session: aiohttp.ClientSession | None = None,
        base_delay: float = BASE_RECONNECT_DELAY,
        max_delay: float = MAX_RECONNECT_DELAY,
        max_attempts: int | None = MAX_RECONNECT_ATTEMPTS,
        heartbeat: float | None = 10.0,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self.url = url
        self.base_delay = float(base_delay)
        self.max_delay = float(max_delay)
        self.max_attempts = max_attempts
        self.heartbeat = heartbeat

        self.state = ConnectionState.DISCONNECTED
        self.connection_error: str | None = None
        self.progress: dict[str, ProgressRecord] = {}

        self._session = session
        self._owns_session = session is None
        self._sleep = sleep
        self._ws = None
        self._attempts = 0
        self._closing = False
        self._task: asyncio.Task | None = None

    @property
    def is_connected(self) -> bool:
        return self.state == ConnectionState.OPEN

    @property
    def is_connecting(self) -> bool:
        return self.state == ConnectionState.CONNECTING

    @property
    def reconnect_attempts(self) -> int:
        return self._attempts

    def backoff_delay(self, attempt: int) -> float:
        return min(self.base_delay * (2 ** attempt), self.max_delay)

    # Lifecycle

    def start(self) -> None:
        if self._task and not self._task.done():
            return
        self._closing = False
        self._attempts = 0
        self._task = asyncio.create_task(self._run())

    async def close(self) -> None:
        self._closing = True
        ws = self._ws
        if ws is not None and not ws.closed:
            await ws.close()
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        self.state = ConnectionState.DISCONNECTED
        if self._owns_session and self._session is not None:
            await self._session.close()
            self._session = None

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None:
            self._session = aiohttp.ClientSession()
            self._owns_session = True
        return self._session

    async def _run(self) -> None:
        while not self._closing:
            self.state = ConnectionState.CONNECTING
            try:
                ws = await self._get_session().ws_connect(self.url, heartbeat=self.heartbeat)
            except (aiohttp.ClientError, OSError, asyncio.TimeoutError) as e:
                self.connection_error = str(e) or repr(e)
                logger.debug("progress hub connect failed: %s", self.connection_error)
            else:
                await self._on_open(ws)
                await self._read(ws)

            self.state = ConnectionState.DISCONNECTED
            if self._closing:
                break
            if self.max_attempts is not None and self._attempts >= self.max_attempts:
                self.connection_error = "max reconnection attempts reached"
                logger.warning("giving up on progress hub after %d attempts", self._attempts)
                break

            delay = self.backoff_delay(self._attempts)
            self._attempts += 1
            logger.debug("reconnecting in %.1fs (attempt %d)", delay, self._attempts)
            await self._sleep(delay)

    async def _on_open(self, ws) -> None:
        self._ws = ws
        self.state = ConnectionState.OPEN
        self._attempts = 0
        self.connection_error = None
        logger.debug("progress hub connected")
        # Replay subscriptions made before (or across) the drop.
        for key in list(self.progress):
            await self._send(protocol.Subscribe(accountKey=key).dumps())

    async def _read(self, ws) -> None:
        try:
            async for msg in ws:
                if msg.type == aiohttp.WSMsgType.TEXT:
                    self.handle_message(msg.data)
                elif msg.type == aiohttp.WSMsgType.ERROR:
                    self.connection_error = "WebSocket connection error"
                    break
        except (aiohttp.ClientError, ConnectionError) as e:
            self.connection_error = str(e) or repr(e)
        finally:
            self._ws = None
            if not ws.closed:
                await ws.close()

    async def _send(self, text: str) -> bool:
        ws = self._ws
        if ws is None or ws.closed or not self.is_connected:
            return False
        try:
            await ws.send_str(text)
            return True
        except (aiohttp.ClientError, ConnectionError, RuntimeError) as e:
            self.connection_error = str(e) or repr(e)
            logger.debug("send failed: %s", self.connection_error)
            return False

    # Subscriptions

    async def subscribe(self, account_key: str) -> None:
        if not account_key:
            return
        if account_key not in self.progress:
            self.progress[account_key] = ProgressRecord()
        await self._send(protocol.Subscribe(accountKey=account_key).dumps())

    async def unsubscribe(self, account_key: str) -> None:
        if not account_key:
            return
        self.progress.pop(account_key, None)
        await self._send(protocol.Unsubscribe(accountKey=account_key).dumps())

    def reset_progress(self, account_key: str) -> None:
        rec = self.progress.get(account_key)
        if rec is not None:
            rec.reset()

    def get_progress(self, account_key: str) -> ProgressRecord | None:
        return self.progress.get(account_key)

    def is_syncing(self, account_key: str) -> bool:
        rec = self.progress.get(account_key)
        return rec is not None and rec.status == ProgressStatus.SYNCING

    def handle_message(self, text: str) -> None:
        try:
            event = protocol.parse_event(text)
        except protocol.ProtocolError as e:
            logger.debug("ignoring hub message: %s", e)
            return
        rec = self.progress.get(event.accountKey)
        if rec is None:
            # Late event for a key we no longer track.
            return
        rec.apply(event)
