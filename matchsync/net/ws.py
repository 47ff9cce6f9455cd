"""Progress hub: WebSocket subscriptions + sync event broadcast."""

from __future__ import annotations

import asyncio
import logging
import threading
import time
import uuid
from dataclasses import dataclass, field
from typing import Any

from aiohttp import WSMsgType, web

from matchsync.net.rate_limit import TokenBucket
from matchsync.sync import protocol
from matchsync.sync.config import SyncConfig

logger = logging.getLogger(__name__)


@dataclass
class Connection:
    conn_id: str
    ws: Any  # web.WebSocketResponse, or anything with `send_str` / `close`
    created_at: float

    msg_bucket: TokenBucket
    send_lock: asyncio.Lock = field(default_factory=asyncio.Lock)


class ProgressHub:
    """Registry of live connections and the account keys they watch.

    Two maps are kept in step under one lock: connection -> keys and
    key -> connections. Broadcasts snapshot the subscriber set under the
    lock and send outside of it.
    """

    def __init__(self, config: SyncConfig):
        self.config = config
        self._lock = threading.Lock()
        self._conns: dict[str, Connection] = {}
        self._keys_by_conn: dict[str, set[str]] = {}
        self._conns_by_key: dict[str, set[str]] = {}

    @property
    def connection_count(self) -> int:
        with self._lock:
            return len(self._conns)

    @property
    def subscribed_key_count(self) -> int:
        with self._lock:
            return len(self._conns_by_key)

    def _origin_allowed(self, origin: str | None) -> bool:
        cfg = self.config
        if cfg.cors_allow_all:
            return True
        if not origin:
            return False
        return origin in cfg.cors_allowed_origins

    def new_connection(self, ws: Any) -> Connection:
        conn = Connection(
            conn_id=uuid.uuid4().hex,
            ws=ws,
            created_at=time.time(),
            msg_bucket=TokenBucket(rate_per_sec=self.config.ws_msgs_per_sec, burst=self.config.ws_msg_burst),
        )
        with self._lock:
            self._conns[conn.conn_id] = conn
            self._keys_by_conn[conn.conn_id] = set()
        return conn

    async def handle(self, request: web.Request) -> web.StreamResponse:
        if not self._origin_allowed(request.headers.get("Origin")):
            raise web.HTTPForbidden(text="origin not allowed")

        ws = web.WebSocketResponse(heartbeat=self.config.ws_heartbeat, max_msg_size=self.config.ws_max_msg_size)
        await ws.prepare(request)

        conn = self.new_connection(ws)
        logger.debug("websocket connected: %s", conn.conn_id)

        try:
            async for msg in ws:
                if msg.type == WSMsgType.TEXT:
                    self.on_text(conn, msg.data)
                elif msg.type == WSMsgType.ERROR:
                    logger.debug("websocket %s error: %r", conn.conn_id, ws.exception())
                    break
        finally:
            await self.disconnect(conn)
        return ws

    def on_text(self, conn: Connection, text: str) -> None:
        if not conn.msg_bucket.allow():
            return
        try:
            msg_type, data = protocol.loads(text)
            parser = protocol.VALID_C2S.get(msg_type)
            if parser is None:
                logger.warning("unknown websocket message type from %s: %s", conn.conn_id, msg_type)
                return
            msg = parser.parse(data)
        except protocol.ProtocolError as e:
            logger.warning("bad websocket message from %s: %s", conn.conn_id, e)
            return

        if isinstance(msg, protocol.Subscribe):
            self.subscribe(conn, msg.accountKey)
        else:
            self.unsubscribe(conn, msg.accountKey)

    def subscribe(self, conn: Connection, account_key: str) -> None:
        with self._lock:
            if conn.conn_id not in self._conns:
                return
            self._keys_by_conn.setdefault(conn.conn_id, set()).add(account_key)
            self._conns_by_key.setdefault(account_key, set()).add(conn.conn_id)
        logger.debug("connection %s subscribed to %s", conn.conn_id, account_key)

    def unsubscribe(self, conn: Connection, account_key: str) -> None:
        with self._lock:
            self._unsubscribe_locked(conn.conn_id, account_key)
        logger.debug("connection %s unsubscribed from %s", conn.conn_id, account_key)

    def _unsubscribe_locked(self, conn_id: str, account_key: str) -> None:
        keys = self._keys_by_conn.get(conn_id)
        if keys is not None:
            keys.discard(account_key)
        subs = self._conns_by_key.get(account_key)
        if subs is not None:
            subs.discard(conn_id)
            if not subs:
                del self._conns_by_key[account_key]

    def subscriptions_for(self, conn: Connection) -> set[str]:
        with self._lock:
            return set(self._keys_by_conn.get(conn.conn_id, ()))

    def subscribers_of(self, account_key: str) -> set[str]:
        with self._lock:
            return set(self._conns_by_key.get(account_key, ()))

    async def disconnect(self, conn: Connection) -> None:
        # Idempotent.
        with self._lock:
            if conn.conn_id not in self._conns:
                return
            for key in list(self._keys_by_conn.get(conn.conn_id, ())):
                self._unsubscribe_locked(conn.conn_id, key)
            self._keys_by_conn.pop(conn.conn_id, None)
            self._conns.pop(conn.conn_id, None)
        logger.debug("websocket disconnected: %s", conn.conn_id)
        try:
            await conn.ws.close()
        except (ConnectionError, RuntimeError) as e:
            logger.debug("closing %s failed: %r", conn.conn_id, e)

    async def close_all(self) -> None:
        with self._lock:
            conns = list(self._conns.values())
        for c in conns:
            await self.disconnect(c)

    async def broadcast(self, event: protocol.ProgressEvent) -> int:
        """Send `event` to every subscriber of its account; returns deliveries."""
        with self._lock:
            targets = [self._conns[cid] for cid in self._conns_by_key.get(event.accountKey, ()) if cid in self._conns]
        if not targets:
            return 0

        payload = protocol.dumps(event)
        sent = 0
        for conn in targets:
            if getattr(conn.ws, "closed", False):
                continue
            try:
                async with conn.send_lock:
                    await conn.ws.send_str(payload)
                sent += 1
            except (ConnectionError, RuntimeError) as e:
                logger.warning("failed to send %s to %s: %r", event.type, conn.conn_id, e)
        return sent

    async def broadcast_progress(self, account_key: str, current: int, total: int, match_id: str) -> int:
        return await self.broadcast(
            protocol.SyncProgressEvent(accountKey=account_key, current=current, total=total, matchId=match_id)
        )

    async def broadcast_complete(self, account_key: str, total_synced: int) -> int:
        return await self.broadcast(protocol.SyncCompleteEvent(accountKey=account_key, totalSynced=total_synced))

    async def broadcast_error(self, account_key: str, message: str) -> int:
        return await self.broadcast(protocol.SyncErrorEvent(accountKey=account_key, message=message))
