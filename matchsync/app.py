"""HTTP + WebSocket entrypoint for the account sync service.

Runs the sync worker pool and the stale-job sweeper alongside the progress
hub in one aiohttp application.
"""

from __future__ import annotations

import asyncio
import logging
import time
import uuid
from typing import Any

from aiohttp import web

from matchsync.net.provider import RiotMatchProvider
from matchsync.net.ws import ProgressHub
from matchsync.storage.memory import MemoryStore
from matchsync.storage.sqlite import SqliteStore
from matchsync.sync.config import SyncConfig
from matchsync.sync.errors import AccountNotFound, SyncInProgress
from matchsync.sync.recovery import StaleJobSweeper
from matchsync.sync.worker import SyncWorker

logger = logging.getLogger(__name__)


class SyncService:
    def __init__(self, config: SyncConfig, store=None, provider=None):
        self.config = config
        self.server_id = str(uuid.uuid4())
        self.start_time = time.time()

        if store is None:
            store = SqliteStore(config.sqlite_path) if config.sqlite_enabled else MemoryStore()
        self.store = store
        self.provider = provider if provider is not None else RiotMatchProvider(config)

        self.hub = ProgressHub(config)
        self.worker = SyncWorker(self.store, self.provider, self.hub, config)
        self.sweeper = StaleJobSweeper(self.store, threshold=config.stuck_threshold, interval=config.sweep_interval)

        self._tasks: list[asyncio.Task] = []

    async def start(self) -> None:
        self.store.init()
        # Crash recovery for whatever the previous process left in syncing.
        n = self.store.reset_stuck(self.config.stuck_threshold)
        if n:
            logger.info("recovered %d stuck account(s) on startup", n)
        if self.config.worker_enabled:
            self._tasks.append(asyncio.create_task(self.worker.run()))
        if self.config.sweep_enabled:
            self._tasks.append(asyncio.create_task(self.sweeper.run()))

    async def stop(self) -> None:
        self.worker.stop()
        self.sweeper.stop()
        for t in self._tasks:
            try:
                await asyncio.wait_for(t, timeout=self.config.provider_timeout)
            except asyncio.TimeoutError:
                logger.warning("background task did not stop in time; cancelling")
                t.cancel()
                try:
                    await t
                except asyncio.CancelledError:
                    pass
        self._tasks.clear()

        await self.hub.close_all()
        close = getattr(self.provider, "close", None)
        if close is not None:
            await close()
        self.store.close()

    def version_payload(self) -> dict[str, Any]:
        return {
            "serverId": self.server_id,
            "serverVersion": self.config.server_version,
        }


def _cors_headers(config: SyncConfig, origin: str | None) -> dict[str, str]:
    if not origin:
        return {}
    if config.cors_allow_all:
        return {"Access-Control-Allow-Origin": origin, "Vary": "Origin"}
    if origin in config.cors_allowed_origins:
        return {"Access-Control-Allow-Origin": origin, "Vary": "Origin"}
    return {}


@web.middleware
async def cors_middleware(request: web.Request, handler):
    if request.method == "OPTIONS":
        origin = request.headers.get("Origin")
        headers = {
            **_cors_headers(request.app["config"], origin),
            "Access-Control-Allow-Methods": "GET,POST,OPTIONS",
            "Access-Control-Allow-Headers": "Content-Type",
            "Access-Control-Max-Age": "86400",
        }
        return web.Response(status=204, headers=headers)

    resp = await handler(request)

    # aiohttp finalizes WS headers during `prepare()`.
    if isinstance(resp, web.WebSocketResponse):
        return resp

    origin = request.headers.get("Origin")
    for k, v in _cors_headers(request.app["config"], origin).items():
        resp.headers[k] = v
    return resp


def create_app(config: SyncConfig, svc: SyncService | None = None) -> web.Application:
    app = web.Application(middlewares=[cors_middleware])
    svc = svc or SyncService(config)

    app["config"] = config
    app["svc"] = svc

    async def on_startup(_: web.Application):
        await svc.start()

    async def on_cleanup(_: web.Application):
        await svc.stop()

    app.on_startup.append(on_startup)
    app.on_cleanup.append(on_cleanup)

    async def health(_: web.Request):
        return web.json_response(
            {
                "ok": True,
                "uptimeSec": time.time() - svc.start_time,
                "connections": svc.hub.connection_count,
                "watchedAccounts": svc.hub.subscribed_key_count,
                "activeSyncs": svc.worker.active,
                "completed": svc.worker.accounts_completed,
                "failed": svc.worker.accounts_failed,
                "staleReset": svc.sweeper.total_reset,
                **svc.version_payload(),
            }
        )

    async def root(_: web.Request):
        return web.json_response(
            {
                "ok": True,
                "service": "matchsync",
                **svc.version_payload(),
                "endpoints": {
                    "health": "/health",
                    "link": "/accounts",
                    "sync": "/accounts/{accountKey}/sync",
                    "syncStatus": "/accounts/{accountKey}/sync-status",
                    "ws": "/ws",
                },
            }
        )

    async def link_account(request: web.Request):
        body = {}
        if request.can_read_body:
            try:
                body = await request.json()
            except ValueError:
                raise web.HTTPBadRequest(text="invalid json")
        if not isinstance(body, dict):
            raise web.HTTPBadRequest(text="body must be object")
        key = body.get("accountKey")
        if not isinstance(key, str) or not key.strip():
            raise web.HTTPBadRequest(text="accountKey required")

        def _s(name: str) -> str:
            v = body.get(name)
            return v.strip() if isinstance(v, str) else ""

        account = svc.store.link_account(
            key.strip(), game_name=_s("gameName"), tag_line=_s("tagLine"), region=_s("region")
        )
        logger.info("linked account %s", account.account_key)
        return web.json_response(account.to_json(), status=201)

    async def trigger_sync(request: web.Request):
        key = request.match_info["account_key"]
        try:
            account = svc.store.enqueue(key)
        except AccountNotFound:
            raise web.HTTPNotFound(text="account not found")
        except SyncInProgress:
            raise web.HTTPConflict(
                text='{"error":"Sync already in progress","code":"SYNC_IN_PROGRESS"}',
                content_type="application/json",
            )
        logger.info("queued sync for %s", key)
        return web.json_response(
            {"accountKey": account.account_key, "syncStatus": account.sync_status.value, "message": "Sync queued"},
            status=202,
        )

    async def sync_status(request: web.Request):
        key = request.match_info["account_key"]
        account = svc.store.get_account(key)
        if account is None:
            raise web.HTTPNotFound(text="account not found")
        return web.json_response(
            {
                "accountKey": account.account_key,
                "syncStatus": account.sync_status.value,
                "syncProgress": account.sync_progress,
                "syncTotal": account.sync_total,
                "lastSyncAt": account.last_sync_at,
            }
        )

    async def ws_handler(request: web.Request):
        return await svc.hub.handle(request)

    async def preflight(_: web.Request):
        return web.Response(status=204)

    app.router.add_get("/", root)
    app.router.add_get("/health", health)
    app.router.add_post("/accounts", link_account)
    app.router.add_post("/accounts/{account_key}/sync", trigger_sync)
    app.router.add_get("/accounts/{account_key}/sync-status", sync_status)
    app.router.add_get("/ws", ws_handler)
    app.router.add_route("OPTIONS", "/{tail:.*}", preflight)

    return app


def main() -> None:
    config = SyncConfig.from_env()
    logging.basicConfig(
        level=getattr(logging, config.log_level, logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    app = create_app(config)
    web.run_app(app, host=config.host, port=config.port)


if __name__ == "__main__":
    main()
