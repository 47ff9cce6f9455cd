"""Sync worker loop: claim an account, backfill its missing matches, report.

Per claimed account:
  fetch match list -> diff against ledger -> fetch + persist each missing
  match (oldest first) -> progress after each -> completed / failed.

The claim is committed by the store before any provider I/O starts.
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Callable

from matchsync.sync.config import SyncConfig
from matchsync.sync.errors import (
    MatchNotFound,
    PersistenceFailure,
    ProviderError,
    ProviderRateLimited,
    ProviderUnavailable,
)
from matchsync.sync.models import Account, SyncOutcome, SyncStatus

logger = logging.getLogger(__name__)


class SyncWorker:
    def __init__(
        self,
        store,
        provider,
        hub,
        config: SyncConfig,
        clock: Callable[[], float] = time.time,
    ):
        # `store` is both the account record store and the match ledger.
        self.store = store
        self.provider = provider
        self.hub = hub
        self.config = config
        self.clock = clock

        self._stopping = asyncio.Event()
        self._slots = asyncio.Semaphore(max(1, config.worker_pool_size))
        self._inflight: set[asyncio.Task] = set()

        self.accounts_completed = 0
        self.accounts_failed = 0

    @property
    def stopping(self) -> bool:
        return self._stopping.is_set()

    @property
    def active(self) -> int:
        return len(self._inflight)

    async def run(self) -> None:
        logger.info("sync worker started (pool=%d)", self.config.worker_pool_size)
        try:
            while not self.stopping:
                await self._slots.acquire()
                if self.stopping:
                    self._slots.release()
                    break
                try:
                    account = self.store.claim_next_pending()
                except Exception:
                    self._slots.release()
                    logger.exception("claiming next pending account failed")
                    await self._idle()
                    continue

                if account is None:
                    self._slots.release()
                    await self._idle()
                    continue

                task = asyncio.create_task(self._run_claimed(account))
                self._inflight.add(task)
                task.add_done_callback(self._inflight.discard)
        finally:
            if self._inflight:
                await asyncio.gather(*self._inflight, return_exceptions=True)
            logger.info("sync worker stopped")

    async def _idle(self) -> None:
        try:
            await asyncio.wait_for(self._stopping.wait(), timeout=self.config.poll_interval)
        except asyncio.TimeoutError:
            pass

    async def _run_claimed(self, account: Account) -> None:
        try:
            await self.sync_account(account)
        finally:
            self._slots.release()

    def stop(self) -> None:
        """Stop claiming and stop starting new match fetches."""
        self._stopping.set()

    async def run_once(self) -> SyncOutcome | None:
        """Claim one pending account and sync it; None when nothing is pending."""
        account = self.store.claim_next_pending()
        if account is None:
            return None
        return await self.sync_account(account)

    async def sync_account(self, account: Account) -> SyncOutcome:
        key = account.account_key
        logger.info("starting sync for %s", key)
        try:
            return await self._sync(account)
        except Exception as e:
            logger.exception("sync failed for %s", key)
            return await self._fail(SyncOutcome(account_key=key, status=SyncStatus.FAILED), f"sync failed: {e}")

    async def _sync(self, account: Account) -> SyncOutcome:
        key = account.account_key
        outcome = SyncOutcome(account_key=key, status=SyncStatus.SYNCING)

        try:
            # Full list every run; the ledger diff skips what is already stored.
            provider_ids = await self.provider.list_match_ids(key, limit=self.config.max_matches_per_sync)
        except ProviderError as e:
            logger.warning("match list unavailable for %s: %s", key, e)
            return await self._fail(outcome, str(e))

        known = self.store.known_match_ids(key)
        seen: set[str] = set()
        missing: list[str] = []
        # Provider lists newest first; backfill oldest first.
        for match_id in reversed(provider_ids):
            if match_id in known or match_id in seen:
                continue
            seen.add(match_id)
            missing.append(match_id)

        total = len(missing)
        outcome.total = total
        logger.info("found %d new matches for %s", total, key)
        self.store.update_progress(key, 0, total)

        for match_id in missing:
            if self.stopping:
                # Leave the account in syncing; the stale sweep hands it back.
                logger.warning("shutdown during sync of %s (%d/%d)", key, outcome.processed, total)
                outcome.status = SyncStatus.SYNCING
                return outcome

            try:
                detail = await self.provider.fetch_match_detail(match_id)
                self.store.record_match(key, detail)
            except ProviderRateLimited as e:
                logger.warning("rate limited while syncing %s at %s: %s", key, match_id, e)
                return await self._fail(outcome, str(e))
            except MatchNotFound:
                logger.debug("match %s not found - skipping", match_id)
                outcome.skipped += 1
            except (ProviderUnavailable, PersistenceFailure) as e:
                logger.warning("failed to process match %s for %s - skipping: %s", match_id, key, e)
                outcome.skipped += 1

            # Progress advances for skipped matches too so the bar never stalls.
            outcome.processed += 1
            self.store.update_progress(key, outcome.processed, total)
            await self.hub.broadcast_progress(key, outcome.processed, total, match_id)

        self.store.update_status(key, SyncStatus.COMPLETED, last_sync_at=self.clock())
        await self.hub.broadcast_complete(key, total)
        outcome.status = SyncStatus.COMPLETED
        self.accounts_completed += 1
        logger.info("sync completed for %s: %d/%d (%d skipped)", key, outcome.processed, total, outcome.skipped)
        return outcome

    async def _fail(self, outcome: SyncOutcome, message: str) -> SyncOutcome:
        outcome.status = SyncStatus.FAILED
        outcome.error = message
        self.accounts_failed += 1
        try:
            self.store.update_status(outcome.account_key, SyncStatus.FAILED)
        except Exception:
            # Stays syncing; the stale sweep recovers it.
            logger.exception("could not mark %s failed", outcome.account_key)
        try:
            await self.hub.broadcast_error(outcome.account_key, message)
        except Exception:
            logger.exception("could not broadcast failure of %s", outcome.account_key)
        return outcome
