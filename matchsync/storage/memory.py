"""In-memory account store + match ledger (single process)."""

from __future__ import annotations

import threading
import time
from dataclasses import replace
from typing import Callable

from matchsync.sync.errors import AccountNotFound, SyncInProgress
from matchsync.sync.models import Account, MatchDetail, SyncStatus


class MemoryStore:
    def __init__(self, clock: Callable[[], float] = time.time):
        self.clock = clock
        self._lock = threading.Lock()
        self._accounts: dict[str, Account] = {}
        self._matches: dict[str, MatchDetail] = {}
        self._account_matches: dict[str, set[str]] = {}

    def init(self) -> None:
        pass

    def close(self) -> None:
        pass

    def link_account(self, account_key: str, game_name: str = "", tag_line: str = "", region: str = "") -> Account:
        with self._lock:
            cur = self._accounts.get(account_key)
            if cur:
                cur.game_name = game_name
                cur.tag_line = tag_line
                cur.region = region
            else:
                now = self.clock()
                cur = Account(
                    account_key=account_key,
                    game_name=game_name,
                    tag_line=tag_line,
                    region=region,
                    created_at=now,
                    updated_at=now,
                )
                self._accounts[account_key] = cur
            return replace(cur)

    def get_account(self, account_key: str) -> Account | None:
        with self._lock:
            cur = self._accounts.get(account_key)
            return replace(cur) if cur else None

    def list_accounts(self, status: SyncStatus | None = None) -> list[Account]:
        with self._lock:
            vals = [replace(a) for a in self._accounts.values() if status is None or a.sync_status == status]
        vals.sort(key=lambda a: a.updated_at)
        return vals

    def enqueue(self, account_key: str) -> Account:
        with self._lock:
            cur = self._accounts.get(account_key)
            if not cur:
                raise AccountNotFound(account_key)
            if cur.sync_status == SyncStatus.SYNCING:
                raise SyncInProgress(account_key)
            cur.sync_status = SyncStatus.PENDING
            cur.updated_at = self.clock()
            return replace(cur)

    def claim_next_pending(self) -> Account | None:
        with self._lock:
            pending = [a for a in self._accounts.values() if a.sync_status == SyncStatus.PENDING]
            if not pending:
                return None
            pending.sort(key=lambda a: (a.updated_at, a.account_key))
            cur = pending[0]
            cur.sync_status = SyncStatus.SYNCING
            cur.sync_progress = 0
            cur.sync_total = 0
            cur.updated_at = self.clock()
            return replace(cur)

    def update_status(self, account_key: str, status: SyncStatus, last_sync_at: float | None = None) -> None:
        with self._lock:
            cur = self._accounts.get(account_key)
            if not cur:
                return
            cur.sync_status = SyncStatus(status)
            if last_sync_at is not None:
                cur.last_sync_at = float(last_sync_at)
            cur.updated_at = self.clock()

    def update_progress(self, account_key: str, current: int, total: int) -> None:
        with self._lock:
            cur = self._accounts.get(account_key)
            if not cur:
                return
            cur.sync_progress = max(0, int(current))
            cur.sync_total = max(0, int(total))
            cur.updated_at = self.clock()

    def reset_stuck(self, threshold: float) -> int:
        with self._lock:
            now = self.clock()
            cutoff = now - float(threshold)
            n = 0
            for a in self._accounts.values():
                if a.sync_status == SyncStatus.SYNCING and a.updated_at < cutoff:
                    a.sync_status = SyncStatus.PENDING
                    a.updated_at = now
                    n += 1
            return n

    def known_match_ids(self, account_key: str) -> set[str]:
        with self._lock:
            return set(self._account_matches.get(account_key, ()))

    def record_match(self, account_key: str, detail: MatchDetail) -> bool:
        with self._lock:
            inserted = detail.match_id not in self._matches
            if inserted:
                self._matches[detail.match_id] = detail
            self._account_matches.setdefault(account_key, set()).add(detail.match_id)
            return inserted
