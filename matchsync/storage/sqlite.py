"""SQLite persistence for linked accounts and the match ledger.

Several worker processes may point at the same database file. The claim
is the only cross-worker serialization point: `BEGIN IMMEDIATE` takes the
database write lock before the pending row is selected, and the row is only
handed out if the conditional `pending -> syncing` update wins.
"""

from __future__ import annotations

import json
import logging
import sqlite3
import time
from typing import Callable

from matchsync.sync.errors import AccountNotFound, PersistenceFailure, SyncInProgress
from matchsync.sync.models import Account, MatchDetail, SyncStatus

logger = logging.getLogger(__name__)

_ACCOUNT_COLUMNS = (
    "account_key, game_name, tag_line, region, sync_status, sync_progress, sync_total, "
    "last_sync_at, created_at, updated_at"
)


def _row_to_account(row) -> Account:
    return Account(
        account_key=row[0],
        game_name=row[1],
        tag_line=row[2],
        region=row[3],
        sync_status=SyncStatus(row[4]),
        sync_progress=row[5],
        sync_total=row[6],
        last_sync_at=row[7],
        created_at=row[8],
        updated_at=row[9],
    )


class SqliteStore:
    def __init__(self, path: str, clock: Callable[[], float] = time.time, busy_timeout: float = 5.0):
        self.path = path
        self.clock = clock
        self.busy_timeout = busy_timeout
        self.conn: sqlite3.Connection | None = None

    def init(self) -> None:
        # Autocommit mode; transactions are opened explicitly where needed.
        self.conn = sqlite3.connect(
            self.path,
            timeout=self.busy_timeout,
            isolation_level=None,
            check_same_thread=False,
        )
        self.conn.executescript(
            """
            CREATE TABLE IF NOT EXISTS accounts (
              account_key TEXT PRIMARY KEY,
              game_name TEXT NOT NULL DEFAULT '',
              tag_line TEXT NOT NULL DEFAULT '',
              region TEXT NOT NULL DEFAULT '',
              sync_status TEXT NOT NULL DEFAULT 'pending',
              sync_progress INTEGER NOT NULL DEFAULT 0,
              sync_total INTEGER NOT NULL DEFAULT 0,
              last_sync_at REAL,
              created_at REAL NOT NULL,
              updated_at REAL NOT NULL
            );
            CREATE INDEX IF NOT EXISTS idx_accounts_status_updated
              ON accounts (sync_status, updated_at);
            CREATE TABLE IF NOT EXISTS matches (
              match_id TEXT PRIMARY KEY,
              game_start INTEGER,
              data TEXT NOT NULL,
              created_at REAL NOT NULL
            );
            CREATE TABLE IF NOT EXISTS account_matches (
              account_key TEXT NOT NULL,
              match_id TEXT NOT NULL,
              PRIMARY KEY (account_key, match_id)
            );
            """
        )

    def close(self) -> None:
        if self.conn:
            self.conn.close()
            self.conn = None

    def _db(self) -> sqlite3.Connection:
        if not self.conn:
            raise RuntimeError("SqliteStore not initialized")
        return self.conn

    # Accounts

    def link_account(self, account_key: str, game_name: str = "", tag_line: str = "", region: str = "") -> Account:
        now = self.clock()
        self._db().execute(
            """
            INSERT INTO accounts (account_key, game_name, tag_line, region, sync_status, created_at, updated_at)
            VALUES (?, ?, ?, ?, 'pending', ?, ?)
            ON CONFLICT(account_key) DO UPDATE SET
              game_name=excluded.game_name,
              tag_line=excluded.tag_line,
              region=excluded.region
            """,
            (account_key, game_name, tag_line, region, now, now),
        )
        account = self.get_account(account_key)
        assert account is not None
        return account

    def get_account(self, account_key: str) -> Account | None:
        cur = self._db().execute(f"SELECT {_ACCOUNT_COLUMNS} FROM accounts WHERE account_key = ?", (account_key,))
        row = cur.fetchone()
        return _row_to_account(row) if row else None

    def list_accounts(self, status: SyncStatus | None = None) -> list[Account]:
        if status is None:
            cur = self._db().execute(f"SELECT {_ACCOUNT_COLUMNS} FROM accounts ORDER BY updated_at")
        else:
            cur = self._db().execute(
                f"SELECT {_ACCOUNT_COLUMNS} FROM accounts WHERE sync_status = ? ORDER BY updated_at",
                (status.value,),
            )
        return [_row_to_account(r) for r in cur.fetchall()]

    def enqueue(self, account_key: str) -> Account:
        db = self._db()
        db.execute("BEGIN IMMEDIATE")
        try:
            row = db.execute("SELECT sync_status FROM accounts WHERE account_key = ?", (account_key,)).fetchone()
            if row is None:
                raise AccountNotFound(account_key)
            if row[0] == SyncStatus.SYNCING.value:
                raise SyncInProgress(account_key)
            db.execute(
                "UPDATE accounts SET sync_status = 'pending', updated_at = ? WHERE account_key = ?",
                (self.clock(), account_key),
            )
        except BaseException:
            if db.in_transaction:
                db.execute("ROLLBACK")
            raise
        db.execute("COMMIT")
        account = self.get_account(account_key)
        assert account is not None
        return account

    def claim_next_pending(self) -> Account | None:
        db = self._db()
        db.execute("BEGIN IMMEDIATE")
        try:
            row = db.execute(
                f"""
                SELECT {_ACCOUNT_COLUMNS} FROM accounts
                WHERE sync_status = 'pending'
                ORDER BY updated_at ASC, account_key ASC
                LIMIT 1
                """
            ).fetchone()
            if row is None:
                db.execute("ROLLBACK")
                return None

            now = self.clock()
            cur = db.execute(
                """
                UPDATE accounts SET sync_status = 'syncing', sync_progress = 0, sync_total = 0, updated_at = ?
                WHERE account_key = ? AND sync_status = 'pending'
                """,
                (now, row[0]),
            )
            if cur.rowcount != 1:
                # Lost the race to another worker; caller polls again later.
                db.execute("ROLLBACK")
                logger.debug("claim race lost for %s", row[0])
                return None
        except BaseException:
            if db.in_transaction:
                db.execute("ROLLBACK")
            raise
        db.execute("COMMIT")

        account = _row_to_account(row)
        account.sync_status = SyncStatus.SYNCING
        account.sync_progress = 0
        account.sync_total = 0
        account.updated_at = now
        return account

    def update_status(self, account_key: str, status: SyncStatus, last_sync_at: float | None = None) -> None:
        if last_sync_at is None:
            self._db().execute(
                "UPDATE accounts SET sync_status = ?, updated_at = ? WHERE account_key = ?",
                (SyncStatus(status).value, self.clock(), account_key),
            )
        else:
            self._db().execute(
                "UPDATE accounts SET sync_status = ?, last_sync_at = ?, updated_at = ? WHERE account_key = ?",
                (SyncStatus(status).value, float(last_sync_at), self.clock(), account_key),
            )

    def update_progress(self, account_key: str, current: int, total: int) -> None:
        self._db().execute(
            "UPDATE accounts SET sync_progress = ?, sync_total = ?, updated_at = ? WHERE account_key = ?",
            (max(0, int(current)), max(0, int(total)), self.clock(), account_key),
        )

    def reset_stuck(self, threshold: float) -> int:
        now = self.clock()
        cur = self._db().execute(
            """
            UPDATE accounts SET sync_status = 'pending', updated_at = ?
            WHERE sync_status = 'syncing' AND updated_at < ?
            """,
            (now, now - float(threshold)),
        )
        return cur.rowcount

    # Match ledger

    def known_match_ids(self, account_key: str) -> set[str]:
        cur = self._db().execute("SELECT match_id FROM account_matches WHERE account_key = ?", (account_key,))
        return {r[0] for r in cur.fetchall()}

    def record_match(self, account_key: str, detail: MatchDetail) -> bool:
        db = self._db()
        try:
            db.execute("BEGIN")
            cur = db.execute(
                "INSERT OR IGNORE INTO matches (match_id, game_start, data, created_at) VALUES (?, ?, ?, ?)",
                (detail.match_id, detail.game_start, json.dumps(detail.data, separators=(",", ":")), self.clock()),
            )
            inserted = cur.rowcount == 1
            db.execute(
                "INSERT OR IGNORE INTO account_matches (account_key, match_id) VALUES (?, ?)",
                (account_key, detail.match_id),
            )
            db.execute("COMMIT")
        except (sqlite3.Error, TypeError, ValueError) as e:
            if db.in_transaction:
                db.execute("ROLLBACK")
            raise PersistenceFailure(f"could not record match {detail.match_id}: {e}") from e
        return inserted
