"""Maintenance commands against the sync database.

Meant for cron when the service runs with its own sweeper disabled
(MATCHSYNC_SWEEP=0), or for poking at accounts by hand:
  python tools/sync_admin.py reset-stuck --threshold 600
  python tools/sync_admin.py enqueue PUUID [PUUID ...]
  python tools/sync_admin.py status PUUID
"""

from __future__ import annotations

import argparse
import json
import logging

from matchsync.storage.sqlite import SqliteStore
from matchsync.sync.config import SyncConfig
from matchsync.sync.errors import AccountNotFound, SyncInProgress
from matchsync.sync.recovery import StaleJobSweeper


def main(argv: list[str] | None = None) -> int:
    cfg = SyncConfig.from_env()
    ap = argparse.ArgumentParser()
    ap.add_argument("--db", default=cfg.sqlite_path)
    sub = ap.add_subparsers(dest="cmd", required=True)

    rs = sub.add_parser("reset-stuck")
    rs.add_argument("--threshold", type=float, default=cfg.stuck_threshold)

    eq = sub.add_parser("enqueue")
    eq.add_argument("keys", nargs="+")

    st = sub.add_parser("status")
    st.add_argument("key")

    args = ap.parse_args(argv)
    logging.basicConfig(level=getattr(logging, cfg.log_level, logging.INFO))

    store = SqliteStore(args.db)
    store.init()
    try:
        if args.cmd == "reset-stuck":
            n = StaleJobSweeper(store, threshold=args.threshold, interval=0).sweep()
            print(f"reset {n} account(s)")
            return 0

        if args.cmd == "enqueue":
            rc = 0
            for key in args.keys:
                try:
                    store.enqueue(key)
                    print(f"{key}: pending")
                except AccountNotFound:
                    print(f"{key}: not found")
                    rc = 1
                except SyncInProgress:
                    print(f"{key}: already syncing")
                    rc = 1
            return rc

        account = store.get_account(args.key)
        if account is None:
            print(f"{args.key}: not found")
            return 1
        print(json.dumps(account.to_json(), indent=2))
        return 0
    finally:
        store.close()


if __name__ == "__main__":
    raise SystemExit(main())
