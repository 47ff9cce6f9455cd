# tests/test_store.py

import threading

import pytest

from matchsync.storage.memory import MemoryStore
from matchsync.storage.sqlite import SqliteStore
from matchsync.sync.errors import AccountNotFound, SyncInProgress
from matchsync.sync.models import MatchDetail, SyncStatus


class TestClaim:
    def test_claim_returns_none_when_empty(self, store):
        assert store.claim_next_pending() is None

    def test_claim_returns_none_when_nothing_pending(self, store, clock):
        store.link_account("a")
        store.update_status("a", SyncStatus.COMPLETED, last_sync_at=clock())
        store.link_account("b")
        store.update_status("b", SyncStatus.FAILED)
        assert store.claim_next_pending() is None

    def test_claim_marks_account_syncing(self, store, clock):
        store.link_account("a", game_name="Faker", tag_line="KR1", region="kr")
        clock.advance(5)

        account = store.claim_next_pending()

        assert account.account_key == "a"
        assert account.sync_status == SyncStatus.SYNCING
        assert account.game_name == "Faker"
        stored = store.get_account("a")
        assert stored.sync_status == SyncStatus.SYNCING
        assert stored.updated_at == clock()

    def test_claim_prefers_oldest_updated_at(self, store, clock):
        store.link_account("a")
        clock.advance(1)
        store.link_account("b")
        clock.advance(1)
        store.link_account("c")
        clock.advance(1)
        # Re-enqueueing bumps a's updated_at past b and c.
        store.enqueue("a")

        order = [store.claim_next_pending().account_key for _ in range(3)]

        assert order == ["b", "c", "a"]
        assert store.claim_next_pending() is None

    def test_claimed_account_not_handed_out_twice(self, store):
        store.link_account("a")
        first = store.claim_next_pending()
        assert first.account_key == "a"
        assert store.claim_next_pending() is None

        store.update_status("a", SyncStatus.COMPLETED)
        assert store.claim_next_pending() is None


def _claim_all(stores, n_accounts):
    claimed: list[list[str]] = [[] for _ in stores]
    barrier = threading.Barrier(len(stores))

    def worker(i):
        barrier.wait()
        while True:
            acc = stores[i].claim_next_pending()
            if acc is None:
                return
            claimed[i].append(acc.account_key)

    threads = [threading.Thread(target=worker, args=(i,)) for i in range(len(stores))]
    for t in threads:
        t.start()
    for t in threads:
        t.join(timeout=30)
    return [k for ks in claimed for k in ks]


def test_concurrent_sqlite_claims_are_exclusive(tmp_path):
    path = str(tmp_path / "shared.sqlite3")
    # One store per "worker process", all on the same database file.
    stores = [SqliteStore(path) for _ in range(4)]
    for s in stores:
        s.init()
    try:
        for i in range(40):
            stores[0].link_account(f"acct-{i:02d}")

        keys = _claim_all(stores, 40)

        assert len(keys) == 40
        assert len(set(keys)) == 40
        assert all(a.sync_status == SyncStatus.SYNCING for a in stores[0].list_accounts())
    finally:
        for s in stores:
            s.close()


def test_concurrent_memory_claims_are_exclusive():
    store = MemoryStore()
    for i in range(40):
        store.link_account(f"acct-{i:02d}")

    keys = _claim_all([store] * 4, 40)

    assert sorted(keys) == [f"acct-{i:02d}" for i in range(40)]


class TestStatusAndProgress:
    def test_update_status_preserves_last_sync_at_when_omitted(self, store, clock):
        store.link_account("a")
        store.claim_next_pending()
        store.update_status("a", SyncStatus.COMPLETED, last_sync_at=500.0)
        store.enqueue("a")
        store.claim_next_pending()

        clock.advance(10)
        store.update_status("a", SyncStatus.FAILED)

        acc = store.get_account("a")
        assert acc.sync_status == SyncStatus.FAILED
        assert acc.last_sync_at == 500.0
        assert acc.updated_at == clock()

    def test_update_progress_bumps_updated_at(self, store, clock):
        store.link_account("a")
        store.claim_next_pending()
        clock.advance(3)

        store.update_progress("a", 2, 7)

        acc = store.get_account("a")
        assert (acc.sync_progress, acc.sync_total) == (2, 7)
        assert acc.updated_at == clock()

    def test_relink_keeps_status_and_last_sync(self, store):
        store.link_account("a", game_name="old")
        store.claim_next_pending()
        store.update_status("a", SyncStatus.COMPLETED, last_sync_at=42.0)

        acc = store.link_account("a", game_name="new", tag_line="EUW")

        assert acc.game_name == "new"
        assert acc.sync_status == SyncStatus.COMPLETED
        assert acc.last_sync_at == 42.0


class TestResetStuck:
    def test_only_stale_syncing_accounts_are_reset(self, store, clock):
        for key in ("stale", "fresh", "done", "waiting"):
            store.link_account(key)
            clock.advance(1)
        store.claim_next_pending()  # stale
        store.claim_next_pending()  # fresh
        store.claim_next_pending()  # done
        store.update_status("done", SyncStatus.COMPLETED)

        clock.advance(500)
        store.update_progress("fresh", 3, 10)
        clock.advance(200)

        n = store.reset_stuck(600)

        assert n == 1
        assert store.get_account("stale").sync_status == SyncStatus.PENDING
        assert store.get_account("fresh").sync_status == SyncStatus.SYNCING
        assert store.get_account("done").sync_status == SyncStatus.COMPLETED
        assert store.get_account("waiting").sync_status == SyncStatus.PENDING

    def test_reset_account_is_claimable_again(self, store, clock):
        store.link_account("a")
        store.claim_next_pending()
        clock.advance(601)

        assert store.reset_stuck(600) == 1
        assert store.claim_next_pending().account_key == "a"

    def test_nothing_to_reset(self, store):
        store.link_account("a")
        assert store.reset_stuck(0) == 0


class TestEnqueue:
    def test_enqueue_unknown_account(self, store):
        with pytest.raises(AccountNotFound):
            store.enqueue("ghost")

    def test_enqueue_while_syncing_conflicts(self, store):
        store.link_account("a")
        store.claim_next_pending()
        with pytest.raises(SyncInProgress):
            store.enqueue("a")
        assert store.get_account("a").sync_status == SyncStatus.SYNCING

    @pytest.mark.parametrize("status", [SyncStatus.COMPLETED, SyncStatus.FAILED])
    def test_enqueue_finished_account(self, store, status):
        store.link_account("a")
        store.claim_next_pending()
        store.update_status("a", status)

        acc = store.enqueue("a")

        assert acc.sync_status == SyncStatus.PENDING
        assert store.claim_next_pending().account_key == "a"


class TestLedger:
    def test_record_match_is_insert_if_new(self, store):
        detail = MatchDetail(match_id="EUW1_1", data={"info": {"gameDuration": 1800}})

        assert store.record_match("a", detail) is True
        assert store.record_match("a", detail) is False
        assert store.known_match_ids("a") == {"EUW1_1"}

    def test_shared_match_links_both_accounts(self, store):
        detail = MatchDetail(match_id="EUW1_7")
        store.record_match("a", detail)

        assert store.record_match("b", detail) is False
        assert store.known_match_ids("b") == {"EUW1_7"}
        assert store.known_match_ids("c") == set()
