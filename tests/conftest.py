"""
Pytest fixtures for matchsync tests
"""

import pytest

from matchsync.net.ws import ProgressHub
from matchsync.storage.memory import MemoryStore
from matchsync.storage.sqlite import SqliteStore
from matchsync.sync.config import SyncConfig
from tests.helpers import FakeClock


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def config():
    return SyncConfig(
        sqlite_enabled=False,
        worker_pool_size=2,
        poll_interval=0.01,
        stuck_threshold=600.0,
        sweep_interval=0.01,
    )


@pytest.fixture(params=["memory", "sqlite"])
def store(request, tmp_path, clock):
    """Both store implementations, same contract."""
    if request.param == "memory":
        s = MemoryStore(clock=clock)
    else:
        s = SqliteStore(str(tmp_path / "sync.sqlite3"), clock=clock)
    s.init()
    yield s
    s.close()


@pytest.fixture
def memory_store(clock):
    s = MemoryStore(clock=clock)
    s.init()
    return s


@pytest.fixture
def hub(config):
    return ProgressHub(config)
