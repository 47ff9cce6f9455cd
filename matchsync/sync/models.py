"""Linked accounts, match details, sync outcomes."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class SyncStatus(str, Enum):
    PENDING = "pending"
    SYNCING = "syncing"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass
class Account:
    account_key: str
    sync_status: SyncStatus = SyncStatus.PENDING
    sync_progress: int = 0
    sync_total: int = 0
    last_sync_at: float | None = None
    created_at: float = 0.0
    updated_at: float = 0.0

    game_name: str = ""
    tag_line: str = ""
    region: str = ""

    def to_json(self) -> dict[str, Any]:
        return {
            "accountKey": self.account_key,
            "gameName": self.game_name,
            "tagLine": self.tag_line,
            "region": self.region,
            "syncStatus": self.sync_status.value,
            "syncProgress": self.sync_progress,
            "syncTotal": self.sync_total,
            "lastSyncAt": self.last_sync_at,
            "createdAt": self.created_at,
            "updatedAt": self.updated_at,
        }


@dataclass(frozen=True)
class MatchDetail:
    match_id: str
    data: dict[str, Any] = field(default_factory=dict)
    game_start: int | None = None  # epoch ms, as reported by the provider

    @classmethod
    def from_provider(cls, match_id: str, payload: dict[str, Any]) -> "MatchDetail":
        info = payload.get("info") if isinstance(payload, dict) else None
        start = None
        if isinstance(info, dict):
            v = info.get("gameStartTimestamp", info.get("gameCreation"))
            if isinstance(v, (int, float)):
                start = int(v)
        return cls(match_id=match_id, data=payload if isinstance(payload, dict) else {}, game_start=start)


@dataclass
class SyncOutcome:
    """What one claimed run did to an account."""

    account_key: str
    status: SyncStatus
    total: int = 0
    processed: int = 0
    skipped: int = 0
    error: str | None = None

    @property
    def synced(self) -> int:
        return self.processed - self.skipped
