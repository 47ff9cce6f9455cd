"""Progress events + hub wire format.

Wire format (flat objects, field names shared with the client):
  client -> hub  {"type": "subscribe", "accountKey": "..."}
  hub -> client  {"type": "sync_progress", "accountKey": "...", "status": "syncing", ...}
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any, ClassVar, Union


class ProtocolError(Exception):
    pass


def loads(text: str) -> tuple[str, dict[str, Any]]:
    try:
        obj = json.loads(text)
    except ValueError as e:
        raise ProtocolError(f"invalid json: {e}")

    if not isinstance(obj, dict):
        raise ProtocolError("message must be object")
    t = obj.get("type")
    if not isinstance(t, str):
        raise ProtocolError("missing type")
    return t, obj


def _key(data: dict[str, Any], what: str) -> str:
    k = data.get("accountKey")
    if not isinstance(k, str) or not k.strip():
        raise ProtocolError(f"{what}.accountKey required")
    # Keys are matched byte for byte against the ones the worker broadcasts on.
    if k != k.strip():
        raise ProtocolError(f"{what}.accountKey has surrounding whitespace")
    return k


def _int(v: Any, *, default: int = 0) -> int:
    if isinstance(v, bool):
        return default
    try:
        return int(v)
    except (TypeError, ValueError):
        return default


# Client -> hub


@dataclass
class Subscribe:
    accountKey: str

    type: ClassVar[str] = "subscribe"

    @classmethod
    def parse(cls, data: dict[str, Any]) -> "Subscribe":
        return cls(accountKey=_key(data, "subscribe"))

    def dumps(self) -> str:
        return json.dumps({"type": self.type, "accountKey": self.accountKey}, separators=(",", ":"))


@dataclass
class Unsubscribe:
    accountKey: str

    type: ClassVar[str] = "unsubscribe"

    @classmethod
    def parse(cls, data: dict[str, Any]) -> "Unsubscribe":
        return cls(accountKey=_key(data, "unsubscribe"))

    def dumps(self) -> str:
        return json.dumps({"type": self.type, "accountKey": self.accountKey}, separators=(",", ":"))


VALID_C2S = {"subscribe": Subscribe, "unsubscribe": Unsubscribe}


# Hub -> client


@dataclass(frozen=True)
class SyncProgressEvent:
    accountKey: str
    current: int
    total: int
    matchId: str

    type: ClassVar[str] = "sync_progress"
    status: ClassVar[str] = "syncing"

    def to_wire(self) -> dict[str, Any]:
        return {
            "type": self.type,
            "accountKey": self.accountKey,
            "status": self.status,
            "progress": int(self.current),
            "total": int(self.total),
            "matchId": self.matchId,
        }

    @classmethod
    def from_wire(cls, data: dict[str, Any]) -> "SyncProgressEvent":
        match_id = data.get("matchId")
        return cls(
            accountKey=_key(data, cls.type),
            current=_int(data.get("progress")),
            total=_int(data.get("total")),
            matchId=match_id if isinstance(match_id, str) else "",
        )


@dataclass(frozen=True)
class SyncCompleteEvent:
    accountKey: str
    totalSynced: int

    type: ClassVar[str] = "sync_complete"
    status: ClassVar[str] = "completed"

    def to_wire(self) -> dict[str, Any]:
        return {
            "type": self.type,
            "accountKey": self.accountKey,
            "status": self.status,
            "totalSynced": int(self.totalSynced),
        }

    @classmethod
    def from_wire(cls, data: dict[str, Any]) -> "SyncCompleteEvent":
        return cls(accountKey=_key(data, cls.type), totalSynced=_int(data.get("totalSynced")))


@dataclass(frozen=True)
class SyncErrorEvent:
    accountKey: str
    message: str

    type: ClassVar[str] = "sync_error"
    status: ClassVar[str] = "failed"

    def to_wire(self) -> dict[str, Any]:
        return {
            "type": self.type,
            "accountKey": self.accountKey,
            "status": self.status,
            "error": self.message,
        }

    @classmethod
    def from_wire(cls, data: dict[str, Any]) -> "SyncErrorEvent":
        err = data.get("error")
        if not isinstance(err, str) or not err:
            err = "Sync failed"
        return cls(accountKey=_key(data, cls.type), message=err)


ProgressEvent = Union[SyncProgressEvent, SyncCompleteEvent, SyncErrorEvent]

VALID_S2C = {c.type: c for c in (SyncProgressEvent, SyncCompleteEvent, SyncErrorEvent)}


def dumps(event: ProgressEvent) -> str:
    return json.dumps(event.to_wire(), separators=(",", ":"))


def parse_event(text: str) -> ProgressEvent:
    msg_type, data = loads(text)
    cls = VALID_S2C.get(msg_type)
    if cls is None:
        raise ProtocolError(f"unknown event type: {msg_type}")
    return cls.from_wire(data)
