from __future__ import annotations

from dataclasses import dataclass
from datetime import UTC, datetime
from enum import StrEnum


class Outcome(StrEnum):
    committed = "committed"
    conflict = "conflict"
    not_found = "not_found"


def now() -> datetime:
    return datetime.now(tz=UTC)


def encode_dt(value: datetime | None) -> str:
    return value.isoformat() if value is not None else ""


def decode_dt(raw: str | None) -> datetime | None:
    if not raw:
        return None
    return datetime.fromisoformat(raw)


@dataclass(frozen=True, slots=True)
class RedisKeys:
    """Key layout for one deployment; `prefix` comes from Settings.key_prefix."""

    prefix: str = "turnq"

    def state(self, session_id: str) -> str:
        return f"{self.prefix}:session:{session_id}:state"

    def entry(self, entry_id: str) -> str:
        return f"{self.prefix}:entry:{entry_id}"

    def entries(self, session_id: str) -> str:
        return f"{self.prefix}:session:{session_id}:entries"

    def pending(self, session_id: str) -> str:
        return f"{self.prefix}:session:{session_id}:pending"

    def topics(self, session_id: str) -> str:
        return f"{self.prefix}:session:{session_id}:topics"

    def keywords(self, session_id: str) -> str:
        return f"{self.prefix}:session:{session_id}:keywords"

    def actions(self, session_id: str) -> str:
        return f"{self.prefix}:session:{session_id}:actions"
