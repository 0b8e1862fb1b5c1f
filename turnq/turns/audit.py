from __future__ import annotations

from typing import cast

import redis

from turnq.api.models import ActionAuditRecord, TerminalAction
from turnq.turns.base import RedisKeys, decode_dt, encode_dt, now


# There are no per-user logins; every action is recorded under this identity.
ANONYMOUS_ACTOR = "guest"


class ActionAuditLog:
    """Append-only record of advancements, one Redis Stream per session."""

    def __init__(self, *, r: redis.Redis, keys: RedisKeys | None = None) -> None:
        self._r = r
        self.keys = keys or RedisKeys()

    def append(
        self,
        session_id: str,
        *,
        action: TerminalAction,
        prev_entry_id: str,
        actor: str = ANONYMOUS_ACTOR,
    ) -> str:
        fields = {
            "session_id": session_id,
            "actor": actor,
            "action": action.value,
            "prev_entry_id": prev_entry_id,
            "ts": encode_dt(now()),
        }
        stream_id = self._r.xadd(self.keys.actions(session_id), fields)
        return cast(str, stream_id)

    def recent(self, session_id: str, count: int = 20) -> list[ActionAuditRecord]:
        """Newest first."""

        entries = self._r.xrevrange(self.keys.actions(session_id), count=count)
        return [
            ActionAuditRecord(
                id=stream_id,
                session_id=fields.get("session_id", session_id),
                actor=fields.get("actor", ANONYMOUS_ACTOR),
                action=TerminalAction(fields["action"]),
                prev_entry_id=fields.get("prev_entry_id", ""),
                ts=decode_dt(fields.get("ts")) or now(),
            )
            for stream_id, fields in entries
        ]
