from __future__ import annotations

from datetime import datetime

import redis
from redis.client import Pipeline

from turnq.api.models import SessionState
from turnq.turns.base import Outcome, RedisKeys, decode_dt, encode_dt, now


class SessionStateStore:
    """Per-session pointer to the entry that currently holds the turn.

    The row is a Redis hash; an empty `current_entry_id` field means the queue is
    exhausted. Every write that moves the pointer goes through a WATCH/MULTI/EXEC
    transaction so the comparison and the write are one atomic step.
    """

    def __init__(self, *, r: redis.Redis, keys: RedisKeys | None = None) -> None:
        self._r = r
        self.keys = keys or RedisKeys()

    def get(self, session_id: str, *, r: redis.Redis | Pipeline | None = None) -> SessionState | None:
        # A watching pipeline executes reads immediately, so it can stand in for the client.
        client = r if r is not None else self._r
        raw = client.hgetall(self.keys.state(session_id))
        if not raw:
            return None
        return SessionState(
            session_id=raw.get("session_id") or session_id,
            current_entry_id=raw.get("current_entry_id") or None,
            updated_at=decode_dt(raw.get("updated_at")),
        )

    def create(self, session_id: str, current_entry_id: str | None) -> SessionState:
        ts = now()
        with self._r.pipeline(transaction=True) as pipe:
            self.stage_create(pipe, session_id, current_entry_id, ts=ts)
            pipe.execute()
        return SessionState(session_id=session_id, current_entry_id=current_entry_id, updated_at=ts)

    def stage_create(self, pipe: Pipeline, session_id: str, current_entry_id: str | None, *, ts: datetime) -> None:
        pipe.hset(
            self.keys.state(session_id),
            mapping={
                "session_id": session_id,
                "current_entry_id": current_entry_id or "",
                "updated_at": encode_dt(ts),
            },
        )

    def compare_and_set(self, session_id: str, expected: str | None, new: str | None) -> Outcome:
        """Move the pointer from `expected` to `new` only if it still reads `expected`.

        A concurrent writer touching the row between WATCH and EXEC aborts the
        transaction; that is reported as a conflict, never retried.
        """

        key = self.keys.state(session_id)
        with self._r.pipeline() as pipe:
            try:
                pipe.watch(key)
                state = self.get(session_id, r=pipe)
                if state is None:
                    return Outcome.not_found
                if state.current_entry_id != expected:
                    return Outcome.conflict
                pipe.multi()
                self.stage_current(pipe, session_id, new, ts=now())
                pipe.execute()
            except redis.WatchError:
                return Outcome.conflict
        return Outcome.committed

    def stage_current(self, pipe: Pipeline, session_id: str, new: str | None, *, ts: datetime) -> None:
        """Queue the pointer write into an open MULTI block."""

        pipe.hset(
            self.keys.state(session_id),
            mapping={"current_entry_id": new or "", "updated_at": encode_dt(ts)},
        )
