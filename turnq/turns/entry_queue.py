from __future__ import annotations

from collections.abc import Mapping
from datetime import datetime

import redis
from redis.client import Pipeline

from turnq.api.models import EntryStatus, SessionEntry
from turnq.turns.base import Outcome, RedisKeys, decode_dt, encode_dt, now


TERMINAL_STATUSES = frozenset({EntryStatus.done, EntryStatus.skipped})


def _entry_to_hash(entry: SessionEntry) -> dict[str, str]:
    return {
        "id": entry.id,
        "session_id": entry.session_id,
        "order_index": str(entry.order_index),
        "status": entry.status.value,
        "started_at": encode_dt(entry.started_at),
        "ended_at": encode_dt(entry.ended_at),
    }


def _entry_from_hash(raw: Mapping[str, str]) -> SessionEntry:
    return SessionEntry(
        id=raw["id"],
        session_id=raw["session_id"],
        order_index=int(raw["order_index"]),
        status=EntryStatus(raw.get("status") or EntryStatus.pending.value),
        started_at=decode_dt(raw.get("started_at")),
        ended_at=decode_dt(raw.get("ended_at")),
    )


class EntryQueue:
    """Ordered turn entries per session.

    Entries live in one hash each. Two sorted sets scored by `order_index` index
    them per session: every entry, and only the pending ones (so "earliest
    pending" is a single ZRANGE).
    """

    def __init__(self, *, r: redis.Redis, keys: RedisKeys | None = None) -> None:
        self._r = r
        self.keys = keys or RedisKeys()

    def get(self, entry_id: str, *, r: redis.Redis | Pipeline | None = None) -> SessionEntry | None:
        client = r if r is not None else self._r
        raw = client.hgetall(self.keys.entry(entry_id))
        if not raw:
            return None
        return _entry_from_hash(raw)

    def list_entries(self, session_id: str) -> list[SessionEntry]:
        out: list[SessionEntry] = []
        for entry_id in self._r.zrange(self.keys.entries(session_id), 0, -1):
            entry = self.get(entry_id)
            if entry is not None:
                out.append(entry)
        return out

    def check_new_entry(
        self,
        *,
        session_id: str,
        entry_id: str,
        order_index: int,
        r: redis.Redis | Pipeline | None = None,
    ) -> None:
        """Raise ValueError if the entry id or its order_index is already taken."""

        client = r if r is not None else self._r
        if client.zrangebyscore(self.keys.entries(session_id), order_index, order_index):
            raise ValueError(f"order_index {order_index} is already used in session {session_id}")
        if client.exists(self.keys.entry(entry_id)):
            raise ValueError(f"Entry {entry_id} already exists")

    def add_entry(self, *, session_id: str, entry_id: str, order_index: int) -> SessionEntry:
        self.check_new_entry(session_id=session_id, entry_id=entry_id, order_index=order_index)

        entry = SessionEntry(id=entry_id, session_id=session_id, order_index=order_index)
        with self._r.pipeline(transaction=True) as pipe:
            self.stage_add(pipe, entry)
            pipe.execute()
        return entry

    def stage_add(self, pipe: Pipeline, entry: SessionEntry) -> None:
        pipe.hset(self.keys.entry(entry.id), mapping=_entry_to_hash(entry))
        pipe.zadd(self.keys.entries(entry.session_id), {entry.id: entry.order_index})
        pipe.zadd(self.keys.pending(entry.session_id), {entry.id: entry.order_index})

    def next_pending(self, session_id: str, *, r: redis.Redis | Pipeline | None = None) -> SessionEntry | None:
        client = r if r is not None else self._r
        ids = client.zrange(self.keys.pending(session_id), 0, 0)
        if not ids:
            return None
        return self.get(ids[0], r=client)

    def close_entry(self, entry_id: str, status: EntryStatus) -> Outcome:
        """Set a terminal status and stamp `ended_at`.

        Calling this twice re-stamps `ended_at`; the advancer's transaction is
        what keeps it to one call per advancement.
        """

        if status not in TERMINAL_STATUSES:
            raise ValueError(f"Not a terminal status: {status}")
        entry = self.get(entry_id)
        if entry is None:
            return Outcome.not_found
        with self._r.pipeline(transaction=True) as pipe:
            self.stage_close(pipe, entry, status, ts=now())
            pipe.execute()
        return Outcome.committed

    def promote(self, entry_id: str) -> Outcome:
        entry = self.get(entry_id)
        if entry is None:
            return Outcome.not_found
        with self._r.pipeline(transaction=True) as pipe:
            self.stage_promote(pipe, entry, ts=now())
            pipe.execute()
        return Outcome.committed

    def stage_close(self, pipe: Pipeline, entry: SessionEntry, status: EntryStatus, *, ts: datetime) -> None:
        pipe.hset(self.keys.entry(entry.id), mapping={"status": status.value, "ended_at": encode_dt(ts)})
        pipe.zrem(self.keys.pending(entry.session_id), entry.id)

    def stage_promote(self, pipe: Pipeline, entry: SessionEntry, *, ts: datetime) -> None:
        pipe.hset(
            self.keys.entry(entry.id),
            mapping={"status": EntryStatus.speaking.value, "started_at": encode_dt(ts)},
        )
        pipe.zrem(self.keys.pending(entry.session_id), entry.id)
