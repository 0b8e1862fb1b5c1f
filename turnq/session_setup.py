from __future__ import annotations

import random
from collections.abc import Sequence

import redis

from turnq.api.models import SessionEntry, SessionState
from turnq.turns.base import RedisKeys, now
from turnq.turns.entry_queue import EntryQueue
from turnq.turns.state_store import SessionStateStore


def initialize_session(
    *,
    r: redis.Redis,
    session_id: str,
    entry_ids: Sequence[str],
    keys: RedisKeys | None = None,
    rng: random.Random | None = None,
) -> SessionState:
    """Create the queue for a session and hand the first turn out.

    Entries get order_index 0..n-1 in the given order, or shuffled when `rng` is
    passed. The first entry is promoted to speaking and becomes the state's
    current entry; an empty list yields an already exhausted queue.

    Everything is checked before anything is written, and all writes land in one
    MULTI/EXEC, so a rejected call leaves the session untouched.
    """

    keys = keys or RedisKeys()
    states = SessionStateStore(r=r, keys=keys)
    queue = EntryQueue(r=r, keys=keys)

    if len(set(entry_ids)) != len(entry_ids):
        raise ValueError("Entry ids must be unique")

    ordered = list(entry_ids)
    if rng is not None:
        rng.shuffle(ordered)
    entries = [SessionEntry(id=eid, session_id=session_id, order_index=idx) for idx, eid in enumerate(ordered)]
    first = entries[0] if entries else None

    with r.pipeline() as pipe:
        try:
            pipe.watch(
                keys.state(session_id),
                keys.entries(session_id),
                keys.pending(session_id),
                *(keys.entry(e.id) for e in entries),
            )
            if states.get(session_id, r=pipe) is not None:
                raise ValueError(f"Session {session_id} is already initialized")
            for entry in entries:
                queue.check_new_entry(
                    session_id=session_id,
                    entry_id=entry.id,
                    order_index=entry.order_index,
                    r=pipe,
                )

            ts = now()
            pipe.multi()
            for entry in entries:
                queue.stage_add(pipe, entry)
            if first is not None:
                queue.stage_promote(pipe, first, ts=ts)
            states.stage_create(pipe, session_id, first.id if first is not None else None, ts=ts)
            pipe.execute()
        except redis.WatchError as e:
            raise ValueError(f"Session {session_id} was initialized concurrently") from e

    return SessionState(session_id=session_id, current_entry_id=first.id if first is not None else None, updated_at=ts)
