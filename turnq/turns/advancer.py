from __future__ import annotations

import logging
from dataclasses import dataclass

import redis
from statemachine.exceptions import TransitionNotAllowed

from turnq.api.models import EntryStatus, NextEntry, SessionState, TerminalAction
from turnq.errors import TurnError, conflict, dependency_failure
from turnq.fsm import EntryLifecycle
from turnq.turns.audit import ActionAuditLog
from turnq.turns.base import RedisKeys, now
from turnq.turns.entry_queue import EntryQueue
from turnq.turns.state_store import SessionStateStore
from turnq.turns.stats import StatisticsCounters, select_tags


logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class AdvanceCommand:
    session_id: str
    expected_current_entry_id: str
    action: TerminalAction
    top_label: str | None = None
    top_tags: tuple[str, ...] = ()


@dataclass(frozen=True, slots=True)
class AdvanceResult:
    state: SessionState
    closed_status: EntryStatus
    next_entry: NextEntry | None


class TurnAdvancer:
    def __init__(self, *, r: redis.Redis, keys: RedisKeys | None = None) -> None:
        keys = keys or RedisKeys()
        self._r = r
        self.states = SessionStateStore(r=r, keys=keys)
        self.queue = EntryQueue(r=r, keys=keys)
        self.stats = StatisticsCounters(r=r, keys=keys)
        self.audit = ActionAuditLog(r=r, keys=keys)

    def advance(self, command: AdvanceCommand) -> AdvanceResult | TurnError:
        """Close the current turn and open the next one.

        Applies an advancement by:
        - watching the session pointer, the pending index and the expected entry
        - checking the caller's expected entry against the stored pointer
        - closing that entry, promoting the earliest pending one and moving the
          pointer, all inside one MULTI/EXEC
        - bumping the topic/keyword tallies (best effort)
        - appending an audit record

        Notes:
        - Two callers presenting the same expected id can't both get past EXEC;
          the loser sees a conflict and nothing it staged is written.
        - Tallies and audit run after the commit. A failure there is returned as
          a dependency failure but the turn has already moved.
        """

        transition = self._commit_transition(command)
        if isinstance(transition, TurnError):
            logger.warning(
                "advance rejected session=%s expected=%s: %s",
                command.session_id,
                command.expected_current_entry_id,
                transition.message,
            )
            return transition

        failure = self._record_side_effects(command)
        if failure is not None:
            logger.warning("advance committed but side effects failed session=%s: %s", command.session_id, failure.message)
            return failure

        logger.info(
            "advanced session=%s %s(%s) -> %s",
            command.session_id,
            command.expected_current_entry_id,
            transition.closed_status.value,
            transition.state.current_entry_id,
        )
        return transition

    def _commit_transition(self, command: AdvanceCommand) -> AdvanceResult | TurnError:
        sid = command.session_id
        expected = command.expected_current_entry_id
        keys = self.states.keys

        step = "state"
        with self._r.pipeline() as pipe:
            try:
                pipe.watch(keys.state(sid), keys.pending(sid), keys.entry(expected))

                state = self.states.get(sid, r=pipe)
                if state is None:
                    return conflict("Session state is not initialized (the queue was never randomized)")
                if state.current_entry_id != expected:
                    return conflict("The turn was already advanced elsewhere (expected_current_entry_id mismatch)")

                step = "current entry"
                current = self.queue.get(expected, r=pipe)
                if current is None or current.session_id != sid:
                    return conflict(f"Current entry {expected} does not belong to session {sid}")
                try:
                    closed_status = EntryLifecycle(current).close(command.action)
                except TransitionNotAllowed:
                    return conflict(f"Current entry {expected} is {current.status.value}, not speaking")

                step = "select next"
                nxt = self.queue.next_pending(sid, r=pipe)
                if nxt is not None:
                    try:
                        EntryLifecycle(nxt).open_turn()
                    except TransitionNotAllowed:
                        return conflict(f"Next entry {nxt.id} is {nxt.status.value}, not pending")
                new_id = nxt.id if nxt is not None else None

                step = "commit"
                ts = now()
                pipe.multi()
                self.queue.stage_close(pipe, current, closed_status, ts=ts)
                if nxt is not None:
                    self.queue.stage_promote(pipe, nxt, ts=ts)
                self.states.stage_current(pipe, sid, new_id, ts=ts)
                pipe.execute()
            except redis.WatchError:
                return conflict("The turn was advanced concurrently; re-read the session before retrying")
            except redis.RedisError as e:
                return dependency_failure(f"DB error({step}): {e}")

        return AdvanceResult(
            state=SessionState(session_id=sid, current_entry_id=new_id, updated_at=ts),
            closed_status=closed_status,
            next_entry=NextEntry(id=nxt.id, order_index=nxt.order_index) if nxt is not None else None,
        )

    def _record_side_effects(self, command: AdvanceCommand) -> TurnError | None:
        sid = command.session_id

        if command.top_label:
            try:
                self.stats.increment_topic(sid, command.top_label)
            except redis.RedisError as e:
                return dependency_failure(f"Counter error(topic): {e}")

        for tag in select_tags(command.top_tags):
            try:
                self.stats.increment_keyword(sid, tag)
            except redis.RedisError as e:
                return dependency_failure(f"Counter error(keyword): {e}")

        try:
            self.audit.append(sid, action=command.action, prev_entry_id=command.expected_current_entry_id)
        except redis.RedisError as e:
            return dependency_failure(f"DB error(log): {e}")

        return None
