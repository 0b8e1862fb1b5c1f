from __future__ import annotations

from statemachine import State, StateMachine

from turnq.api.models import EntryStatus, SessionEntry, TerminalAction


CLOSE_EVENTS: dict[TerminalAction, str] = {
    TerminalAction.done: "finish",
    TerminalAction.skipped: "skip",
}


class EntryLifecycle(StateMachine):
    """FSM wrapper around one SessionEntry.

    - pending -> speaking (promotion only)
    - speaking -> done | skipped (terminal)

    Redis writes are staged by the stores; the FSM only guards the transition and
    mirrors the resulting status back onto the model.
    """

    pending = State(EntryStatus.pending.value, value=EntryStatus.pending.value, initial=True)
    speaking = State(EntryStatus.speaking.value, value=EntryStatus.speaking.value)
    finished = State(EntryStatus.done.value, value=EntryStatus.done.value, final=True)
    skipped = State(EntryStatus.skipped.value, value=EntryStatus.skipped.value, final=True)

    promote = pending.to(speaking)
    finish = speaking.to(finished)
    skip = speaking.to(skipped)

    def __init__(self, entry: SessionEntry):
        self.entry = entry
        super().__init__(start_value=entry.status.value)

    def close(self, action: TerminalAction) -> EntryStatus:
        self.send(CLOSE_EVENTS[action])
        self.sync_status_to_model()
        return self.entry.status

    def open_turn(self) -> EntryStatus:
        self.promote()
        self.sync_status_to_model()
        return self.entry.status

    def sync_status_to_model(self) -> None:
        self.entry.status = EntryStatus(str(self.current_state.value))
