from __future__ import annotations

from datetime import datetime
from enum import StrEnum
from typing import Any, Literal

from pydantic import BaseModel, Field, field_validator


class EntryStatus(StrEnum):
    pending = "pending"
    speaking = "speaking"
    done = "done"
    skipped = "skipped"


class TerminalAction(StrEnum):
    done = "done"
    skipped = "skipped"


class SessionState(BaseModel):
    session_id: str

    # None once the queue is exhausted.
    current_entry_id: str | None = None
    updated_at: datetime | None = None


class SessionEntry(BaseModel):
    id: str
    session_id: str
    order_index: int
    status: EntryStatus = EntryStatus.pending
    started_at: datetime | None = None
    ended_at: datetime | None = None


class ActionAuditRecord(BaseModel):
    id: str
    session_id: str
    actor: str
    action: TerminalAction
    prev_entry_id: str
    ts: datetime


class AdvanceRequest(BaseModel):
    session_id: str = Field(..., min_length=1)
    expected_current_entry_id: str = Field(..., min_length=1)
    action: TerminalAction

    # Optional best-effort tallies.
    top_label: str | None = None
    top_tags: list[str] | None = None

    @field_validator("top_label", mode="before")
    @classmethod
    def _ignore_non_string_label(cls, v: Any) -> Any:
        return v if isinstance(v, str) else None

    @field_validator("top_tags", mode="before")
    @classmethod
    def _stringify_tags(cls, v: Any) -> Any:
        # Falsy tags stay in place as "" so the 3-tag cap counts them.
        if not isinstance(v, list):
            return None
        return [str(t) if t else "" for t in v]


class SessionStateView(BaseModel):
    session_id: str
    current_entry_id: str | None


class NextEntry(BaseModel):
    id: str
    order_index: int


class AdvanceResponse(BaseModel):
    ok: Literal[True] = True
    session_state: SessionStateView
    next_entry: NextEntry | None


class ErrorResponse(BaseModel):
    ok: Literal[False] = False
    code: int
    message: str


class SessionView(BaseModel):
    state: SessionState
    entries: list[SessionEntry] = Field(default_factory=list)


class SessionStatsResponse(BaseModel):
    session_id: str
    topics: dict[str, int] = Field(default_factory=dict)
    keywords: dict[str, int] = Field(default_factory=dict)


class ActionLogResponse(BaseModel):
    session_id: str
    actions: list[ActionAuditRecord]


class InitSessionRequest(BaseModel):
    entry_ids: list[str] = Field(default_factory=list)

    # Shuffles the turn order reproducibly when set.
    seed: int | None = None

    @field_validator("entry_ids")
    @classmethod
    def _unique_non_empty_ids(cls, v: list[str]) -> list[str]:
        if any(not eid for eid in v):
            raise ValueError("entry ids must be non-empty")
        if len(set(v)) != len(v):
            raise ValueError("entry ids must be unique")
        return v
