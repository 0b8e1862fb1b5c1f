"""Error taxonomy shared by the advancer and the HTTP layer.

The core returns `TurnError` values instead of raising; `ApiError` exists only so
FastAPI dependencies (auth, body parsing) can bail out of a request early.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import StrEnum


class ErrorKind(StrEnum):
    validation = "validation"
    auth = "auth"
    method_not_allowed = "method_not_allowed"
    state_conflict = "state_conflict"
    dependency_failure = "dependency_failure"
    unexpected = "unexpected"

    @property
    def status_code(self) -> int:
        return _STATUS_BY_KIND[self]


_STATUS_BY_KIND: dict[ErrorKind, int] = {
    ErrorKind.validation: 400,
    ErrorKind.auth: 403,
    ErrorKind.method_not_allowed: 405,
    ErrorKind.state_conflict: 409,
    ErrorKind.dependency_failure: 500,
    ErrorKind.unexpected: 500,
}


@dataclass(frozen=True, slots=True)
class TurnError:
    kind: ErrorKind
    message: str

    @property
    def status_code(self) -> int:
        return self.kind.status_code

    def body(self) -> dict[str, object]:
        return {"ok": False, "code": self.status_code, "message": self.message}


class ApiError(Exception):
    def __init__(self, error: TurnError) -> None:
        super().__init__(error.message)
        self.error = error


def conflict(message: str) -> TurnError:
    return TurnError(kind=ErrorKind.state_conflict, message=message)


def dependency_failure(message: str) -> TurnError:
    return TurnError(kind=ErrorKind.dependency_failure, message=message)
