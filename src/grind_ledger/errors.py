from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Generic, TypeVar, Union

T = TypeVar("T")


class ErrorKind(str, Enum):
    VALIDATION = "validation"
    ACTIVE_SESSION_CONFLICT = "active_session_conflict"
    SESSION_STATE = "session_state"
    RECORD_NOT_FOUND = "record_not_found"
    INVALID_PAYLOAD = "invalid_payload"


class LedgerError(Exception):
    kind: ErrorKind = ErrorKind.VALIDATION

    def __init__(self, message: str, field: str | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.field = field


class ValidationError(LedgerError):
    kind = ErrorKind.VALIDATION


class ActiveSessionConflict(LedgerError):
    kind = ErrorKind.ACTIVE_SESSION_CONFLICT

    def __init__(self, category_title: str) -> None:
        super().__init__(f"Stop the active session before deleting {category_title}.")
        self.category_title = category_title


class SessionStateError(LedgerError):
    kind = ErrorKind.SESSION_STATE


class RecordNotFound(LedgerError):
    kind = ErrorKind.RECORD_NOT_FOUND


class InvalidPayload(LedgerError):
    kind = ErrorKind.INVALID_PAYLOAD


@dataclass(frozen=True)
class Ok(Generic[T]):
    value: T
    ok: bool = True


@dataclass(frozen=True)
class Failure:
    kind: ErrorKind
    message: str
    field: str | None = None
    ok: bool = False

    @classmethod
    def from_error(cls, error: LedgerError) -> Failure:
        return cls(kind=error.kind, message=error.message, field=error.field)


Result = Union[Ok[T], Failure]
