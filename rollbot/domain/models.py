from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import StrEnum
from typing import Any

from rollbot.domain.error_taxonomy import ErrorCode
from rollbot.domain.errors import DomainInvariantError
from rollbot.domain.variants import is_valid_outcome


class RequestStatus(StrEnum):
    PENDING = "pending"
    COMPLETED = "completed"
    ERROR = "error"


TERMINAL_STATUSES = frozenset({RequestStatus.COMPLETED, RequestStatus.ERROR})


@dataclass(frozen=True)
class RollRequest:
    request_id: int
    game_ref: str
    chat_ref: str
    requester_ref: str
    variant: str | None = None
    status: RequestStatus = RequestStatus.PENDING
    result_value: int | None = None
    requested_at: datetime | None = None
    processed_at: datetime | None = None


@dataclass(frozen=True)
class RollOutcome:
    status: RequestStatus
    result_value: int | None = None
    error_code: ErrorCode | None = None
    detail: str = ""

    @classmethod
    def completed(cls, value: int) -> RollOutcome:
        return cls(status=RequestStatus.COMPLETED, result_value=value)

    @classmethod
    def failed(cls, error_code: ErrorCode, detail: str = "") -> RollOutcome:
        return cls(status=RequestStatus.ERROR, error_code=error_code, detail=detail)


@dataclass(frozen=True)
class ClaimedBatch:
    """Leased requests plus the open transaction that holds their leases."""

    requests: list[RollRequest]
    handle: Any


@dataclass
class CycleReport:
    claimed: int = 0
    completed: int = 0
    errored: int = 0
    conflicts: int = 0
    committed: bool = False
    rolled_back: bool = False
    outcomes: dict[int, RollOutcome] = field(default_factory=dict)

    @property
    def idle(self) -> bool:
        return self.claimed == 0 and not self.rolled_back


def ensure_outcome_invariant(*, status: str, result_value: int | None) -> RequestStatus:
    try:
        resolved = RequestStatus(status)
    except ValueError as exc:
        raise DomainInvariantError(f"unknown request status: {status}") from exc
    if resolved not in TERMINAL_STATUSES:
        raise DomainInvariantError(f"outcome status must be terminal, got: {resolved}")
    if resolved == RequestStatus.COMPLETED and not is_valid_outcome(result_value):
        raise DomainInvariantError(f"completed outcome needs a value in 1..6, got: {result_value!r}")
    if resolved == RequestStatus.ERROR and result_value is not None:
        raise DomainInvariantError("error outcome must not carry a value")
    return resolved
