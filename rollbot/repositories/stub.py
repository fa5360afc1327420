from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta

from rollbot.domain.errors import DomainInvariantError
from rollbot.domain.models import ClaimedBatch, RequestStatus, RollRequest, ensure_outcome_invariant


@dataclass
class _RequestRow:
    request_id: int
    game_ref: str
    chat_ref: str
    requester_ref: str
    variant: str | None
    requested_at: datetime
    status: RequestStatus = RequestStatus.PENDING
    result_value: int | None = None
    processed_at: datetime | None = None


@dataclass
class InMemoryClaimHandle:
    handle_id: int
    leased: list[int] = field(default_factory=list)
    staged: dict[int, tuple[RequestStatus, int | None]] = field(default_factory=dict)
    finished: bool = False
    released: bool = False


@dataclass
class InMemoryRollRequestRepository:
    """Non-network repository that emulates row leases with skip-on-lease claims."""

    rows: dict[int, _RequestRow] = field(default_factory=dict)
    leases: dict[int, int] = field(default_factory=dict)
    commits: list[int] = field(default_factory=list)
    rollbacks: list[int] = field(default_factory=list)
    open_connections: int = 0
    ping_error: Exception | None = None
    next_request_id: int = 1
    next_handle_id: int = 1

    async def insert_request(
        self,
        *,
        game_ref: str,
        chat_ref: str,
        requester_ref: str,
        variant: str | None = None,
        requested_at: datetime | None = None,
    ) -> RollRequest:
        # Producer-side helper; rows created here always start pending.
        if requested_at is None:
            requested_at = datetime.now(tz=UTC) + timedelta(microseconds=self.next_request_id)
        row = _RequestRow(
            request_id=self.next_request_id,
            game_ref=game_ref,
            chat_ref=chat_ref,
            requester_ref=requester_ref,
            variant=variant,
            requested_at=requested_at,
        )
        self.rows[row.request_id] = row
        self.next_request_id += 1
        return _snapshot(row)

    def get_request(self, request_id: int) -> RollRequest:
        row = self.rows.get(request_id)
        if row is None:
            raise KeyError(f"roll request not found: {request_id}")
        return _snapshot(row)

    def list_requests(self) -> list[RollRequest]:
        return [_snapshot(row) for row in self.rows.values()]

    def force_status(self, request_id: int, status: RequestStatus, result_value: int | None = None) -> None:
        """Change committed state behind the worker's back, as another writer would."""
        row = self.rows[request_id]
        row.status = status
        row.result_value = result_value
        row.processed_at = datetime.now(tz=UTC) if status != RequestStatus.PENDING else None

    async def ping(self) -> None:
        if self.ping_error is not None:
            raise self.ping_error

    async def claim_batch(self, *, limit: int) -> ClaimedBatch:
        if limit < 1:
            raise DomainInvariantError(f"claim limit must be positive, got: {limit}")
        handle = InMemoryClaimHandle(handle_id=self.next_handle_id)
        self.next_handle_id += 1
        self.open_connections += 1

        available = sorted(
            (
                row
                for row in self.rows.values()
                if row.status == RequestStatus.PENDING and row.request_id not in self.leases
            ),
            key=lambda row: (row.requested_at, row.request_id),
        )
        claimed = available[:limit]
        for row in claimed:
            self.leases[row.request_id] = handle.handle_id
            handle.leased.append(row.request_id)
        return ClaimedBatch(requests=[_snapshot(row) for row in claimed], handle=handle)

    async def record_outcome(
        self,
        handle: InMemoryClaimHandle,
        *,
        request_id: int,
        status: str,
        result_value: int | None,
    ) -> bool:
        resolved = ensure_outcome_invariant(status=status, result_value=result_value)
        self._ensure_open(handle)
        row = self.rows.get(request_id)
        if row is None:
            return False
        owner = self.leases.get(request_id)
        if owner is not None and owner != handle.handle_id:
            return False
        current = handle.staged[request_id][0] if request_id in handle.staged else row.status
        if current != RequestStatus.PENDING:
            return False
        handle.staged[request_id] = (resolved, result_value)
        return True

    async def commit(self, handle: InMemoryClaimHandle) -> None:
        self._ensure_open(handle)
        processed_at = datetime.now(tz=UTC)
        for request_id, (status, result_value) in handle.staged.items():
            row = self.rows[request_id]
            row.status = status
            row.result_value = result_value
            row.processed_at = processed_at
        self._finish(handle)
        self.commits.append(handle.handle_id)

    async def rollback(self, handle: InMemoryClaimHandle) -> None:
        self._ensure_open(handle)
        self._finish(handle)
        self.rollbacks.append(handle.handle_id)

    async def release(self, handle: InMemoryClaimHandle) -> None:
        if handle.released:
            return
        if not handle.finished:
            # A connection returned mid-transaction loses its uncommitted work.
            self._finish(handle)
        handle.released = True
        self.open_connections -= 1

    def _ensure_open(self, handle: InMemoryClaimHandle) -> None:
        if handle.finished or handle.released:
            raise DomainInvariantError(f"claim handle {handle.handle_id} is no longer open")

    def _finish(self, handle: InMemoryClaimHandle) -> None:
        for request_id in handle.leased:
            if self.leases.get(request_id) == handle.handle_id:
                del self.leases[request_id]
        handle.staged.clear()
        handle.finished = True


def _snapshot(row: _RequestRow) -> RollRequest:
    return RollRequest(
        request_id=row.request_id,
        game_ref=row.game_ref,
        chat_ref=row.chat_ref,
        requester_ref=row.requester_ref,
        variant=row.variant,
        status=row.status,
        result_value=row.result_value,
        requested_at=row.requested_at,
        processed_at=row.processed_at,
    )
