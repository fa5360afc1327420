from __future__ import annotations

from typing import Any, Protocol, runtime_checkable

from rollbot.domain.models import ClaimedBatch

CLAIM_SQL_CONTRACT = "SELECT ... WHERE status = 'pending' ORDER BY requested_at ASC LIMIT $1 FOR UPDATE SKIP LOCKED"


@runtime_checkable
class RollRequestRepository(Protocol):
    """Repository contract for the claim/process/record cycle.

    Claim semantics must remain compatible with Postgres row claims using
    SELECT ... FOR UPDATE SKIP LOCKED: a handle returned by claim_batch holds
    exclusive leases on its rows until commit or rollback, and concurrent
    claims skip those rows instead of waiting for them.
    """

    async def ping(self) -> None: ...

    async def claim_batch(self, *, limit: int) -> ClaimedBatch: ...

    async def record_outcome(
        self,
        handle: Any,
        *,
        request_id: int,
        status: str,
        result_value: int | None,
    ) -> bool: ...

    async def commit(self, handle: Any) -> None: ...

    async def rollback(self, handle: Any) -> None: ...

    # Must be safe to call on every exit path, including after a failed commit.
    async def release(self, handle: Any) -> None: ...


@runtime_checkable
class NotificationChannel(Protocol):
    """Side-effecting randomized action plus the bot's own inbound listener."""

    async def get_me(self) -> dict[str, object]: ...

    async def send_random_event(
        self,
        chat_ref: str,
        variant: str,
        *,
        reply_to_message_id: int | None = None,
    ) -> int | None: ...

    async def start_listener(self) -> None: ...

    async def stop_listener(self) -> None: ...

    async def aclose(self) -> None: ...


@runtime_checkable
class InteractiveChannel(NotificationChannel, Protocol):
    """Channel that also dispatches inbound chat messages to registered handlers."""

    def add_message_handler(self, handler: Any) -> None: ...

    def remove_message_handler(self, handler: Any) -> None: ...

    async def send_text(self, chat_ref: str, text: str) -> None: ...


@runtime_checkable
class RequestSource(Protocol):
    name: str

    async def start(self) -> None: ...

    async def stop(self) -> None: ...
