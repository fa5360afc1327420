from __future__ import annotations

from dataclasses import dataclass
import logging
import ssl
from typing import Any

import asyncpg

from rollbot.domain.errors import DomainInvariantError
from rollbot.domain.models import ClaimedBatch, RequestStatus, RollRequest, ensure_outcome_invariant
from rollbot.repositories.sql_loader import load_sql


SQL_CLAIM_BATCH = load_sql("claim_batch.sql")
SQL_RECORD_OUTCOME = load_sql("record_outcome.sql")
SQL_PING = load_sql("ping.sql")

logger = logging.getLogger("rollbot.storage")


def build_ssl_context(*, use_ssl: bool, reject_unauthorized: bool) -> ssl.SSLContext | bool:
    if not use_ssl:
        return False
    context = ssl.create_default_context()
    if not reject_unauthorized:
        # Managed Postgres hosts commonly present self-signed chains.
        context.check_hostname = False
        context.verify_mode = ssl.CERT_NONE
    return context


@dataclass
class AsyncpgPoolManager:
    dsn: str
    use_ssl: bool = True
    reject_unauthorized: bool = False
    min_size: int = 1
    max_size: int = 5
    pool: Any | None = None

    async def startup(self) -> None:
        if self.pool is not None:
            return
        self.pool = await asyncpg.create_pool(
            dsn=self.dsn,
            min_size=self.min_size,
            max_size=self.max_size,
            ssl=build_ssl_context(use_ssl=self.use_ssl, reject_unauthorized=self.reject_unauthorized),
        )
        logger.info("postgres pool created", extra={"service": "storage"})

    async def shutdown(self) -> None:
        if self.pool is None:
            return
        await self.pool.close()
        self.pool = None
        logger.info("postgres pool closed", extra={"service": "storage"})


@dataclass
class PostgresClaimHandle:
    conn: Any
    transaction: Any
    released: bool = False


@dataclass
class PostgresRollRequestRepository:
    pool_manager: AsyncpgPoolManager

    def _pool(self) -> Any:
        if self.pool_manager.pool is None:
            raise RuntimeError("postgres pool is not initialized")
        return self.pool_manager.pool

    async def ping(self) -> None:
        pool = self._pool()
        async with pool.acquire() as conn:
            await conn.fetchval(SQL_PING)

    async def claim_batch(self, *, limit: int) -> ClaimedBatch:
        if limit < 1:
            raise DomainInvariantError(f"claim limit must be positive, got: {limit}")
        pool = self._pool()
        conn = await pool.acquire()
        handle = PostgresClaimHandle(conn=conn, transaction=conn.transaction())
        try:
            await handle.transaction.start()
            rows = await conn.fetch(SQL_CLAIM_BATCH, limit)
        except BaseException:
            await self._abort_claim(handle)
            raise
        return ClaimedBatch(requests=[_request_from_row(row) for row in rows], handle=handle)

    async def record_outcome(
        self,
        handle: PostgresClaimHandle,
        *,
        request_id: int,
        status: str,
        result_value: int | None,
    ) -> bool:
        resolved = ensure_outcome_invariant(status=status, result_value=result_value)
        if handle.released:
            raise DomainInvariantError("claim handle was already released")
        command_status = await handle.conn.execute(SQL_RECORD_OUTCOME, resolved.value, result_value, request_id)
        return _affected_rows(command_status) > 0

    async def commit(self, handle: PostgresClaimHandle) -> None:
        await handle.transaction.commit()

    async def rollback(self, handle: PostgresClaimHandle) -> None:
        await handle.transaction.rollback()

    async def release(self, handle: PostgresClaimHandle) -> None:
        if handle.released:
            return
        handle.released = True
        await self._pool().release(handle.conn)

    async def _abort_claim(self, handle: PostgresClaimHandle) -> None:
        try:
            await handle.transaction.rollback()
        except Exception:
            logger.exception("claim rollback failed", extra={"service": "storage"})
        finally:
            await self.release(handle)


def _request_from_row(row: Any) -> RollRequest:
    return RollRequest(
        request_id=row["request_id"],
        game_ref=str(row["game_id"]),
        chat_ref=str(row["chat_id"]),
        requester_ref=str(row["user_id"]),
        variant=row["emoji_type"],
        status=RequestStatus(row["status"]),
        result_value=row["roll_value"],
        requested_at=row["requested_at"],
        processed_at=row["processed_at"],
    )


def _affected_rows(command_status: str) -> int:
    # asyncpg reports DML results as a command tag, e.g. "UPDATE 1".
    try:
        return int(command_status.rsplit(" ", maxsplit=1)[-1])
    except (AttributeError, ValueError):
        return 0
