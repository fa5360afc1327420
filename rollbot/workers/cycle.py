from __future__ import annotations

from dataclasses import dataclass
import logging
from typing import Any

from rollbot.domain.contracts import RollRequestRepository
from rollbot.domain.models import CycleReport, RequestStatus
from rollbot.workers.processor import RequestProcessor

logger = logging.getLogger("rollbot.cycle")


@dataclass
class ClaimCycle:
    repository: RollRequestRepository
    processor: RequestProcessor
    max_batch_size: int = 5

    async def run_once(self) -> CycleReport:
        """Claim one batch, process it row by row and commit it as a whole.

        Store failures and unclassified processing errors roll the batch back
        and are reported, not raised; the rows stay pending for the next cycle.
        """
        report = CycleReport()
        try:
            batch = await self.repository.claim_batch(limit=self.max_batch_size)
        except Exception:
            logger.exception("roll request claim failed", extra={"error_code": "store_unavailable"})
            report.rolled_back = True
            return report

        handle = batch.handle
        try:
            if not batch.requests:
                await self.repository.commit(handle)
                report.committed = True
                return report

            report.claimed = len(batch.requests)
            logger.info("pending roll requests claimed", extra={"rows": report.claimed})
            for request in batch.requests:
                processed = await self.processor.process(handle, request)
                report.outcomes[request.request_id] = processed.outcome
                if not processed.recorded:
                    report.conflicts += 1
                elif processed.outcome.status == RequestStatus.COMPLETED:
                    report.completed += 1
                else:
                    report.errored += 1

            await self.repository.commit(handle)
            report.committed = True
        except Exception:
            logger.exception(
                "roll cycle failed, rolling back batch",
                extra={"rows": report.claimed, "error_code": "internal_error"},
            )
            await self._rollback(handle)
            report.completed = report.errored = report.conflicts = 0
            report.committed = False
            report.rolled_back = True
        finally:
            await self._release(handle)
        return report

    async def _rollback(self, handle: Any) -> None:
        try:
            await self.repository.rollback(handle)
            logger.info("roll cycle transaction rolled back")
        except Exception:
            logger.exception("roll cycle rollback failed", extra={"error_code": "store_unavailable"})

    async def _release(self, handle: Any) -> None:
        try:
            await self.repository.release(handle)
        except Exception:
            logger.exception("roll cycle connection release failed", extra={"error_code": "store_unavailable"})
