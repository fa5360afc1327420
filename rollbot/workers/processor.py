from __future__ import annotations

import asyncio
from dataclasses import dataclass
import logging
from typing import Any

from rollbot.domain.contracts import NotificationChannel, RollRequestRepository
from rollbot.domain.error_taxonomy import resolve_row_error
from rollbot.domain.errors import ChannelDeliveryError
from rollbot.domain.models import RequestStatus, RollOutcome, RollRequest
from rollbot.domain.variants import is_supported_variant, is_valid_outcome, resolve_variant

logger = logging.getLogger("rollbot.cycle")


@dataclass(frozen=True)
class ProcessedRequest:
    request: RollRequest
    outcome: RollOutcome
    recorded: bool


@dataclass
class RequestProcessor:
    repository: RollRequestRepository
    channel: NotificationChannel
    send_timeout_ms: int = 10000

    async def resolve_outcome(self, request: RollRequest) -> RollOutcome:
        """Send the animated roll for one request and map the channel result to an outcome.

        Channel failures become row-level ``error`` outcomes. Anything the channel
        raises besides ``ChannelDeliveryError`` or a timeout propagates.
        """
        variant = resolve_variant(request.variant)
        if not is_supported_variant(variant):
            return RollOutcome.failed("unsupported_variant", detail=f"unsupported variant: {variant}")

        try:
            value = await asyncio.wait_for(
                self.channel.send_random_event(request.chat_ref, variant),
                timeout=self.send_timeout_ms / 1000,
            )
        except TimeoutError:
            return RollOutcome.failed(
                "channel_timeout",
                detail=f"channel call exceeded {self.send_timeout_ms}ms",
            )
        except ChannelDeliveryError as exc:
            return RollOutcome.failed(resolve_row_error(exc.error_code), detail=str(exc))

        if not is_valid_outcome(value, variant):
            return RollOutcome.failed("channel_no_outcome", detail=f"unusable roll value: {value!r}")
        return RollOutcome.completed(value)  # type: ignore[arg-type]

    async def process(self, handle: Any, request: RollRequest) -> ProcessedRequest:
        variant = resolve_variant(request.variant)
        log_extra: dict[str, object] = {
            "request_id": request.request_id,
            "game_id": request.game_ref,
            "chat_id": request.chat_ref,
            "variant": variant,
        }
        logger.info("processing roll request", extra=log_extra)

        outcome = await self.resolve_outcome(request)
        if outcome.status == RequestStatus.ERROR:
            logger.error(
                "roll delivery failed",
                extra={**log_extra, "error_code": outcome.error_code, "detail": outcome.detail},
            )
        else:
            logger.info("roll delivered", extra={**log_extra, "roll_value": outcome.result_value})

        recorded = await self.repository.record_outcome(
            handle,
            request_id=request.request_id,
            status=outcome.status.value,
            result_value=outcome.result_value,
        )
        if recorded:
            logger.info(
                "roll request updated",
                extra={**log_extra, "status": outcome.status.value, "roll_value": outcome.result_value},
            )
        else:
            logger.warning(
                "roll request update skipped, status changed concurrently",
                extra={**log_extra, "status": outcome.status.value, "error_code": "claim_conflict"},
            )
        return ProcessedRequest(request=request, outcome=outcome, recorded=recorded)
