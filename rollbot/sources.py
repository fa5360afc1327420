from __future__ import annotations

from dataclasses import dataclass
import logging
import re

from rollbot.clients.telegram import TelegramMessage
from rollbot.domain.contracts import InteractiveChannel
from rollbot.domain.variants import DEFAULT_VARIANT, SUPPORTED_VARIANTS, is_supported_variant
from rollbot.workers.scheduler import CycleScheduler

SUPPORTED_SOURCES = (
    "queue-poll",
    "inline-trigger",
)

ROLL_COMMAND = re.compile(r"^/roll(?:@\w+)?(?:\s+(?P<emoji>\S+))?\s*$", re.IGNORECASE)

logger = logging.getLogger("runtime")


@dataclass(frozen=True)
class SourceMode:
    name: str

    @property
    def needs_database(self) -> bool:
        return self.name == "queue-poll"


def validate_source(source: str) -> SourceMode:
    if source in SUPPORTED_SOURCES:
        return SourceMode(name=source)

    supported = ", ".join(SUPPORTED_SOURCES)
    raise ValueError(
        f"Unsupported request source '{source}'. Supported sources: {supported}. "
        "Note: the producer that inserts roll requests is external."
    )


class QueuePollSource:
    """Roll requests claimed from the shared table by the cycle scheduler."""

    name = "queue-poll"

    def __init__(self, scheduler: CycleScheduler) -> None:
        self.scheduler = scheduler

    async def start(self) -> None:
        self.scheduler.start()

    async def stop(self) -> None:
        await self.scheduler.stop()


def parse_trigger(text: str | None) -> str | None:
    if text is None:
        return None
    stripped = text.strip()
    if stripped in SUPPORTED_VARIANTS:
        return stripped
    match = ROLL_COMMAND.match(stripped)
    if match is None:
        return None
    return match.group("emoji") or DEFAULT_VARIANT


class InlineTriggerSource:
    """Rolls answered directly from chat messages such as ``/roll 🎯`` or a bare 🎲."""

    name = "inline-trigger"

    def __init__(self, channel: InteractiveChannel) -> None:
        self.channel = channel
        self.rolls_total = 0

    async def start(self) -> None:
        self.channel.add_message_handler(self.handle_message)

    async def stop(self) -> None:
        self.channel.remove_message_handler(self.handle_message)

    async def handle_message(self, message: TelegramMessage) -> bool:
        variant = parse_trigger(message.text)
        if variant is None:
            return False

        chat_ref = str(message.chat.id)
        if not is_supported_variant(variant):
            supported = ", ".join(f"{known.emoji} {known.label}" for known in SUPPORTED_VARIANTS.values())
            await self.channel.send_text(chat_ref, f"Unsupported emoji {variant}. Try one of: {supported}")
            return True

        value = await self.channel.send_random_event(
            chat_ref,
            variant,
            reply_to_message_id=message.message_id,
        )
        self.rolls_total += 1
        logger.info(
            "inline roll sent",
            extra={"service": self.name, "chat_id": chat_ref, "variant": variant, "roll_value": value},
        )
        return True
