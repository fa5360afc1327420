from __future__ import annotations

import asyncio
from contextlib import suppress
from dataclasses import dataclass, field
from typing import Any

from rollbot.domain.errors import ChannelDeliveryError


@dataclass
class StubNotificationChannel:
    values: list[int | None] = field(default_factory=lambda: [1, 2, 3, 4, 5, 6])
    failing_chats: set[str] = field(default_factory=set)
    crashing_chats: set[str] = field(default_factory=set)
    delay_seconds: float = 0.0
    get_me_error: Exception | None = None
    identity: dict[str, object] = field(
        default_factory=lambda: {"id": 1, "is_bot": True, "first_name": "Helper", "username": "stub_helper_bot"}
    )
    calls: list[tuple[str, str]] = field(default_factory=list)
    texts: list[tuple[str, str]] = field(default_factory=list)
    handlers: list[Any] = field(default_factory=list)
    listener_running: bool = False
    listener_stops: int = 0
    closed: bool = False

    async def get_me(self) -> dict[str, object]:
        if self.get_me_error is not None:
            raise self.get_me_error
        return dict(self.identity)

    async def send_random_event(
        self,
        chat_ref: str,
        variant: str,
        *,
        reply_to_message_id: int | None = None,
    ) -> int | None:
        del reply_to_message_id
        self.calls.append((chat_ref, variant))
        if self.delay_seconds:
            await asyncio.sleep(self.delay_seconds)
        if chat_ref in self.crashing_chats:
            raise RuntimeError(f"stub channel crashed for chat {chat_ref}")
        if chat_ref in self.failing_chats:
            raise ChannelDeliveryError(
                f"stub delivery refused for chat {chat_ref}",
                error_code="channel_delivery_failed",
            )
        return self.values[(len(self.calls) - 1) % len(self.values)]

    def add_message_handler(self, handler: Any) -> None:
        self.handlers.append(handler)

    def remove_message_handler(self, handler: Any) -> None:
        with suppress(ValueError):
            self.handlers.remove(handler)

    async def send_text(self, chat_ref: str, text: str) -> None:
        self.texts.append((chat_ref, text))

    async def start_listener(self) -> None:
        self.listener_running = True

    async def stop_listener(self) -> None:
        if self.listener_running:
            self.listener_stops += 1
        self.listener_running = False

    async def aclose(self) -> None:
        await self.stop_listener()
        self.closed = True
