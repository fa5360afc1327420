"""Telegram Bot API channel used to send animated rolls.

Protocol contract:
  POST {api_base}/bot{token}/{method}
  Body: JSON parameters of the Bot API method
  Response: {
    "ok": true | false,
    "result": {...} (when ok),
    "error_code": 400, "description": "..." (when not ok)
  }
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from contextlib import suppress
import logging
import re
from typing import Any

import httpx
from pydantic import BaseModel, ValidationError

from rollbot.domain.errors import ChannelDeliveryError

logger = logging.getLogger("rollbot.telegram")

DEFAULT_API_BASE = "https://api.telegram.org"
HELP_COMMAND = re.compile(r"^/(start|help)(@\w+)?\b", re.IGNORECASE)
HELP_TEXT = (
    "I am an Animated Emoji Helper Bot.\n"
    "I process requests from the main casino bot to send animated emojis "
    "(like 🎲, 🎯, 🎳, etc.) and report their random results back.\n"
    "You do not need to interact with me directly."
)


class TelegramEnvelope(BaseModel):
    ok: bool
    result: Any | None = None
    error_code: int | None = None
    description: str | None = None


class TelegramUser(BaseModel):
    id: int
    is_bot: bool = False
    first_name: str | None = None
    username: str | None = None


class TelegramChat(BaseModel):
    id: int
    type: str | None = None


class TelegramDice(BaseModel):
    emoji: str
    value: int


class TelegramMessage(BaseModel):
    message_id: int
    chat: TelegramChat
    text: str | None = None
    dice: TelegramDice | None = None


class TelegramUpdate(BaseModel):
    update_id: int
    message: TelegramMessage | None = None


MessageHandler = Callable[[TelegramMessage], Awaitable[bool]]


class TelegramNotificationChannel:
    def __init__(
        self,
        token: str,
        *,
        api_base: str = DEFAULT_API_BASE,
        timeout: float = 30.0,
        poll_timeout_s: int = 25,
        error_backoff_s: float = 5.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.poll_timeout_s = poll_timeout_s
        self.error_backoff_s = error_backoff_s
        self._client = httpx.AsyncClient(
            base_url=f"{api_base.rstrip('/')}/bot{token}",
            timeout=timeout,
            transport=transport,
        )
        self._handlers: list[MessageHandler] = [self._answer_help]
        self._listener_task: asyncio.Task[None] | None = None
        self._listener_stop = asyncio.Event()
        self._offset: int | None = None

    def add_message_handler(self, handler: MessageHandler) -> None:
        self._handlers.append(handler)

    def remove_message_handler(self, handler: MessageHandler) -> None:
        with suppress(ValueError):
            self._handlers.remove(handler)

    async def get_me(self) -> dict[str, object]:
        result = await self._call("getMe")
        user = _validate(TelegramUser, result, method="getMe")
        return user.model_dump()

    async def send_random_event(
        self,
        chat_ref: str,
        variant: str,
        *,
        reply_to_message_id: int | None = None,
    ) -> int | None:
        payload: dict[str, object] = {"chat_id": chat_ref, "emoji": variant}
        if reply_to_message_id is not None:
            payload["reply_to_message_id"] = reply_to_message_id
        result = await self._call("sendDice", payload)
        message = _validate(TelegramMessage, result, method="sendDice")
        if message.dice is None:
            return None
        return message.dice.value

    async def send_text(self, chat_ref: str, text: str) -> None:
        await self._call("sendMessage", {"chat_id": chat_ref, "text": text})

    async def start_listener(self) -> None:
        if self._listener_task is not None and not self._listener_task.done():
            return
        self._listener_stop.clear()
        self._listener_task = asyncio.create_task(self._listen())
        logger.info("telegram listener started", extra={"service": "telegram"})

    async def stop_listener(self) -> None:
        task = self._listener_task
        if task is None:
            return
        self._listener_stop.set()
        # An in-flight long poll holds no state worth waiting for.
        task.cancel()
        with suppress(asyncio.CancelledError):
            await task
        self._listener_task = None
        logger.info("telegram listener stopped", extra={"service": "telegram"})

    @property
    def listening(self) -> bool:
        return self._listener_task is not None and not self._listener_task.done()

    async def aclose(self) -> None:
        await self.stop_listener()
        await self._client.aclose()

    async def poll_once(self) -> int:
        payload: dict[str, object] = {"timeout": self.poll_timeout_s, "allowed_updates": ["message"]}
        if self._offset is not None:
            payload["offset"] = self._offset
        result = await self._call("getUpdates", payload, timeout=self.poll_timeout_s + 10)
        if not isinstance(result, list):
            raise ChannelDeliveryError("telegram getUpdates returned a non-list result", error_code="channel_no_outcome")

        handled = 0
        for raw_update in result:
            update_id = raw_update.get("update_id") if isinstance(raw_update, dict) else None
            if isinstance(update_id, int):
                self._offset = update_id + 1
            try:
                update = _validate(TelegramUpdate, raw_update, method="getUpdates")
            except ChannelDeliveryError as exc:
                logger.warning(
                    "telegram update skipped",
                    extra={"service": "telegram", "error_code": exc.error_code, "detail": str(exc)},
                )
                continue
            if update.message is None:
                continue
            await self._dispatch(update.message)
            handled += 1
        return handled

    async def _listen(self) -> None:
        while not self._listener_stop.is_set():
            try:
                await self.poll_once()
            except ChannelDeliveryError as exc:
                logger.error(
                    "telegram polling error",
                    extra={"service": "telegram", "error_code": exc.error_code, "detail": str(exc)},
                )
                try:
                    await asyncio.wait_for(self._listener_stop.wait(), timeout=self.error_backoff_s)
                except TimeoutError:
                    continue

    async def _dispatch(self, message: TelegramMessage) -> None:
        for handler in list(self._handlers):
            try:
                if await handler(message):
                    return
            except Exception:
                logger.exception(
                    "telegram message handler failed",
                    extra={"service": "telegram", "chat_id": message.chat.id},
                )
                return

    async def _answer_help(self, message: TelegramMessage) -> bool:
        if message.text is None or HELP_COMMAND.match(message.text.strip()) is None:
            return False
        await self.send_text(str(message.chat.id), HELP_TEXT)
        return True

    async def _call(
        self,
        method: str,
        payload: dict[str, object] | None = None,
        *,
        timeout: float | None = None,
    ) -> Any:
        request_timeout = timeout if timeout is not None else self._client.timeout
        try:
            response = await self._client.post(f"/{method}", json=payload or {}, timeout=request_timeout)
        except httpx.HTTPError as exc:
            # The request URL embeds the bot token; report the error type only.
            raise ChannelDeliveryError(
                f"telegram {method} transport failed: {type(exc).__name__}",
                error_code="channel_delivery_failed",
            ) from exc

        try:
            envelope = TelegramEnvelope.model_validate(response.json())
        except (ValueError, ValidationError) as exc:
            raise ChannelDeliveryError(
                f"telegram {method} returned an unreadable response (HTTP {response.status_code})",
                error_code="channel_delivery_failed",
            ) from exc

        if not envelope.ok:
            raise ChannelDeliveryError(
                f"telegram {method} rejected: {envelope.error_code} {envelope.description or ''}".strip(),
                error_code="channel_delivery_failed",
            )
        return envelope.result


def _validate(model: type[BaseModel], payload: Any, *, method: str) -> Any:
    try:
        return model.model_validate(payload)
    except ValidationError as exc:
        raise ChannelDeliveryError(
            f"telegram {method} result failed validation: {exc.errors()[0].get('msg', 'validation error')}",
            error_code="channel_no_outcome",
        ) from exc
