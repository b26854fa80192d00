"""Telegram Bot API transport and the chat-bound message sink used for progress."""
from __future__ import annotations
import asyncio
import contextlib
import logging
from typing import Any, AsyncIterator, Dict, Optional, Union

import httpx

try:
    from .errors import TransportError
except ImportError:
    from genrelay.errors import TransportError

logger = logging.getLogger(__name__)

TELEGRAM_API = "https://api.telegram.org"

MEDIA_METHODS = {
    "photo": "sendPhoto",
    "video": "sendVideo",
    "voice": "sendVoice",
    "document": "sendDocument",
}


def with_prefix(text: str, prefix: Optional[str]) -> str:
    return f"{prefix}\n\n{text}" if prefix else text


class TelegramTransport:
    def __init__(
        self,
        token: str,
        *,
        api_base: str = TELEGRAM_API,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        timeout_s: float = 30.0,
    ) -> None:
        self._url = f"{api_base.rstrip('/')}/bot{token}"
        self._transport = transport
        self.timeout_s = timeout_s

    async def _call(self, method: str, data: Optional[Dict[str, Any]] = None, files: Optional[Dict[str, Any]] = None) -> Any:
        async with httpx.AsyncClient(timeout=self.timeout_s, transport=self._transport) as client:
            try:
                if files:
                    r = await client.post(f"{self._url}/{method}", data=data or {}, files=files)
                else:
                    r = await client.post(f"{self._url}/{method}", json=data or {})
            except httpx.HTTPError as e:
                raise TransportError(f"{method} failed: {e}") from e
        try:
            body = r.json()
        except ValueError:
            raise TransportError(f"{method} returned HTTP {r.status_code}") from None
        if not r.is_success or not body.get("ok"):
            raise TransportError(f"{method} rejected: {body.get('description') or r.status_code}")
        return body.get("result")

    async def send_message(self, chat_id: Union[int, str], text: str, parse_mode: Optional[str] = None) -> int:
        data: Dict[str, Any] = {"chat_id": chat_id, "text": text[:4096]}
        if parse_mode:
            data["parse_mode"] = parse_mode
        result = await self._call("sendMessage", data)
        return int(result["message_id"])

    async def edit_message(self, chat_id: Union[int, str], message_id: int, text: str) -> bool:
        try:
            await self._call("editMessageText", {"chat_id": chat_id, "message_id": message_id, "text": text[:4096]})
        except TransportError as e:
            logger.info("edit of message %s in %s failed: %s", message_id, chat_id, e)
            return False
        return True

    async def send_chat_action(self, chat_id: Union[int, str], action: str = "typing") -> None:
        try:
            await self._call("sendChatAction", {"chat_id": chat_id, "action": action})
        except TransportError as e:
            logger.debug("chat action failed: %s", e)

    async def send_media(
        self,
        chat_id: Union[int, str],
        kind: str,
        media: Union[str, bytes],
        caption: Optional[str] = None,
    ) -> int:
        method = MEDIA_METHODS.get(kind)
        if method is None:
            raise ValueError(f"unsupported media kind: {kind}")
        data: Dict[str, Any] = {"chat_id": chat_id}
        if caption:
            data["caption"] = caption[:1024]
        if isinstance(media, (bytes, bytearray)):
            result = await self._call(method, data, files={kind: (f"{kind}.bin", bytes(media))})
        else:
            data[kind] = str(media)
            result = await self._call(method, data)
        return int(result["message_id"])

    async def set_webhook(self, url: str) -> Any:
        return await self._call("setWebhook", {"url": url})


class ChatSink:
    """Binds a transport to one chat so the progress notifier can send and edit."""

    def __init__(self, transport: TelegramTransport, chat_id: Union[int, str], prefix: Optional[str] = None) -> None:
        self.transport = transport
        self.chat_id = chat_id
        self.prefix = prefix

    async def send_message(self, text: str) -> int:
        return await self.transport.send_message(self.chat_id, with_prefix(text, self.prefix))

    async def edit_message(self, handle: int, text: str) -> bool:
        return await self.transport.edit_message(self.chat_id, handle, with_prefix(text, self.prefix))


@contextlib.asynccontextmanager
async def keep_typing(transport: TelegramTransport, chat_id: Union[int, str], interval_s: float = 2.5) -> AsyncIterator[None]:
    """Show the typing indicator until the block finishes."""

    async def _loop() -> None:
        while True:
            await transport.send_chat_action(chat_id, "typing")
            await asyncio.sleep(interval_s)

    task = asyncio.create_task(_loop())
    try:
        yield
    finally:
        task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await task
