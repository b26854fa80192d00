import asyncio
import json

import httpx
import pytest

from genrelay.errors import TransportError
from genrelay.transport import ChatSink, TelegramTransport, keep_typing, with_prefix


def telegram(handler):
    return TelegramTransport("123:abc", transport=httpx.MockTransport(handler))


def test_with_prefix():
    assert with_prefix("hi", "Belaynish") == "Belaynish\n\nhi"
    assert with_prefix("hi", "") == "hi"


@pytest.mark.asyncio
async def test_send_message():
    seen = {}

    def handler(request):
        seen["path"] = request.url.path
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, json={"ok": True, "result": {"message_id": 31}})

    mid = await telegram(handler).send_message(5, "hello", parse_mode="HTML")
    assert mid == 31
    assert seen["path"] == "/bot123:abc/sendMessage"
    assert seen["body"] == {"chat_id": 5, "text": "hello", "parse_mode": "HTML"}


@pytest.mark.asyncio
async def test_rejected_call_raises_transport_error():
    def handler(request):
        return httpx.Response(400, json={"ok": False, "description": "Bad Request: chat not found"})

    with pytest.raises(TransportError) as ei:
        await telegram(handler).send_message(5, "hello")
    assert "chat not found" in str(ei.value)


@pytest.mark.asyncio
async def test_edit_failure_returns_false():
    def handler(request):
        return httpx.Response(400, json={"ok": False, "description": "message can't be edited"})

    assert await telegram(handler).edit_message(5, 31, "Processing: 50%") is False


@pytest.mark.asyncio
async def test_send_media_by_url_and_bytes():
    requests = []

    def handler(request):
        requests.append(request)
        return httpx.Response(200, json={"ok": True, "result": {"message_id": 40 + len(requests)}})

    t = telegram(handler)
    assert await t.send_media(5, "photo", "https://x/cat.png", caption="cat") == 41
    assert json.loads(requests[0].content) == {"chat_id": 5, "photo": "https://x/cat.png", "caption": "cat"}
    assert await t.send_media(5, "voice", b"ID3audio") == 42
    assert requests[1].url.path.endswith("/sendVoice")
    assert requests[1].headers["content-type"].startswith("multipart/form-data")
    with pytest.raises(ValueError):
        await t.send_media(5, "sticker", "x")


@pytest.mark.asyncio
async def test_chat_sink_prefixes_progress_messages():
    bodies = []

    def handler(request):
        bodies.append((request.url.path.rsplit("/", 1)[-1], json.loads(request.content)))
        return httpx.Response(200, json={"ok": True, "result": {"message_id": 8}})

    sink = ChatSink(telegram(handler), 5, "Belaynish")
    handle = await sink.send_message("Processing: 10%")
    assert await sink.edit_message(handle, "Processing: 20%")
    assert bodies[0] == ("sendMessage", {"chat_id": 5, "text": "Belaynish\n\nProcessing: 10%"})
    assert bodies[1] == ("editMessageText", {"chat_id": 5, "message_id": 8, "text": "Belaynish\n\nProcessing: 20%"})


@pytest.mark.asyncio
async def test_keep_typing_stops_after_block():
    class Recorder:
        def __init__(self):
            self.actions = 0

        async def send_chat_action(self, chat_id, action="typing"):
            self.actions += 1

    t = Recorder()
    async with keep_typing(t, 5, interval_s=0.01):
        await asyncio.sleep(0.05)
    seen = t.actions
    assert seen >= 2
    await asyncio.sleep(0.03)
    assert t.actions == seen
