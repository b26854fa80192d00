"""The ``/ai`` chat command: parse a mode, run its capability chain, reply."""
from __future__ import annotations
import json
import logging
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple, Union

try:
    from .chain import AllProvidersFailed, FallbackChainExecutor, Outcome
    from .errors import TransportError
    from .memory import MemoryStore
    from .providers.lookup import LookupProvider
    from .providers.registry import CHAT_MODELS, REPLICATE_CHAT_MODELS
    from .providers.translate import DEFAULT_TARGET, Translator
    from .providers.types import Capability
    from .settings import Settings
    from .transport import ChatSink, TelegramTransport, keep_typing, with_prefix
except ImportError:
    from genrelay.chain import AllProvidersFailed, FallbackChainExecutor, Outcome
    from genrelay.errors import TransportError
    from genrelay.memory import MemoryStore
    from genrelay.providers.lookup import LookupProvider
    from genrelay.providers.registry import CHAT_MODELS, REPLICATE_CHAT_MODELS
    from genrelay.providers.translate import DEFAULT_TARGET, Translator
    from genrelay.providers.types import Capability
    from genrelay.settings import Settings
    from genrelay.transport import ChatSink, TelegramTransport, keep_typing, with_prefix

logger = logging.getLogger(__name__)

HELP_TEXT = """
/ai <mode> <input>

Chat:
  /ai chat [model] <prompt>     -> models: llama2, mistral, flan_t5, falcon (default llama2)

Search:
  /ai wiki <topic>
  /ai duck <query>

Translate:
  /ai translate [lang] <text>   -> default 'en' (use 'am' for Amharic)

Media:
  /ai media <mode> <input>
    modes: t2i t2v i2v v2v upscale act flux fixface caption burncaption recon3d

TTS:
  /ai tts <text>

Replicate direct:
  /ai replicate <ENV_VAR_NAME> <prompt>

Admin:
  /ai post <@channel_or_channel_username> <message>     (admin only)
  /ai clear_memory <chatId>                              (admin only)
  /ai export_memory <chatId>                             (admin only)
"""

# media sub-mode -> (capability, input key, reply kind)
MEDIA_MODES = {
    "t2i": (Capability.TEXT_TO_IMAGE, "prompt", "photo"),
    "flux": (Capability.TEXT_TO_IMAGE, "prompt", "photo"),
    "t2v": (Capability.TEXT_TO_VIDEO, "prompt", "video"),
    "i2v": (Capability.IMAGE_TO_VIDEO, "image_url", "video"),
    "v2v": (Capability.VIDEO_TO_VIDEO, "video_url", "video"),
    "upscale": (Capability.VIDEO_UPSCALE, "video_url", "video"),
    "act": (Capability.CHARACTER_PERFORMANCE, "video_url", "video"),
    "fixface": (Capability.IMAGE_RESTORE, "image_url", "photo"),
    "caption": (Capability.VIDEO_CAPTION, "video_url", "text"),
    "burncaption": (Capability.VIDEO_BURN_CAPTION, "video_url", "video"),
    "recon3d": (Capability.RECONSTRUCT_3D, "video_url", "document"),
}

# sub-modes pinned to specific providers of their capability chain
MEDIA_PROVIDERS = {
    "flux": ("replicate",),
}

KNOWN_CHAT_MODELS = set(CHAT_MODELS) | set(REPLICATE_CHAT_MODELS)


class CommandRouter:
    def __init__(
        self,
        settings: Settings,
        executor: FallbackChainExecutor,
        transport: TelegramTransport,
        memory: MemoryStore,
        lookup: Optional[LookupProvider] = None,
        translator: Optional[Translator] = None,
    ) -> None:
        self.settings = settings
        self.executor = executor
        self.transport = transport
        self.memory = memory
        self.lookup = lookup or LookupProvider()
        self.translator = translator or Translator()
        self._modes: Dict[str, Callable[..., Awaitable[None]]] = {
            "help": self._help,
            "chat": self._chat,
            "wiki": self._wiki,
            "duck": self._duck,
            "translate": self._translate,
            "tts": self._tts,
            "media": self._media,
            "replicate": self._replicate,
            "post": self._post,
            "clear_memory": self._clear_memory,
            "export_memory": self._export_memory,
        }

    async def reply(self, chat_id: Union[int, str], text: str) -> None:
        try:
            await self.transport.send_message(chat_id, with_prefix(text, self.settings.reply_prefix))
        except TransportError as e:
            logger.warning("reply to %s failed: %s", chat_id, e)

    async def handle_update(self, update: Dict[str, Any]) -> None:
        msg = update.get("message") or update.get("edited_message") or {}
        text = (msg.get("text") or "").strip()
        chat_id = (msg.get("chat") or {}).get("id")
        user_id = (msg.get("from") or {}).get("id")
        if chat_id is None or not (text == "/ai" or text.startswith("/ai ") or text.startswith("/ai@")):
            return
        await self.handle(chat_id, user_id, text)

    async def handle(self, chat_id: Union[int, str], user_id: Optional[int], text: str) -> None:
        parts = text.split()[1:]
        if not parts:
            await self.reply(chat_id, "Usage: /ai <mode> <input>\nType /ai help for modes.")
            return
        mode = parts[0].lower()
        handler = self._modes.get(mode)
        if handler is None:
            await self.reply(chat_id, "Unknown mode. Type /ai help for usage.")
            return
        try:
            await handler(chat_id, user_id, parts[1:])
        except Exception as e:
            logger.exception("/ai %s failed", mode)
            await self.reply(chat_id, f"Error: {e}")

    async def run(
        self,
        chat_id: Union[int, str],
        capability: Capability,
        data: Dict[str, Any],
        only: Optional[Tuple[str, ...]] = None,
    ) -> Outcome:
        sink = ChatSink(self.transport, chat_id, self.settings.reply_prefix)
        async with keep_typing(self.transport, chat_id):
            return await self.executor.execute(capability, data, sink, only=only)

    async def deliver(self, chat_id: Union[int, str], outcome: Outcome, kind: str, caption: Optional[str] = None) -> None:
        if isinstance(outcome, AllProvidersFailed):
            await self.reply(chat_id, "No provider could handle that request right now. Please try again later.")
            return
        if outcome.output is None:
            await self.reply(chat_id, f"{outcome.provider} finished but produced no output.")
            return
        if kind == "text" or isinstance(outcome.output, (dict, list)):
            out = outcome.output if isinstance(outcome.output, str) else json.dumps(outcome.output)[:4000]
            await self.reply(chat_id, out)
            return
        cap = with_prefix(caption, self.settings.reply_prefix) if caption else None
        try:
            await self.transport.send_media(chat_id, kind, outcome.output, cap)
        except TransportError as e:
            logger.warning("sending %s to %s failed: %s", kind, chat_id, e)
            if isinstance(outcome.output, str):
                await self.reply(chat_id, outcome.output)

    # --- modes ---

    async def _help(self, chat_id, user_id, args: List[str]) -> None:
        await self.reply(chat_id, HELP_TEXT)

    async def _chat(self, chat_id, user_id, args: List[str]) -> None:
        if not args:
            await self.reply(chat_id, "Provide prompt: /ai chat [model] <prompt>")
            return
        model = "llama2"
        if len(args) > 1 and args[0].lower() in KNOWN_CHAT_MODELS:
            model = args[0].lower()
            args = args[1:]
        prompt = " ".join(args)
        key = user_id or chat_id
        history = await self.memory.get(key)
        history.append({"role": "user", "content": prompt})
        context = "\n".join(f"{m.get('role')}: {m.get('content')}" for m in history)

        outcome = await self.run(chat_id, Capability.CHAT_COMPLETION, {"prompt": prompt, "context": context, "model": model})
        if isinstance(outcome, AllProvidersFailed):
            await self.deliver(chat_id, outcome, "text")
            return
        answer = str(outcome.output if outcome.output is not None else "")
        history.append({"role": "assistant", "content": answer})
        await self.memory.save(key, history)
        await self.reply(chat_id, answer)

    async def _wiki(self, chat_id, user_id, args: List[str]) -> None:
        if not args:
            await self.reply(chat_id, "Usage: /ai wiki <topic>")
            return
        async with keep_typing(self.transport, chat_id):
            out = await self.lookup.wiki_summary(" ".join(args))
        await self.reply(chat_id, out)

    async def _duck(self, chat_id, user_id, args: List[str]) -> None:
        if not args:
            await self.reply(chat_id, "Usage: /ai duck <query>")
            return
        async with keep_typing(self.transport, chat_id):
            out = await self.lookup.duck_answer(" ".join(args))
        await self.reply(chat_id, out)

    async def _translate(self, chat_id, user_id, args: List[str]) -> None:
        if not args:
            await self.reply(chat_id, "Usage: /ai translate [lang] <text>")
            return
        target = DEFAULT_TARGET
        # a short leading token is the target language code
        if len(args) > 1 and len(args[0]) <= 3:
            target, args = args[0], args[1:]
        async with keep_typing(self.transport, chat_id):
            out = await self.translator.translate(" ".join(args), target)
        await self.reply(chat_id, out)

    async def _tts(self, chat_id, user_id, args: List[str]) -> None:
        if not args:
            await self.reply(chat_id, "Usage: /ai tts <text>")
            return
        outcome = await self.run(chat_id, Capability.TEXT_TO_SPEECH, {"text": " ".join(args)})
        if isinstance(outcome, AllProvidersFailed) and not outcome.attempts:
            await self.reply(chat_id, "No TTS provider configured.")
            return
        await self.deliver(chat_id, outcome, "voice")

    async def _media(self, chat_id, user_id, args: List[str]) -> None:
        if len(args) < 2:
            await self.reply(chat_id, "Usage: /ai media <mode> <input>. Type /ai help for modes.")
            return
        sub = args[0].lower()
        if sub not in MEDIA_MODES:
            await self.reply(chat_id, "Unknown media mode. Type /ai help for modes.")
            return
        capability, key, kind = MEDIA_MODES[sub]
        payload = " ".join(args[1:])
        outcome = await self.run(chat_id, capability, {key: payload}, only=MEDIA_PROVIDERS.get(sub))
        if isinstance(outcome, AllProvidersFailed) and not outcome.attempts:
            await self.reply(chat_id, "No provider configured for that media mode.")
            return
        await self.deliver(chat_id, outcome, kind, caption=payload)

    async def _replicate(self, chat_id, user_id, args: List[str]) -> None:
        if len(args) < 2:
            await self.reply(chat_id, "Usage: /ai replicate <ENV_VAR_NAME> <prompt>")
            return
        env_name = args[0]
        if not (env_name.startswith("REPLICATE_") and self.settings.get(env_name)):
            await self.reply(chat_id, f"No replicate model found in env as {env_name}")
            return
        outcome = await self.run(chat_id, Capability.CUSTOM, {"model": env_name, "prompt": " ".join(args[1:])})
        await self.deliver(chat_id, outcome, "text")

    async def _post(self, chat_id, user_id, args: List[str]) -> None:
        if not self.settings.is_admin(user_id):
            await self.reply(chat_id, "Admin only command.")
            return
        if len(args) < 2:
            await self.reply(chat_id, "Usage: /ai post <@channel_or_channelusername> <message>")
            return
        channel, message = args[0], " ".join(args[1:])
        try:
            await self.transport.send_message(channel, with_prefix(message, self.settings.reply_prefix), parse_mode="HTML")
        except TransportError as e:
            await self.reply(chat_id, f"Failed to post: {e}")
            return
        await self.reply(chat_id, f"Posted to {channel}")

    async def _clear_memory(self, chat_id, user_id, args: List[str]) -> None:
        if not self.settings.is_admin(user_id):
            await self.reply(chat_id, "Admin only command.")
            return
        target = args[0] if args else str(user_id)
        await self.memory.clear(target)
        await self.reply(chat_id, f"Cleared memory for {target}")

    async def _export_memory(self, chat_id, user_id, args: List[str]) -> None:
        if not self.settings.is_admin(user_id):
            await self.reply(chat_id, "Admin only command.")
            return
        target = args[0] if args else str(user_id)
        history = await self.memory.get(target)
        await self.reply(chat_id, f"Memory for {target}:\n{json.dumps(history)[:4000]}")
