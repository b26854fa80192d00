from __future__ import annotations
import asyncio
import logging

from deep_translator import GoogleTranslator

logger = logging.getLogger(__name__)

DEFAULT_TARGET = "en"


class Translator:
    """Google Translate through deep-translator; failures return the input text unchanged."""

    name = "translate"

    def __init__(self, source: str = "auto") -> None:
        self.source = source

    def _translate(self, text: str, target: str) -> str:
        return GoogleTranslator(source=self.source, target=target).translate(text)

    async def translate(self, text: str, target: str = DEFAULT_TARGET) -> str:
        try:
            # the client is blocking
            out = await asyncio.to_thread(self._translate, text, target)
        except Exception as e:
            logger.warning("translation to %s failed, returning input: %s", target, e)
            return text
        return out or text
