from __future__ import annotations
from typing import Any, Dict, Optional
from urllib.parse import quote

import httpx

try:
    from ..errors import ProviderUnavailable
    from .http import HttpProvider
    from .types import Capability, SyncResult
except ImportError:
    from genrelay.errors import ProviderUnavailable
    from genrelay.providers.http import HttpProvider
    from genrelay.providers.types import Capability, SyncResult

WIKI_SUMMARY = "https://en.wikipedia.org/api/rest_v1/page/summary/{title}"
DUCKDUCKGO_API = "https://api.duckduckgo.com/"


class LookupProvider(HttpProvider):
    """Last-resort answer built from Wikipedia and DuckDuckGo instant answers.

    Needs no credentials, so it is always enabled. Lookup failures are folded
    into the answer text instead of raised.
    """

    name = "lookup"
    timeout_s = 10.0

    def __init__(self, *, transport: Optional[httpx.AsyncBaseTransport] = None) -> None:
        super().__init__(transport=transport)

    @property
    def enabled(self) -> bool:
        return True

    async def wiki_summary(self, query: str) -> str:
        try:
            r = await self._request("GET", WIKI_SUMMARY.format(title=quote(query, safe="")))
            body = self._json(r)
        except ProviderUnavailable:
            return "Wikipedia lookup failed."
        return (body.get("extract") if isinstance(body, dict) else None) or "No Wikipedia summary found."

    async def duck_answer(self, query: str) -> str:
        params = {"q": query, "format": "json", "no_html": 1, "skip_disambig": 1}
        try:
            r = await self._request("GET", DUCKDUCKGO_API, params=params)
            body = self._json(r)
        except ProviderUnavailable:
            return "DuckDuckGo lookup failed."
        if not isinstance(body, dict):
            return "No DuckDuckGo instant answer."
        if body.get("AbstractText"):
            return body["AbstractText"]
        related = body.get("RelatedTopics") or []
        if related and isinstance(related[0], dict) and related[0].get("Text"):
            return related[0]["Text"]
        return "No DuckDuckGo instant answer."

    async def submit(self, capability: Capability, data: Dict[str, Any]) -> SyncResult:
        query = str(data.get("prompt", ""))
        w = await self.wiki_summary(query)
        d = await self.duck_answer(query)
        return SyncResult(f"{w}\n\nDuck summary:\n{d}", {"sources": ["wikipedia", "duckduckgo"]})
