"""Synchronous media providers: Runway, Stability, Pixabay and ElevenLabs."""
from __future__ import annotations
from typing import Any, Dict, Optional

import httpx

try:
    from ..errors import ProviderUnavailable
    from .http import HttpProvider, first
    from .types import Capability, SyncResult
except ImportError:
    from genrelay.errors import ProviderUnavailable
    from genrelay.providers.http import HttpProvider, first
    from genrelay.providers.types import Capability, SyncResult

STABILITY_URL = "https://api.stability.ai/v1/generation/stable-diffusion-v1-5/text-to-image"
PIXABAY_URL = "https://pixabay.com/api/"
ELEVENLABS_API = "https://api.elevenlabs.io/v1"


class RunwayProvider(HttpProvider):
    timeout_s = 600.0

    def __init__(
        self,
        api_key: Optional[str],
        endpoint: Optional[str],
        model: Optional[str],
        *,
        name: str = "runway",
        input_map: Optional[Dict[str, str]] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        super().__init__(transport=transport)
        self.name = name
        self.api_key = api_key
        self.endpoint = (endpoint or "").rstrip("/")
        self.model = model
        self.input_map = dict(input_map or {})

    @property
    def enabled(self) -> bool:
        return bool(self.api_key and self.endpoint)

    async def submit(self, capability: Capability, data: Dict[str, Any]) -> SyncResult:
        self._require_enabled("RUNWAY_API_KEY or endpoint")
        r = await self._request(
            "POST",
            self.endpoint,
            json={"model": self.model, "input": self.map_input(data, self.input_map)},
            headers={"Authorization": f"Bearer {self.api_key}"},
        )
        body = self._json(r)
        output = first(body.get("output")) if isinstance(body, dict) else None
        if not output:
            raise ProviderUnavailable(self.name, "returned no output yet")
        return SyncResult(output, {"model": self.model})


class StabilityProvider(HttpProvider):
    name = "stability"
    timeout_s = 180.0

    def __init__(self, api_key: Optional[str], *, url: str = STABILITY_URL, transport: Optional[httpx.AsyncBaseTransport] = None) -> None:
        super().__init__(transport=transport)
        self.api_key = api_key
        self.url = url

    @property
    def enabled(self) -> bool:
        return bool(self.api_key)

    async def submit(self, capability: Capability, data: Dict[str, Any]) -> SyncResult:
        self._require_enabled("STABILITY_KEY")
        payload = {
            "text_prompts": [{"text": data.get("prompt", "")}],
            "cfg_scale": data.get("cfg_scale", 7),
            "height": data.get("height", 512),
            "width": data.get("width", 512),
            "samples": 1,
        }
        r = await self._request(
            "POST",
            self.url,
            json=payload,
            headers={"Authorization": f"Bearer {self.api_key}", "Accept": "image/png"},
        )
        if not r.content:
            raise ProviderUnavailable(self.name, "empty image")
        return SyncResult(r.content, {"content_type": r.headers.get("content-type")})


class PixabayProvider(HttpProvider):
    name = "pixabay"
    timeout_s = 10.0

    def __init__(self, api_key: Optional[str], *, transport: Optional[httpx.AsyncBaseTransport] = None) -> None:
        super().__init__(transport=transport)
        self.api_key = api_key

    @property
    def enabled(self) -> bool:
        return bool(self.api_key)

    async def search(self, query: str) -> list:
        self._require_enabled("PIXABAY_KEY")
        params = {"key": self.api_key, "q": query, "image_type": "photo", "per_page": 3}
        r = await self._request("GET", PIXABAY_URL, params=params)
        body = self._json(r)
        return list(body.get("hits") or []) if isinstance(body, dict) else []

    async def submit(self, capability: Capability, data: Dict[str, Any]) -> SyncResult:
        hits = await self.search(str(data.get("prompt", "")))
        if not hits or not hits[0].get("largeImageURL"):
            raise ProviderUnavailable(self.name, "no matching images")
        return SyncResult(hits[0]["largeImageURL"], {"hits": len(hits)})


class ElevenLabsProvider(HttpProvider):
    name = "elevenlabs"
    timeout_s = 120.0

    def __init__(
        self,
        api_key: Optional[str],
        voice_id: Optional[str],
        *,
        api_url: Optional[str] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        super().__init__(transport=transport)
        self.api_key = api_key
        self.voice_id = voice_id
        self.api_url = (api_url or ELEVENLABS_API).rstrip("/")

    @property
    def enabled(self) -> bool:
        return bool(self.api_key and self.voice_id)

    async def submit(self, capability: Capability, data: Dict[str, Any]) -> SyncResult:
        self._require_enabled("ELEVENLABS_API_KEY or ELEVENLABS_VOICE_ID")
        r = await self._request(
            "POST",
            f"{self.api_url}/text-to-speech/{self.voice_id}",
            json={"text": data.get("text") or data.get("prompt", "")},
            headers={"xi-api-key": self.api_key},
        )
        if not r.content:
            raise ProviderUnavailable(self.name, "empty audio")
        return SyncResult(r.content, {"voice_id": self.voice_id})
