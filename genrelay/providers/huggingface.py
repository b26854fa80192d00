from __future__ import annotations
import json
from typing import Any, Dict, Optional

import httpx

try:
    from ..errors import ProviderUnavailable
    from .http import HttpProvider
    from .types import Capability, SyncResult
except ImportError:
    from genrelay.errors import ProviderUnavailable
    from genrelay.providers.http import HttpProvider
    from genrelay.providers.types import Capability, SyncResult


def _prompt(data: Dict[str, Any]) -> str:
    # chat requests carry the joined history as "context"; prefer it over the bare prompt
    return str(data.get("context") or data.get("prompt") or "")


class HuggingFaceSpaceProvider(HttpProvider):
    name = "hf_space"
    timeout_s = 120.0

    def __init__(self, space_url: Optional[str], *, transport: Optional[httpx.AsyncBaseTransport] = None) -> None:
        super().__init__(transport=transport)
        self.space_url = (space_url or "").rstrip("/")

    @property
    def enabled(self) -> bool:
        return bool(self.space_url)

    @staticmethod
    def _output(r: httpx.Response) -> Optional[str]:
        try:
            data = r.json()
        except ValueError:
            return r.text or None
        if isinstance(data, dict):
            if isinstance(data.get("data"), list) and data["data"]:
                return str(data["data"][0])
            if data.get("generated_text"):
                return str(data["generated_text"])
        if isinstance(data, str) and data:
            return data
        return None

    async def submit(self, capability: Capability, data: Dict[str, Any]) -> SyncResult:
        self._require_enabled("HF_SPACE_URL")
        prompt = _prompt(data)
        base = self.space_url
        last_error: Optional[Exception] = None
        # Spaces expose the predict route under different paths depending on the gradio version
        for url in (f"{base}/run/predict", f"{base}/api/predict", base):
            try:
                r = await self._request("POST", url, json={"data": [prompt]})
            except ProviderUnavailable as e:
                last_error = e
                continue
            text = self._output(r)
            if text:
                return SyncResult(text, {"endpoint": url})
        raise ProviderUnavailable(self.name, f"space did not return output (last error: {last_error})")


class HuggingFaceInferenceProvider(HttpProvider):
    name = "hf_api"
    timeout_s = 120.0

    def __init__(
        self,
        model_urls: Dict[str, Optional[str]],
        api_key: Optional[str],
        *,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        super().__init__(transport=transport)
        self.model_urls = {k: v for k, v in model_urls.items() if v}
        self.api_key = api_key

    @property
    def enabled(self) -> bool:
        return bool(self.model_urls and self.api_key)

    def url_for(self, model: Optional[str]) -> Optional[str]:
        return self.model_urls.get(str(model or "").lower()) or self.model_urls.get("default")

    async def submit(self, capability: Capability, data: Dict[str, Any]) -> SyncResult:
        self._require_enabled("HF_URL or HUGGINGFACE_API_KEY")
        url = self.url_for(data.get("model"))
        if not url:
            raise ProviderUnavailable(self.name, f"no endpoint for model {data.get('model')!r}")
        r = await self._request(
            "POST",
            url,
            json={"inputs": _prompt(data)},
            headers={"Authorization": f"Bearer {self.api_key}"},
        )
        body = self._json(r)
        if isinstance(body, list) and body and isinstance(body[0], dict) and body[0].get("generated_text"):
            text = body[0]["generated_text"]
        elif isinstance(body, dict) and body.get("generated_text"):
            text = body["generated_text"]
        elif isinstance(body, dict) and isinstance(body.get("data"), list) and body["data"]:
            text = body["data"][0]
        else:
            text = json.dumps(body)[:4000]
        return SyncResult(str(text), {"endpoint": url})
