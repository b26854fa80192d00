from __future__ import annotations
from typing import Any, Dict, Optional

import httpx

try:
    from ..errors import ProviderUnavailable
except ImportError:
    from genrelay.errors import ProviderUnavailable


def first(value: Any) -> Any:
    if isinstance(value, (list, tuple)):
        return value[0] if value else None
    return value


class HttpProvider:
    """Shared plumbing for the httpx-backed provider clients.

    A fresh ``AsyncClient`` is opened per request. Transport errors and non-2xx
    answers become ``ProviderUnavailable`` so the fallback chain can move on.
    """

    name = "http"
    timeout_s = 60.0

    def __init__(self, *, transport: Optional[httpx.AsyncBaseTransport] = None, timeout_s: Optional[float] = None) -> None:
        self._transport = transport
        if timeout_s is not None:
            self.timeout_s = timeout_s

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=self.timeout_s, transport=self._transport)

    async def _request(self, method: str, url: str, **kwargs: Any) -> httpx.Response:
        async with self._client() as client:
            try:
                r = await client.request(method, url, **kwargs)
            except httpx.HTTPError as e:
                raise ProviderUnavailable(self.name, f"{method} {url} failed: {e}") from e
        if not r.is_success:
            raise ProviderUnavailable(self.name, f"HTTP {r.status_code} {method} {url}: {r.text[:300]}", status_code=r.status_code)
        return r

    def _json(self, r: httpx.Response) -> Any:
        try:
            return r.json()
        except ValueError:
            raise ProviderUnavailable(self.name, f"non-JSON response from {r.request.url.path}") from None

    def _require_enabled(self, what: str) -> None:
        if not getattr(self, "enabled", True):
            raise ProviderUnavailable(self.name, f"not configured: missing {what}")

    @staticmethod
    def map_input(data: Dict[str, Any], input_map: Optional[Dict[str, str]]) -> Dict[str, Any]:
        """Project the generic input onto provider field names (``{provider_field: input_key}``)."""
        if not input_map:
            return dict(data)
        return {dst: data[src] for dst, src in input_map.items() if src in data}
