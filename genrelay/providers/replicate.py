from __future__ import annotations
from typing import Any, Dict, List, Optional, Union

import httpx

try:
    from ..errors import ProviderUnavailable
    from .http import HttpProvider, first
    from .types import AsyncHandle, Capability, JobStatus, StatusPayload, SyncResult
except ImportError:
    from genrelay.errors import ProviderUnavailable
    from genrelay.providers.http import HttpProvider, first
    from genrelay.providers.types import AsyncHandle, Capability, JobStatus, StatusPayload, SyncResult

REPLICATE_API = "https://api.replicate.com/v1"

_STATUS = {
    "starting": JobStatus.PENDING,
    "queued": JobStatus.PENDING,
    "processing": JobStatus.RUNNING,
    "succeeded": JobStatus.SUCCEEDED,
    "failed": JobStatus.FAILED,
    "canceled": JobStatus.FAILED,
    "cancelled": JobStatus.FAILED,
}


def _log_lines(logs: Any) -> List[str]:
    if isinstance(logs, str):
        return [ln for ln in logs.splitlines() if ln.strip()]
    if isinstance(logs, list):
        return [str(ln) for ln in logs if ln is not None]
    return []


def parse_prediction(body: Dict[str, Any]) -> StatusPayload:
    status = _STATUS.get(str(body.get("status") or "").lower(), JobStatus.RUNNING)
    progress = body.get("progress")
    metrics = body.get("metrics") if isinstance(body.get("metrics"), dict) else {}
    return StatusPayload(
        status=status,
        progress=progress if isinstance(progress, (int, float)) and not isinstance(progress, bool) else None,
        metrics=metrics,
        logs=_log_lines(body.get("logs")),
        output=first(body.get("output")),
        error=str(body["error"]) if body.get("error") else None,
        raw=body,
    )


class ReplicateProvider(HttpProvider):
    """Replicate predictions: created once, then polled until terminal."""

    def __init__(
        self,
        api_key: Optional[str],
        model: Optional[str],
        *,
        name: str = "replicate",
        models: Optional[Dict[str, Optional[str]]] = None,
        input_map: Optional[Dict[str, str]] = None,
        base_url: str = REPLICATE_API,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        timeout_s: float = 60.0,
    ) -> None:
        super().__init__(transport=transport, timeout_s=timeout_s)
        self.name = name
        self.api_key = api_key
        self.model = model
        # per-request model choice: data["model"] is looked up here, falling back to ``model``
        self.models = {k: v for k, v in (models or {}).items() if v}
        self.input_map = dict(input_map or {})
        self.base_url = base_url.rstrip("/")

    @property
    def enabled(self) -> bool:
        return bool(self.api_key and (self.model or self.models))

    def model_for(self, data: Dict[str, Any]) -> Optional[str]:
        return self.models.get(str(data.get("model") or "")) or self.model

    @property
    def _headers(self) -> Dict[str, str]:
        return {"Authorization": f"Token {self.api_key}", "Content-Type": "application/json"}

    async def submit(self, capability: Capability, data: Dict[str, Any]) -> Union[SyncResult, AsyncHandle]:
        self._require_enabled("REPLICATE_API_KEY or model version")
        model = self.model_for(data)
        if not model:
            raise ProviderUnavailable(self.name, f"no model version for {data.get('model')!r}")
        payload = {"version": model, "input": self.map_input(data, self.input_map)}
        r = await self._request("POST", f"{self.base_url}/predictions", json=payload, headers=self._headers)
        body = self._json(r)
        if not isinstance(body, dict):
            raise ProviderUnavailable(self.name, "unexpected prediction response")
        output = first(body.get("output"))
        meta = {"model": model, "status": body.get("status")}
        if body.get("status") == "succeeded" and output is not None:
            return SyncResult(output, meta)
        if body.get("id"):
            return AsyncHandle(job_id=str(body["id"]), provider=self.name, capability=capability, provider_meta=meta)
        if output is not None:
            return SyncResult(output, meta)
        raise ProviderUnavailable(self.name, "prediction has neither id nor output")

    async def fetch_status(self, handle: AsyncHandle) -> StatusPayload:
        r = await self._request("GET", f"{self.base_url}/predictions/{handle.job_id}", headers=self._headers)
        body = self._json(r)
        if not isinstance(body, dict):
            raise ProviderUnavailable(self.name, "unexpected status response")
        return parse_prediction(body)
