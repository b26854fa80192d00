from __future__ import annotations
from dataclasses import dataclass
from typing import Any, Dict, Optional, Protocol, Union

try:
    from .types import AsyncHandle, Capability, StatusPayload, SyncResult
except ImportError:
    from genrelay.providers.types import AsyncHandle, Capability, StatusPayload, SyncResult


class ProviderClient(Protocol):
    name: str

    @property
    def enabled(self) -> bool: ...

    async def submit(self, capability: Capability, data: Dict[str, Any]) -> Union[SyncResult, AsyncHandle]: ...


class JobProviderClient(ProviderClient, Protocol):
    async def fetch_status(self, handle: AsyncHandle) -> StatusPayload: ...


SYNC = "sync"
JOB = "job"


@dataclass(frozen=True)
class ProviderCandidate:
    """One entry of a capability's fallback list.

    ``kind`` tells whether the client answers inline (``sync``) or hands back a
    job that has to be polled (``job``). A ``job`` client may still answer
    inline; a ``sync`` client that hands back a job is a failed attempt.
    ``deadline_s`` overrides the default job deadline for this candidate only.
    """

    name: str
    client: ProviderClient
    kind: str = SYNC
    deadline_s: Optional[float] = None

    @property
    def configured(self) -> bool:
        return bool(getattr(self.client, "enabled", True))
