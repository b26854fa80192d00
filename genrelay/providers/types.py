from __future__ import annotations
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional


class Capability(str, Enum):
    CHAT_COMPLETION = "chat-completion"
    TEXT_TO_IMAGE = "text-to-image"
    TEXT_TO_VIDEO = "text-to-video"
    TEXT_TO_SPEECH = "text-to-speech"
    IMAGE_TO_VIDEO = "image-to-video"
    VIDEO_TO_VIDEO = "video-to-video"
    VIDEO_UPSCALE = "video-upscale"
    CHARACTER_PERFORMANCE = "character-performance"
    IMAGE_RESTORE = "image-restore"
    VIDEO_CAPTION = "video-caption"
    VIDEO_BURN_CAPTION = "video-burn-caption"
    RECONSTRUCT_3D = "reconstruct-3d"
    CUSTOM = "custom"


class JobStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    TIMED_OUT = "timed_out"

    @property
    def terminal(self) -> bool:
        return self in (JobStatus.SUCCEEDED, JobStatus.FAILED, JobStatus.TIMED_OUT)

    @property
    def rank(self) -> int:
        # succeeded/failed/timed_out share the last rank: none may follow another
        return {JobStatus.PENDING: 0, JobStatus.RUNNING: 1}.get(self, 2)


@dataclass
class SyncResult:
    output: Any
    provider_meta: Dict[str, Any] = field(default_factory=dict)


@dataclass
class AsyncHandle:
    job_id: str
    provider: str
    capability: Capability
    provider_meta: Dict[str, Any] = field(default_factory=dict)


@dataclass
class StatusPayload:
    status: JobStatus
    progress: Optional[float] = None
    metrics: Dict[str, Any] = field(default_factory=dict)
    logs: List[str] = field(default_factory=list)
    output: Any = None
    error: Optional[str] = None
    raw: Dict[str, Any] = field(default_factory=dict)
