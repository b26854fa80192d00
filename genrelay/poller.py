"""Drive a submitted provider job to a terminal state under a hard deadline.

The poll interval is constant: jobs are expected to finish within tens of
seconds to a few minutes, so backoff would only add latency.
"""
from __future__ import annotations
import asyncio
import inspect
import logging
import time
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional, Set, Union

try:
    from .errors import JobFailed, JobTimedOut, ProviderUnavailable
    from .providers.base import JobProviderClient
    from .providers.types import AsyncHandle, Capability, JobStatus, StatusPayload
except ImportError:
    from genrelay.errors import JobFailed, JobTimedOut, ProviderUnavailable
    from genrelay.providers.base import JobProviderClient
    from genrelay.providers.types import AsyncHandle, Capability, JobStatus, StatusPayload

logger = logging.getLogger(__name__)

DEFAULT_POLL_INTERVAL_S = 3.0
DEFAULT_DEADLINE_S = 600.0

StatusCallback = Callable[[StatusPayload], Union[None, Awaitable[None]]]


@dataclass
class Job:
    job_id: str
    provider: str
    capability: Capability
    created_at: float
    deadline_at: float
    status: JobStatus = JobStatus.PENDING
    last_payload: Optional[StatusPayload] = None

    @property
    def key(self) -> str:
        return f"{self.provider}:{self.job_id}"

    def advance(self, status: JobStatus) -> None:
        # forward-only: a late "pending" after "running" is ignored
        if self.status.terminal:
            return
        if status.rank >= self.status.rank:
            self.status = status


class JobPoller:
    def __init__(
        self,
        *,
        poll_interval_s: float = DEFAULT_POLL_INTERVAL_S,
        deadline_s: float = DEFAULT_DEADLINE_S,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.poll_interval_s = poll_interval_s
        self.deadline_s = deadline_s
        self._clock = clock
        self._sleep = sleep
        self._active: Set[str] = set()

    @property
    def active_jobs(self) -> Set[str]:
        return set(self._active)

    def track(self, handle: AsyncHandle, *, deadline_s: Optional[float] = None, submitted_at: Optional[float] = None) -> Job:
        created = self._clock() if submitted_at is None else submitted_at
        timeout = self.deadline_s if deadline_s is None else deadline_s
        return Job(
            job_id=handle.job_id,
            provider=handle.provider,
            capability=handle.capability,
            created_at=created,
            deadline_at=created + timeout,
        )

    async def poll_to_completion(
        self,
        client: JobProviderClient,
        handle: AsyncHandle,
        on_status: Optional[StatusCallback] = None,
        *,
        deadline_s: Optional[float] = None,
        submitted_at: Optional[float] = None,
    ) -> StatusPayload:
        """Poll ``handle`` until it succeeds, fails or runs past its deadline.

        Returns the terminal success payload. Raises ``JobFailed`` when the
        provider reports failure and ``JobTimedOut`` when the deadline, measured
        from submission, elapses. Transient ``ProviderUnavailable`` errors from
        status checks only skip the current tick.
        """
        job = self.track(handle, deadline_s=deadline_s, submitted_at=submitted_at)
        if job.key in self._active:
            raise ValueError(f"job {job.key} is already being polled")
        self._active.add(job.key)
        try:
            while True:
                remaining = job.deadline_at - self._clock()
                if remaining < 0:
                    break
                try:
                    payload = await asyncio.wait_for(client.fetch_status(handle), timeout=max(remaining, 0.001))
                except asyncio.TimeoutError:
                    break
                except ProviderUnavailable as e:
                    logger.debug("status check for %s failed, will retry: %s", job.key, e)
                else:
                    job.last_payload = payload
                    job.advance(payload.status)
                    await self._notify(job, on_status, payload)
                    if payload.status is JobStatus.SUCCEEDED:
                        logger.debug("job %s succeeded", job.key)
                        return payload
                    if payload.status is JobStatus.FAILED:
                        raise JobFailed(handle.provider, handle.job_id, payload.error or payload.raw)
                await self._sleep(self.poll_interval_s)
            job.status = JobStatus.TIMED_OUT
            raise JobTimedOut(handle.provider, handle.job_id, job.deadline_at - job.created_at)
        finally:
            self._active.discard(job.key)

    async def _notify(self, job: Job, on_status: Optional[StatusCallback], payload: StatusPayload) -> None:
        if on_status is None:
            return
        try:
            result = on_status(payload)
            if inspect.isawaitable(result):
                await result
        except Exception:
            logger.warning("status callback failed for job %s", job.key, exc_info=True)
