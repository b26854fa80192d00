from __future__ import annotations
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence, Tuple, Union

try:
    from .errors import ProviderError, ProviderUnavailable
    from .notifier import MessageSink, ProgressNotifier
    from .poller import JobPoller
    from .providers.base import SYNC, ProviderCandidate
    from .providers.types import AsyncHandle, Capability, SyncResult
except ImportError:
    from genrelay.errors import ProviderError, ProviderUnavailable
    from genrelay.notifier import MessageSink, ProgressNotifier
    from genrelay.poller import JobPoller
    from genrelay.providers.base import SYNC, ProviderCandidate
    from genrelay.providers.types import AsyncHandle, Capability, SyncResult

logger = logging.getLogger(__name__)


@dataclass
class Attempt:
    provider: str
    ok: bool
    latency_ms: int = 0
    error: Optional[str] = None
    error_type: Optional[str] = None


@dataclass
class ChainResult:
    capability: Capability
    provider: str
    output: Any
    attempts: List[Attempt] = field(default_factory=list)
    provider_meta: Dict[str, Any] = field(default_factory=dict)
    ok: bool = True

    @property
    def failed_attempts(self) -> List[Attempt]:
        return [a for a in self.attempts if not a.ok]


@dataclass
class AllProvidersFailed:
    capability: Capability
    last_error: Optional[BaseException] = None
    attempts: List[Attempt] = field(default_factory=list)
    ok: bool = False

    def __str__(self) -> str:
        if not self.attempts:
            return f"no provider configured for {self.capability.value}"
        return f"all providers failed for {self.capability.value} (last error: {self.last_error})"


Outcome = Union[ChainResult, AllProvidersFailed]


class FallbackChainExecutor:
    """Try the configured candidates of a capability one after another.

    Candidates are never run in parallel: providers bill per attempt. A
    candidate whose client is not enabled is skipped and not recorded as an
    attempt; ``only`` restricts the chain to the named candidates.
    ``ProviderError`` subclasses (and unexpected client exceptions) are logged
    and the next candidate is tried; task cancellation propagates. A ``sync``
    candidate that hands back a job counts as a failed attempt.
    """

    def __init__(
        self,
        chains: Mapping[Capability, Sequence[ProviderCandidate]],
        *,
        poller: Optional[JobPoller] = None,
        notifier_factory: Optional[Callable[[MessageSink], ProgressNotifier]] = None,
    ) -> None:
        self._chains: Dict[Capability, Tuple[ProviderCandidate, ...]] = {
            Capability(cap): tuple(cands) for cap, cands in chains.items()
        }
        self.poller = poller or JobPoller()
        self._notifier_factory = notifier_factory or ProgressNotifier

    def candidates(self, capability: Union[Capability, str]) -> Tuple[ProviderCandidate, ...]:
        return self._chains.get(Capability(capability), ())

    @property
    def capabilities(self) -> List[Capability]:
        return list(self._chains)

    async def execute(
        self,
        capability: Union[Capability, str],
        data: Mapping[str, Any],
        progress_sink: Optional[MessageSink] = None,
        *,
        only: Optional[Sequence[str]] = None,
    ) -> Outcome:
        capability = Capability(capability)
        attempts: List[Attempt] = []
        last_error: Optional[BaseException] = None
        for cand in self.candidates(capability):
            if only is not None and cand.name not in only:
                continue
            if not cand.configured:
                logger.debug("skipping %s for %s: not configured", cand.name, capability.value)
                continue
            t0 = time.perf_counter()
            try:
                output, meta = await self._attempt(cand, capability, data, progress_sink)
            except ProviderError as e:
                last_error = e
                attempts.append(Attempt(cand.name, False, _elapsed_ms(t0), str(e), type(e).__name__))
                logger.warning("%s failed for %s, trying next provider: %s", cand.name, capability.value, e)
                continue
            except Exception as e:
                last_error = ProviderUnavailable(cand.name, f"unexpected error: {e}")
                attempts.append(Attempt(cand.name, False, _elapsed_ms(t0), str(e), type(e).__name__))
                logger.warning("%s raised unexpectedly for %s, trying next provider", cand.name, capability.value, exc_info=True)
                continue
            attempts.append(Attempt(cand.name, True, _elapsed_ms(t0)))
            logger.info("%s served %s after %d attempt(s)", cand.name, capability.value, len(attempts))
            return ChainResult(capability, cand.name, output, attempts, meta)
        outcome = AllProvidersFailed(capability, last_error, attempts)
        logger.warning("%s", outcome)
        return outcome

    async def _attempt(
        self,
        cand: ProviderCandidate,
        capability: Capability,
        data: Mapping[str, Any],
        progress_sink: Optional[MessageSink],
    ) -> Tuple[Any, Dict[str, Any]]:
        submitted = await cand.client.submit(capability, dict(data))
        if isinstance(submitted, SyncResult):
            return submitted.output, dict(submitted.provider_meta)
        if isinstance(submitted, AsyncHandle):
            if cand.kind == SYNC:
                raise ProviderUnavailable(cand.name, f"returned job {submitted.job_id} but is registered as synchronous")
            on_status = None
            if progress_sink is not None:
                on_status = self._notifier_factory(progress_sink).on_status
            payload = await self.poller.poll_to_completion(
                cand.client,  # type: ignore[arg-type]
                submitted,
                on_status,
                deadline_s=cand.deadline_s,
            )
            meta = {"job_id": submitted.job_id, **submitted.provider_meta}
            return payload.output, meta
        raise ProviderUnavailable(cand.name, f"unexpected submit result {type(submitted).__name__}")


def _elapsed_ms(t0: float) -> int:
    return int((time.perf_counter() - t0) * 1000)
