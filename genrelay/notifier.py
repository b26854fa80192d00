"""Throttled progress messages for a single polled job.

Providers report progress in different shapes: a numeric ``progress`` field, a
``metrics.progress`` entry, or only free-text log lines. ``extract_percent``
normalizes all of them to 0-100, and ``ProgressNotifier`` decides whether a
tick is worth a visible update.
"""
from __future__ import annotations
import logging
import math
import re
import time
from dataclasses import dataclass
from typing import Any, Callable, Mapping, Optional, Protocol

logger = logging.getLogger(__name__)

DEFAULT_MIN_DELTA = 5
DEFAULT_MIN_INTERVAL_MS = 15000

_PERCENT_RE = re.compile(r"(\d{1,3})\s?%")
_PROGRESS_RE = re.compile(r"progress[:=]\s*([0-9.]+)", re.IGNORECASE)


class MessageSink(Protocol):
    async def send_message(self, text: str) -> Any: ...

    async def edit_message(self, handle: Any, text: str) -> bool: ...


@dataclass
class ProgressSample:
    percent: Optional[int]
    timestamp: float


@dataclass
class NotifierState:
    last_emitted_percent: Optional[int] = None
    last_emit_time: Optional[float] = None
    message_handle: Any = None
    emitted: int = 0


def _clamp(value: float) -> int:
    return int(min(100, max(0, round(value))))


def _field(payload: Any, name: str) -> Any:
    if isinstance(payload, Mapping):
        return payload.get(name)
    return getattr(payload, name, None)


def _scale(value: Any) -> Optional[int]:
    """Numeric progress fields are fractions when <= 1, percentages otherwise."""
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    if isinstance(value, float) and not math.isfinite(value):
        return None
    if value <= 1:
        value = value * 100
    return _clamp(value)


def percent_from_log(line: str) -> Optional[int]:
    m = _PERCENT_RE.search(line)
    if m:
        return _clamp(int(m.group(1)))
    m = _PROGRESS_RE.search(line)
    if m:
        try:
            p = float(m.group(1))
        except ValueError:
            return None
        if not math.isfinite(p):
            return None
        if p <= 1:
            p = p * 100
        return _clamp(p)
    return None


def extract_percent(payload: Any) -> Optional[int]:
    pct = _scale(_field(payload, "progress"))
    if pct is not None:
        return pct
    metrics = _field(payload, "metrics")
    if isinstance(metrics, Mapping):
        pct = _scale(metrics.get("progress"))
        if pct is not None:
            return pct
    logs = _field(payload, "logs")
    if isinstance(logs, str):
        logs = logs.splitlines()
    if logs:
        last = logs[-1]
        if isinstance(last, str):
            return percent_from_log(last)
    return None


def format_progress(percent: Optional[int]) -> str:
    shown = f"{percent}%" if percent is not None else "processing..."
    return f"Processing: {shown}"


class ProgressNotifier:
    """Turns poll ticks into at most one visible update per threshold crossing.

    An update is emitted when the known percent moved by at least
    ``min_delta`` points since the last emitted one, or when ``min_interval_ms``
    passed since the last update (even without a known percent). The first tick
    always emits. Delivery errors never escape ``on_status``.
    """

    def __init__(
        self,
        sink: MessageSink,
        *,
        min_delta: int = DEFAULT_MIN_DELTA,
        min_interval_ms: int = DEFAULT_MIN_INTERVAL_MS,
        clock: Callable[[], float] = time.monotonic,
        formatter: Callable[[Optional[int]], str] = format_progress,
    ) -> None:
        self._sink = sink
        self.min_delta = min_delta
        self.min_interval_ms = min_interval_ms
        self._clock = clock
        self._formatter = formatter
        self.state = NotifierState()

    def sample(self, payload: Any) -> ProgressSample:
        return ProgressSample(percent=extract_percent(payload), timestamp=self._clock())

    def should_emit(self, sample: ProgressSample) -> bool:
        st = self.state
        if st.last_emit_time is None:
            return True
        if sample.percent is not None:
            if st.last_emitted_percent is None or sample.percent - st.last_emitted_percent >= self.min_delta:
                return True
        return (sample.timestamp - st.last_emit_time) * 1000 >= self.min_interval_ms

    async def on_status(self, payload: Any) -> bool:
        try:
            sample = self.sample(payload)
            if not self.should_emit(sample):
                return False
            await self._emit(sample)
            return True
        except Exception:
            logger.warning("progress update failed", exc_info=True)
            return False

    async def _emit(self, sample: ProgressSample) -> None:
        st = self.state
        st.last_emit_time = sample.timestamp
        shown = sample.percent
        if shown is not None and st.last_emitted_percent is not None:
            shown = max(shown, st.last_emitted_percent)
        await self._deliver(self._formatter(shown))
        st.emitted += 1
        if shown is not None:
            st.last_emitted_percent = shown

    async def _deliver(self, text: str) -> None:
        st = self.state
        if st.message_handle is not None:
            try:
                if await self._sink.edit_message(st.message_handle, text):
                    return
            except Exception as e:
                logger.info("could not edit progress message, sending a new one: %s", e)
        st.message_handle = await self._sink.send_message(text)
