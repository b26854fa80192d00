import asyncio

import pytest

from genrelay.errors import JobFailed, JobTimedOut, ProviderUnavailable
from genrelay.poller import JobPoller
from genrelay.providers.types import AsyncHandle, Capability, JobStatus, StatusPayload


class FakeClock:
    def __init__(self):
        self.now = 0.0

    def __call__(self):
        return self.now

    async def sleep(self, seconds):
        self.now += seconds


class ScriptedJob:
    """Returns the scripted payloads in order, repeating the last one forever."""

    name = "fake"
    enabled = True

    def __init__(self, script):
        self.script = list(script)
        self.calls = 0

    async def fetch_status(self, handle):
        self.calls += 1
        item = self.script.pop(0) if len(self.script) > 1 else self.script[0]
        if isinstance(item, Exception):
            raise item
        return item


def _handle(job_id="p1"):
    return AsyncHandle(job_id=job_id, provider="fake", capability=Capability.TEXT_TO_IMAGE)


def _poller(clock, deadline_s=600.0):
    return JobPoller(poll_interval_s=3.0, deadline_s=deadline_s, clock=clock, sleep=clock.sleep)


@pytest.mark.asyncio
async def test_returns_payload_on_success():
    clock = FakeClock()
    client = ScriptedJob([
        StatusPayload(JobStatus.PENDING),
        StatusPayload(JobStatus.RUNNING, progress=0.5),
        StatusPayload(JobStatus.SUCCEEDED, output="https://cdn/out.png"),
    ])
    seen = []
    result = await _poller(clock).poll_to_completion(client, _handle(), seen.append)
    assert result.output == "https://cdn/out.png"
    assert [p.status for p in seen] == [JobStatus.PENDING, JobStatus.RUNNING, JobStatus.SUCCEEDED]
    assert clock.now == 6.0


@pytest.mark.asyncio
async def test_failed_status_raises_job_failed():
    clock = FakeClock()
    client = ScriptedJob([StatusPayload(JobStatus.RUNNING), StatusPayload(JobStatus.FAILED, error="NSFW content")])
    with pytest.raises(JobFailed) as ei:
        await _poller(clock).poll_to_completion(client, _handle())
    assert ei.value.details == "NSFW content"
    assert ei.value.job_id == "p1"


@pytest.mark.asyncio
async def test_deadline_wins_over_steady_progress():
    clock = FakeClock()

    class Advancing:
        name = "fake"
        calls = 0

        async def fetch_status(self, handle):
            self.calls += 1
            return StatusPayload(JobStatus.RUNNING, progress=min(0.99, self.calls * 0.1))

    client = Advancing()
    with pytest.raises(JobTimedOut) as ei:
        await _poller(clock, deadline_s=10.0).poll_to_completion(client, _handle())
    assert ei.value.deadline_s == 10.0
    assert clock.now > 10.0
    assert client.calls == 4  # t=0, 3, 6, 9


@pytest.mark.asyncio
async def test_deadline_shorter_than_interval():
    clock = FakeClock()
    client = ScriptedJob([StatusPayload(JobStatus.RUNNING)])
    with pytest.raises(JobTimedOut):
        await _poller(clock, deadline_s=2.0).poll_to_completion(client, _handle())
    assert client.calls == 1


@pytest.mark.asyncio
async def test_per_call_deadline_overrides_default():
    clock = FakeClock()
    client = ScriptedJob([StatusPayload(JobStatus.RUNNING)])
    with pytest.raises(JobTimedOut):
        await _poller(clock, deadline_s=600.0).poll_to_completion(client, _handle(), deadline_s=5.0)
    assert clock.now == 6.0


@pytest.mark.asyncio
async def test_transient_status_errors_are_skipped():
    clock = FakeClock()
    client = ScriptedJob([
        ProviderUnavailable("fake", "connection reset"),
        ProviderUnavailable("fake", "HTTP 502", status_code=502),
        StatusPayload(JobStatus.SUCCEEDED, output="ok"),
    ])
    seen = []
    result = await _poller(clock).poll_to_completion(client, _handle(), seen.append)
    assert result.output == "ok"
    assert len(seen) == 1
    assert client.calls == 3


@pytest.mark.asyncio
async def test_callback_errors_do_not_abort_polling():
    clock = FakeClock()
    client = ScriptedJob([StatusPayload(JobStatus.RUNNING), StatusPayload(JobStatus.SUCCEEDED, output="done")])

    def broken(payload):
        raise RuntimeError("chat deleted")

    result = await _poller(clock).poll_to_completion(client, _handle(), broken)
    assert result.output == "done"


@pytest.mark.asyncio
async def test_async_callback_is_awaited():
    clock = FakeClock()
    client = ScriptedJob([StatusPayload(JobStatus.RUNNING), StatusPayload(JobStatus.SUCCEEDED)])
    seen = []

    async def on_status(payload):
        await asyncio.sleep(0)
        seen.append(payload.status)

    await _poller(clock).poll_to_completion(client, _handle(), on_status)
    assert seen == [JobStatus.RUNNING, JobStatus.SUCCEEDED]


@pytest.mark.asyncio
async def test_same_job_cannot_be_polled_twice():
    gate = asyncio.Event()

    class Blocking:
        name = "fake"

        async def fetch_status(self, handle):
            await gate.wait()
            return StatusPayload(JobStatus.SUCCEEDED, output="x")

    poller = JobPoller(poll_interval_s=0.01, deadline_s=30.0)
    first = asyncio.create_task(poller.poll_to_completion(Blocking(), _handle("dup")))
    await asyncio.sleep(0)
    assert poller.active_jobs == {"fake:dup"}
    with pytest.raises(ValueError):
        await poller.poll_to_completion(Blocking(), _handle("dup"))
    gate.set()
    assert (await first).output == "x"
    assert poller.active_jobs == set()


@pytest.mark.asyncio
async def test_cancellation_stops_polling():
    client = ScriptedJob([StatusPayload(JobStatus.RUNNING)])
    poller = JobPoller(poll_interval_s=0.01, deadline_s=30.0)
    task = asyncio.create_task(poller.poll_to_completion(client, _handle("c1")))
    await asyncio.sleep(0.05)
    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task
    calls = client.calls
    await asyncio.sleep(0.05)
    assert client.calls == calls
    assert poller.active_jobs == set()


def test_job_status_only_moves_forward():
    poller = JobPoller(clock=lambda: 100.0)
    job = poller.track(_handle(), deadline_s=30.0)
    assert job.created_at == 100.0 and job.deadline_at == 130.0
    assert job.status is JobStatus.PENDING
    job.advance(JobStatus.RUNNING)
    job.advance(JobStatus.PENDING)
    assert job.status is JobStatus.RUNNING
    job.advance(JobStatus.SUCCEEDED)
    job.advance(JobStatus.FAILED)
    assert job.status is JobStatus.SUCCEEDED
