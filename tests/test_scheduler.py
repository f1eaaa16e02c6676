"""Tests for the background sync scheduler loop."""

import asyncio
from types import SimpleNamespace

import pytest

from tributary.workers.scheduler import run_scheduler


class _RecordingOrchestrator:
    def __init__(self, fail_first: bool = False):
        self.calls: list[int] = []
        self.fail_first = fail_first
        self.ran = asyncio.Event()

    async def run_due_syncs(self, limit=None):
        self.calls.append(limit)
        if self.fail_first and len(self.calls) == 1:
            raise RuntimeError("database unavailable")
        if len(self.calls) >= 2:
            self.ran.set()
        return []


def _app(settings, orchestrator):
    settings.scheduler_poll_interval_seconds = 0
    settings.scheduler_batch_size = 7
    return SimpleNamespace(state=SimpleNamespace(settings=settings, orchestrator=orchestrator))


@pytest.mark.asyncio
async def test_scheduler_polls_with_batch_size(settings):
    orchestrator = _RecordingOrchestrator()
    task = asyncio.create_task(run_scheduler(_app(settings, orchestrator)))
    await asyncio.wait_for(orchestrator.ran.wait(), timeout=5)
    task.cancel()
    await asyncio.gather(task, return_exceptions=True)

    assert orchestrator.calls[:2] == [7, 7]
    assert task.done()


@pytest.mark.asyncio
async def test_scheduler_survives_errors(settings):
    orchestrator = _RecordingOrchestrator(fail_first=True)
    task = asyncio.create_task(run_scheduler(_app(settings, orchestrator)))
    await asyncio.wait_for(orchestrator.ran.wait(), timeout=5)
    task.cancel()
    await asyncio.gather(task, return_exceptions=True)

    assert len(orchestrator.calls) >= 2
