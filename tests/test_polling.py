from __future__ import annotations

import asyncio

import pytest

from podflow.core.stages import derive_stage
from podflow.infrastructure import JobStoreError
from podflow.workers.polling import JobPoller, PollerRegistry

from conftest import uploaded_workflow

TRANSCRIBE = "/webhook/transcribe"
STATUS = "/webhook/transcription-status"


def _pending_job(service, webhooks):
    workflow = uploaded_workflow(service)
    webhooks.reply(TRANSCRIBE, {"jobId": "job-42", "status": "processing"})
    return service.dispatch_transcription(workflow.id)


@pytest.mark.asyncio
async def test_poller_stops_as_soon_as_the_job_completes(service, webhooks):
    workflow = _pending_job(service, webhooks)
    webhooks.reply(STATUS, {"status": "processing"}, {"status": "processing"}, {"status": "completed", "transcript": "Done."})

    poller = JobPoller(service, workflow.id, "transcription", interval=0, max_attempts=10)
    poller.start()
    assert await poller.wait() == "done"

    assert poller.attempts == 3
    assert len(webhooks.calls(STATUS)) == 3
    assert service.require_workflow(workflow.id).transcript == "Done."


@pytest.mark.asyncio
async def test_poller_abandons_after_max_attempts(service, webhooks):
    workflow = _pending_job(service, webhooks)
    webhooks.reply(STATUS, {"status": "processing"})

    poller = JobPoller(service, workflow.id, "transcription", interval=0, max_attempts=4)
    poller.start()
    assert await poller.wait() == "abandoned"

    assert poller.attempts == 4
    assert len(webhooks.calls(STATUS)) == 4
    fresh = service.require_workflow(workflow.id)
    assert fresh.transcription.status == "abandoned"
    assert derive_stage(fresh) == "uploaded"

    await asyncio.sleep(0.01)
    assert len(webhooks.calls(STATUS)) == 4


@pytest.mark.asyncio
async def test_callback_result_short_circuits_polling(service, webhooks):
    workflow = _pending_job(service, webhooks)
    service.receive_transcription_callback(job_id="job-42", correlation_id=None, status="completed", transcript="Pushed.")

    poller = JobPoller(service, workflow.id, "transcription", interval=0, max_attempts=10)
    poller.start()
    assert await poller.wait() == "done"
    assert poller.attempts == 1
    assert webhooks.calls(STATUS) == []


@pytest.mark.asyncio
async def test_cancelled_poller_makes_no_further_attempts(service, webhooks):
    workflow = _pending_job(service, webhooks)

    poller = JobPoller(service, workflow.id, "transcription", interval=30, max_attempts=10)
    poller.start()
    poller.cancel()
    assert await poller.wait() is None
    assert poller.attempts == 0
    assert service.require_workflow(workflow.id).transcription.status == "processing"


@pytest.mark.asyncio
async def test_registry_binds_pollers_to_sessions(service, webhooks):
    workflow = _pending_job(service, webhooks)
    registry = PollerRegistry(service, interval=30, max_attempts=10)

    first = registry.start("session-a", workflow.id, "transcription")
    assert registry.start("session-a", workflow.id, "transcription") is first
    registry.start("session-b", workflow.id, "transcription")
    assert len(registry) == 2

    assert registry.cancel("session-a") == 1
    assert registry.get("session-a", workflow.id, "transcription") is None
    assert registry.get("session-b", workflow.id, "transcription") is not None

    registry.cancel_all()
    await asyncio.sleep(0)
    assert len(registry) == 0


@pytest.mark.asyncio
async def test_failing_job_store_still_ends_in_abandonment(service, webhooks, monkeypatch):
    workflow = _pending_job(service, webhooks)

    def unavailable(key):
        raise JobStoreError("redis down")

    monkeypatch.setattr(service._jobs, "get", unavailable)

    poller = JobPoller(service, workflow.id, "transcription", interval=0, max_attempts=3)
    poller.start()
    assert await poller.wait() == "abandoned"

    assert poller.attempts == 3
    fresh = service.require_workflow(workflow.id)
    assert fresh.transcription.status == "abandoned"
    assert derive_stage(fresh) == "uploaded"


@pytest.mark.asyncio
async def test_registry_forgets_finished_pollers(service, webhooks):
    workflow = _pending_job(service, webhooks)
    service.receive_transcription_callback(job_id="job-42", correlation_id=None, status="completed", transcript="Done.")
    registry = PollerRegistry(service, interval=0, max_attempts=10)

    poller = registry.start("session-a", workflow.id, "transcription")
    assert await poller.wait() == "done"
    await asyncio.sleep(0)

    assert registry.get("session-a", workflow.id, "transcription") is None
    assert registry.cancel("session-a") == 0
