from __future__ import annotations

import json
import sys
from pathlib import Path
from typing import Any, Callable

import httpx
import pytest
from fastapi.testclient import TestClient

sys.path.append(str(Path(__file__).resolve().parents[1]))

from podflow.application import WorkflowService, reset_workflow_state
from podflow.core.settings import AutomationSettings, Settings, StorageSettings
from podflow.infrastructure import AutomationClient, InMemoryJobStore, InMemoryWorkflowRepository, ObjectStorage

N8N = "https://n8n.test/webhook"
ADMIN_EMAIL = "host@example.com"
ADMIN_PASSWORD = "correct horse"
CALLBACK_SECRET = "callback-secret"


class FakeClock:
    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeWebhooks:
    """Scripted answers for outbound HTTP, keyed by URL path.

    Replies are consumed in order; the last consumed one keeps answering.
    A hook registered with ``during`` runs while the request is in flight.
    """

    def __init__(self) -> None:
        self._replies: dict[str, list[tuple[int, Any]]] = {}
        self._last: dict[str, tuple[int, Any]] = {}
        self._hooks: dict[str, Callable[[httpx.Request], None]] = {}
        self.requests: list[httpx.Request] = []

    def reply(self, path: str, *bodies: Any, status: int = 200) -> None:
        self._replies.setdefault(path, []).extend((status, body) for body in bodies)

    def during(self, path: str, hook: Callable[[httpx.Request], None]) -> None:
        self._hooks[path] = hook

    def calls(self, path: str) -> list[httpx.Request]:
        return [request for request in self.requests if request.url.path == path]

    def json_calls(self, path: str) -> list[dict]:
        return [json.loads(request.content.decode("utf-8")) for request in self.calls(path)]

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path
        hook = self._hooks.get(path)
        if hook is not None:
            hook(request)
        queue = self._replies.get(path)
        if queue:
            self._last[path] = queue.pop(0)
        if path not in self._last:
            return httpx.Response(404, json={"error": f"no reply scripted for {path}"})
        status, body = self._last[path]
        if isinstance(body, str):
            return httpx.Response(status, text=body)
        return httpx.Response(status, json=body)


def make_settings(**overrides: Any) -> Settings:
    values: dict[str, Any] = dict(
        storage=StorageSettings(
            account_id="acct123",
            access_key_id="AKIDEXAMPLE",
            secret_access_key="secret",
            bucket="podcast-media",
            public_base_url="https://media.example.com/",
        ),
        automation=AutomationSettings(
            transcribe_url=f"{N8N}/transcribe",
            transcription_status_url=f"{N8N}/transcription-status",
            generate_url=f"{N8N}/generate",
            publish_url=f"{N8N}/publish",
            webhook_secret="hook-secret",
        ),
        callback_secret=CALLBACK_SECRET,
        jwt_secret="jwt-test-secret",
        admin_email=ADMIN_EMAIL,
        admin_password=ADMIN_PASSWORD,
        poll_interval_seconds=0.01,
        poll_max_attempts=5,
    )
    values.update(overrides)
    return Settings(**values)


@pytest.fixture(autouse=True)
def reset_state():
    reset_workflow_state()
    yield
    reset_workflow_state()


@pytest.fixture()
def settings() -> Settings:
    return make_settings()


@pytest.fixture()
def webhooks() -> FakeWebhooks:
    return FakeWebhooks()


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture()
def job_store(clock) -> InMemoryJobStore:
    return InMemoryJobStore(ttl_seconds=600, clock=clock)


@pytest.fixture()
def service(settings, webhooks, job_store) -> WorkflowService:
    transport = httpx.MockTransport(webhooks.handler)
    return WorkflowService(
        InMemoryWorkflowRepository(),
        job_store,
        AutomationClient(settings.automation, http_client=httpx.Client(transport=transport)),
        ObjectStorage(settings.storage, http_client=httpx.Client(transport=transport)),
    )


@pytest.fixture()
def client(settings, service):
    from podflow.app import create_app

    app = create_app(settings, service=service)
    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture()
def operator(client):
    response = client.post("/api/auth/login", json={"email": ADMIN_EMAIL, "password": ADMIN_PASSWORD})
    assert response.status_code == 200
    return client


def uploaded_workflow(service: WorkflowService, filename: str = "episode-12.mp3"):
    workflow = service.create_workflow()
    return service.record_upload(
        workflow.id,
        url=f"https://media.example.com/podcasts/1700000000000-{filename}",
        filename=filename,
        size=2048,
    )


def approved_workflow(service: WorkflowService, webhooks: FakeWebhooks, transcript: str = "Hello world."):
    workflow = uploaded_workflow(service)
    webhooks.reply("/webhook/transcribe", {"transcript": transcript})
    service.dispatch_transcription(workflow.id)
    return service.approve_transcript(workflow.id)


GENERATED_BUNDLE = {
    "success": True,
    "titles": ["Why Podcasts Matter", "Ten Lessons From Episode 12"],
    "blog_post": {
        "title": "Why Podcasts Matter",
        "markdown": "# Why Podcasts Matter\n\nA long read.",
        "html": "<h1>Why Podcasts Matter</h1>",
        "meta_description": "Lessons from the show",
        "primary_keyword": "podcasting",
        "secondary_keywords": ["audio", "shows"],
    },
    "show_notes": {
        "summary": "We talk about podcasts.",
        "sections": [{"heading": "Intro", "content": "Hello"}],
    },
    "seo": {"slug": "why-podcasts-matter"},
}


def content_ready_workflow(service: WorkflowService, webhooks: FakeWebhooks):
    workflow = approved_workflow(service, webhooks)
    webhooks.reply("/webhook/generate", GENERATED_BUNDLE)
    return service.dispatch_generation(workflow.id)
