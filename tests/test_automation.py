from __future__ import annotations

import json

import httpx
import pytest

from podflow.core.errors import ConfigurationError, UpstreamError
from podflow.core.schema import PublishRequest
from podflow.core.settings import AutomationSettings
from podflow.infrastructure import AutomationClient
from podflow.infrastructure.automation import (
    normalise_generated_content,
    normalise_publish_response,
    normalise_transcription_response,
    normalise_transcription_status,
)

from conftest import GENERATED_BUNDLE, N8N


def _client(handler, **overrides) -> AutomationClient:
    settings = AutomationSettings(
        transcribe_url=f"{N8N}/transcribe",
        generate_url=f"{N8N}/generate",
        publish_url=f"{N8N}/publish",
        webhook_secret="hook-secret",
        **overrides,
    )
    return AutomationClient(settings, http_client=httpx.Client(transport=httpx.MockTransport(handler)))


# ----------------------------------------------------------------------
# transcription shapes
# ----------------------------------------------------------------------
def test_transcription_sync_and_async_shapes():
    assert normalise_transcription_response({"transcript": "Hello world."}).transcript == "Hello world."
    assert normalise_transcription_response([{"transcript_text": "Hi"}]).transcript == "Hi"
    assert normalise_transcription_response({"jobId": "job-42", "status": "processing"}).job_id == "job-42"
    assert normalise_transcription_response({"job_id": 7}).job_id == "7"

    ack = normalise_transcription_response({"status": "processing"})
    assert ack.transcript is None and ack.job_id is None


@pytest.mark.parametrize(
    "payload",
    [
        {},
        [],
        "plain text",
        {"transcript": "   "},
        {"success": False, "error": "unsupported codec"},
    ],
)
def test_transcription_unusable_shapes_raise(payload):
    with pytest.raises(UpstreamError):
        normalise_transcription_response(payload)


def test_transcription_status_shapes():
    assert normalise_transcription_status({"status": "processing"}).status == "processing"
    done = normalise_transcription_status({"status": "completed", "transcript": "Hi"})
    assert done.transcript == "Hi"
    failed = normalise_transcription_status({"status": "error", "error": "bad audio"})
    assert failed.status == "failed" and failed.error == "bad audio"
    with pytest.raises(UpstreamError):
        normalise_transcription_status({"status": "completed"})


# ----------------------------------------------------------------------
# generation shapes
# ----------------------------------------------------------------------
def test_generated_bundle_is_canonicalised():
    content = normalise_generated_content([GENERATED_BUNDLE])
    assert content.titles[0] == "Why Podcasts Matter"
    assert content.blog_post.body.startswith("# Why Podcasts Matter")
    assert content.show_notes.sections[0].heading == "Intro"
    assert content.seo == {"slug": "why-podcasts-matter"}


def test_legacy_flat_generation_shape():
    content = normalise_generated_content(
        {
            "seo_title": "Flat Title",
            "blog_post_html": "<p>Body</p>",
            "show_notes_html": "<ul><li>Note</li></ul>",
        }
    )
    assert content.titles == ["Flat Title"]
    assert content.blog_post.html == "<p>Body</p>"
    assert content.show_notes.html.startswith("<ul>")


def test_generation_missing_sections_or_empty_body_raise():
    with pytest.raises(UpstreamError, match="missing"):
        normalise_generated_content({"titles": ["T"], "blog_post": {"body": "x"}})

    broken = dict(GENERATED_BUNDLE, blog_post={"title": "T", "markdown": "  "})
    with pytest.raises(UpstreamError, match="malformed"):
        normalise_generated_content(broken)


# ----------------------------------------------------------------------
# publish shapes
# ----------------------------------------------------------------------
def test_publish_requires_explicit_success():
    outcome = normalise_publish_response({"success": True, "postUrl": "https://blog.example.com/p/1", "postId": 1})
    assert outcome.post_url == "https://blog.example.com/p/1"
    assert outcome.post_id == "1"

    alt = normalise_publish_response([{"success": True, "post_url": "https://blog.example.com/p/2", "post_id": "2"}])
    assert alt.post_id == "2"

    with pytest.raises(UpstreamError) as excinfo:
        normalise_publish_response({"success": False, "error": "quota exceeded"})
    assert excinfo.value.message == "quota exceeded"

    with pytest.raises(UpstreamError):
        normalise_publish_response({"postUrl": "https://blog.example.com/p/3"})


# ----------------------------------------------------------------------
# client
# ----------------------------------------------------------------------
def test_transcribe_sends_body_and_secret_header():
    captured: dict[str, object] = {}

    def handler(request: httpx.Request) -> httpx.Response:
        captured["secret"] = request.headers.get("X-Webhook-Secret")
        captured["body"] = json.loads(request.content.decode("utf-8"))
        return httpx.Response(200, json={"transcript": "Hello world."})

    outcome = _client(handler).transcribe(
        "https://media.example.com/a.mp3",
        episode_title="Episode 1",
        metadata={"size": 3},
        correlation_id="workflow_1_abc",
    )

    assert outcome.transcript == "Hello world."
    assert captured["secret"] == "hook-secret"
    assert captured["body"] == {
        "audio_url": "https://media.example.com/a.mp3",
        "episode_title": "Episode 1",
        "metadata": {"size": 3},
        "correlation_id": "workflow_1_abc",
    }


def test_missing_webhook_is_a_configuration_error():
    calls: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        return httpx.Response(200, json={})

    client = AutomationClient(AutomationSettings(), http_client=httpx.Client(transport=httpx.MockTransport(handler)))
    with pytest.raises(ConfigurationError, match="webhook not configured"):
        client.transcribe("https://media.example.com/a.mp3")
    assert calls == []


@pytest.mark.parametrize(
    "response",
    [
        httpx.Response(500, text="boom"),
        httpx.Response(200, text="<html>not json</html>"),
    ],
)
def test_http_failures_become_upstream_errors(response):
    client = _client(lambda request: response)
    with pytest.raises(UpstreamError) as excinfo:
        client.generate("Hello world.")
    assert excinfo.value.service == "generation"


def test_transport_errors_become_upstream_errors():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    with pytest.raises(UpstreamError, match="request failed"):
        _client(handler).publish(PublishRequest(title="T", body_markdown="B"))


def test_generate_processing_ack_only_with_correlation():
    client = _client(lambda request: httpx.Response(200, json={"status": "processing"}))
    assert client.generate("Hello world.", correlation_id="workflow_1_abc") is None
    with pytest.raises(UpstreamError):
        client.generate("Hello world.")


def test_transcription_status_queries_by_job_id():
    seen: list[str] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request.url.params["jobId"])
        return httpx.Response(200, json={"status": "processing"})

    client = _client(handler, transcription_status_url=f"{N8N}/transcription-status")
    assert client.supports_status_queries
    assert client.transcription_status("job-42").status == "processing"
    assert seen == ["job-42"]


def test_publish_payload_uses_wordpress_fields():
    captured: dict[str, object] = {}

    def handler(request: httpx.Request) -> httpx.Response:
        captured.update(json.loads(request.content.decode("utf-8")))
        return httpx.Response(200, json={"success": True, "postUrl": "https://blog.example.com/p/9", "postId": 9})

    outcome = _client(handler).publish(PublishRequest(title="T", body_markdown="# B", tags=["show"]))
    assert outcome.success
    assert captured == {
        "seo_title": "T",
        "blog_post_markdown": "# B",
        "primary_keyword": None,
        "secondary_keywords": [],
        "wordpress_category": "Podcast",
        "tags": ["show"],
        "publish_immediately": True,
    }
