"""Integration with the external automation workflows (n8n webhooks).

The upstream workflows are inconsistent about response shapes: some answers
arrive wrapped in a one-element array, field names differ between the
synchronous and callback variants, and failures may come back as HTTP 200
with ``success: false``. Everything is normalised here into the canonical
models of :mod:`podflow.core.schema`; any other shape is an
:class:`UpstreamError`.
"""
from __future__ import annotations

import logging
from typing import Any

import httpx
from pydantic import ValidationError as PydanticValidationError

from podflow.core.errors import ConfigurationError, UpstreamError
from podflow.core.schema import (
    GeneratedContent,
    PublishOutcome,
    PublishRequest,
    TranscriptionOutcome,
    TranscriptionStatus,
)
from podflow.core.settings import AutomationSettings

logger = logging.getLogger(__name__)

GENERATION_SECTIONS = ("titles", "blog_post", "show_notes")
LEGACY_GENERATION_FIELDS = ("seo_title", "blog_post_html", "show_notes_html")


def _unwrap(service: str, data: Any) -> dict[str, Any]:
    if isinstance(data, list):
        if not data:
            raise UpstreamError(service, "empty response")
        data = data[0]
    if not isinstance(data, dict):
        raise UpstreamError(service, f"unexpected response type {type(data).__name__}")
    return data


def _explicit_failure(data: dict[str, Any]) -> bool:
    return data.get("success") is False or data.get("status") in {"failed", "error"}


def _failure_message(data: dict[str, Any], default: str) -> str:
    error = data.get("error") or data.get("message")
    return str(error) if error else default


def normalise_transcription_response(data: Any) -> TranscriptionOutcome:
    payload = _unwrap("transcription", data)
    if _explicit_failure(payload):
        raise UpstreamError("transcription", _failure_message(payload, "transcription failed"))

    transcript = payload.get("transcript") or payload.get("transcript_text")
    if isinstance(transcript, str) and transcript.strip():
        return TranscriptionOutcome(transcript=transcript, episode_title=payload.get("episode_title"))

    job_id = payload.get("jobId") or payload.get("job_id")
    if job_id:
        return TranscriptionOutcome(job_id=str(job_id))

    if payload.get("status") == "processing":
        return TranscriptionOutcome()

    raise UpstreamError("transcription", "response carried neither a transcript nor a job id")


def normalise_transcription_status(data: Any) -> TranscriptionStatus:
    payload = _unwrap("transcription-status", data)
    status = payload.get("status")
    if status == "completed":
        transcript = payload.get("transcript") or payload.get("transcript_text")
        if not isinstance(transcript, str) or not transcript.strip():
            raise UpstreamError("transcription-status", "completed status without a transcript")
        return TranscriptionStatus(status="completed", transcript=transcript)
    if status in {"failed", "error"}:
        return TranscriptionStatus(status="failed", error=_failure_message(payload, "transcription failed"))
    if status == "processing":
        return TranscriptionStatus(status="processing")
    raise UpstreamError("transcription-status", f"unknown status {status!r}")


def has_generation_sections(payload: dict[str, Any]) -> bool:
    return all(payload.get(section) for section in GENERATION_SECTIONS)


def normalise_generated_content(data: Any) -> GeneratedContent:
    payload = _unwrap("generation", data)
    if _explicit_failure(payload):
        raise UpstreamError("generation", _failure_message(payload, "content generation failed"))

    if has_generation_sections(payload):
        candidate: dict[str, Any] = {
            "titles": payload["titles"],
            "blog_post": payload["blog_post"],
            "show_notes": payload["show_notes"],
            "seo": payload.get("seo") or {},
        }
    elif all(payload.get(field) for field in LEGACY_GENERATION_FIELDS):
        candidate = {
            "titles": [payload["seo_title"]],
            "blog_post": {
                "title": payload["seo_title"],
                "body": payload.get("blog_post_markdown") or payload["blog_post_html"],
                "html": payload["blog_post_html"],
            },
            "show_notes": {"html": payload["show_notes_html"]},
        }
    else:
        raise UpstreamError("generation", "response is missing titles, blog_post or show_notes")

    try:
        return GeneratedContent.model_validate(candidate)
    except PydanticValidationError as exc:
        raise UpstreamError("generation", f"malformed content bundle: {exc.error_count()} error(s)") from exc


def is_processing_ack(data: Any) -> bool:
    if isinstance(data, list) and data:
        data = data[0]
    return isinstance(data, dict) and data.get("status") == "processing" and not has_generation_sections(data)


def normalise_publish_response(data: Any) -> PublishOutcome:
    payload = _unwrap("publish", data)
    if payload.get("success") is not True:
        raise UpstreamError("publish", _failure_message(payload, "Publishing failed"))
    post_url = payload.get("postUrl") or payload.get("post_url")
    post_id = payload.get("postId") or payload.get("post_id")
    return PublishOutcome(
        success=True,
        post_url=str(post_url) if post_url else None,
        post_id=str(post_id) if post_id is not None else None,
    )


class AutomationClient:
    """Client for the transcription, generation and publishing webhooks."""

    def __init__(
        self,
        settings: AutomationSettings,
        *,
        http_client: httpx.Client | None = None,
    ) -> None:
        self._settings = settings
        self._client = http_client or httpx.Client(timeout=settings.timeout)
        self._owns_client = http_client is None

    # ------------------------------------------------------------------
    # helpers
    # ------------------------------------------------------------------
    def _headers(self) -> dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self._settings.webhook_secret:
            headers["X-Webhook-Secret"] = self._settings.webhook_secret
        return headers

    @staticmethod
    def _require(url: str | None, label: str) -> str:
        if not url:
            raise ConfigurationError(f"{label} webhook not configured")
        return url

    def _send(self, service: str, method: str, url: str, **kwargs: Any) -> Any:
        try:
            response = self._client.request(method, url, headers=self._headers(), **kwargs)
        except httpx.HTTPError as exc:
            logger.error("%s webhook unreachable: %s", service, exc)
            raise UpstreamError(service, f"request failed: {exc}") from exc

        if response.status_code >= 400:
            logger.error("%s webhook answered %s: %s", service, response.status_code, response.text[:500])
            raise UpstreamError(service, f"service error (HTTP {response.status_code})")

        try:
            return response.json()
        except ValueError as exc:
            raise UpstreamError(service, "response is not valid JSON") from exc

    # ------------------------------------------------------------------
    # public API
    # ------------------------------------------------------------------
    def transcribe(
        self,
        audio_url: str,
        *,
        episode_title: str | None = None,
        metadata: dict[str, Any] | None = None,
        correlation_id: str | None = None,
    ) -> TranscriptionOutcome:
        url = self._require(self._settings.transcribe_url, "Transcription")
        body = {
            "audio_url": audio_url,
            "episode_title": episode_title,
            "metadata": metadata or {},
            "correlation_id": correlation_id,
        }
        data = self._send("transcription", "POST", url, json=body)
        return normalise_transcription_response(data)

    @property
    def supports_status_queries(self) -> bool:
        return bool(self._settings.transcription_status_url)

    def transcription_status(self, job_id: str) -> TranscriptionStatus:
        url = self._require(self._settings.transcription_status_url, "Transcription status")
        data = self._send("transcription-status", "GET", url, params={"jobId": job_id})
        return normalise_transcription_status(data)

    def generate(
        self,
        transcript_text: str,
        *,
        episode_title: str | None = None,
        metadata: dict[str, Any] | None = None,
        correlation_id: str | None = None,
    ) -> GeneratedContent | None:
        """Return the content bundle, or ``None`` when the workflow will deliver it by callback."""

        url = self._require(self._settings.generate_url, "Content generation")
        body = {
            "transcript_text": transcript_text,
            "episode_title": episode_title,
            "metadata": metadata or {},
            "correlation_id": correlation_id,
        }
        data = self._send("generation", "POST", url, json=body)
        if correlation_id and is_processing_ack(data):
            return None
        return normalise_generated_content(data)

    def publish(self, request: PublishRequest) -> PublishOutcome:
        url = self._require(self._settings.publish_url, "Publishing")
        data = self._send("publish", "POST", url, json=request.to_payload())
        return normalise_publish_response(data)

    def close(self) -> None:
        if self._owns_client:
            self._client.close()


__all__ = [
    "AutomationClient",
    "has_generation_sections",
    "is_processing_ack",
    "normalise_generated_content",
    "normalise_publish_response",
    "normalise_transcription_response",
    "normalise_transcription_status",
]
