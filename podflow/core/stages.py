"""Stage transition rules for a workflow.

The current stage is never stored; it is derived from which fields of the
record are populated. Every transition either mutates the workflow it is given
or raises :class:`TransitionRejected` with a reason the UI can render. Nothing
here persists anything: callers re-read, apply and save.
"""
from __future__ import annotations

from pathlib import PurePosixPath
from typing import Any, Literal

from podflow.core.errors import TransitionRejected
from podflow.domain import (
    ActivityEntry,
    JobState,
    PublishState,
    SelectedContent,
    UploadedFile,
    Workflow,
    new_token,
    utcnow,
)

Stage = Literal[
    "empty",
    "uploaded",
    "transcribing",
    "transcript_ready",
    "approved",
    "content_ready",
    "publishing",
    "published",
]

STAGES: tuple[Stage, ...] = (
    "empty",
    "uploaded",
    "transcribing",
    "transcript_ready",
    "approved",
    "content_ready",
    "publishing",
    "published",
)

IN_FLIGHT = frozenset({"dispatched", "processing"})


def _in_flight(job: JobState | None) -> bool:
    return job is not None and job.status in IN_FLIGHT


def derive_stage(workflow: Workflow) -> Stage:
    if workflow.publish is not None:
        return "published" if workflow.publish.status == "completed" else "publishing"
    if workflow.generated_content is not None:
        return "content_ready"
    if workflow.transcript_approved:
        return "approved"
    if workflow.transcript:
        return "transcript_ready"
    if _in_flight(workflow.transcription):
        return "transcribing"
    if workflow.uploaded_file is not None:
        return "uploaded"
    return "empty"


def add_activity(
    workflow: Workflow,
    type_: str,
    message: str,
    details: dict[str, Any] | None = None,
) -> ActivityEntry:
    """Prepend an entry; the log reads newest first."""

    entry = ActivityEntry(id=new_token(), timestamp=utcnow(), type=type_, message=message, details=details)
    workflow.activity_log.insert(0, entry)
    return entry


# ----------------------------------------------------------------------
# upload
# ----------------------------------------------------------------------
def apply_upload(workflow: Workflow, uploaded: UploadedFile) -> None:
    """Attach a new media file and drop everything derived from the previous one."""

    workflow.uploaded_file = uploaded
    workflow.episode_title = PurePosixPath(uploaded.filename).stem or uploaded.filename
    workflow.transcript = ""
    workflow.transcript_approved = False
    workflow.transcription = None
    workflow.generated_content = None
    workflow.generation = None
    workflow.selected_content = None
    workflow.publish = None


# ----------------------------------------------------------------------
# transcription
# ----------------------------------------------------------------------
def begin_transcription(workflow: Workflow, job_id: str) -> JobState:
    if workflow.uploaded_file is None:
        raise TransitionRejected("a file must be uploaded before transcription")
    if _in_flight(workflow.transcription):
        raise TransitionRejected("transcription is already in progress")
    if workflow.transcript_approved:
        raise TransitionRejected("transcript is already approved; upload a new file to start over")
    job = JobState(job_id=job_id, status="dispatched")
    workflow.transcription = job
    return job


def record_transcript(workflow: Workflow, text: str) -> None:
    workflow.transcript = text
    workflow.transcript_approved = False
    if workflow.transcription is not None:
        complete_job(workflow.transcription)


def edit_transcript(workflow: Workflow, text: str) -> None:
    if not workflow.transcript:
        raise TransitionRejected("there is no transcript to edit yet")
    if workflow.transcript_approved:
        raise TransitionRejected("transcript is already approved")
    if not text.strip():
        raise TransitionRejected("transcript must not be empty")
    workflow.transcript = text


def approve_transcript(workflow: Workflow) -> None:
    if not workflow.transcript.strip():
        raise TransitionRejected("transcript must not be empty before approval")
    workflow.transcript_approved = True


# ----------------------------------------------------------------------
# content generation
# ----------------------------------------------------------------------
def begin_generation(workflow: Workflow, job_id: str) -> JobState:
    """Start (or restart) generation. ``selected_content`` survives regeneration."""

    if not workflow.transcript_approved:
        raise TransitionRejected("transcript must be approved first")
    if _in_flight(workflow.generation):
        raise TransitionRejected("content generation is already in progress")
    if workflow.publish is not None and workflow.publish.status == "completed":
        raise TransitionRejected("workflow is already published")
    job = JobState(job_id=job_id, status="dispatched")
    workflow.generation = job
    return job


def record_generated_content(workflow: Workflow, content: dict[str, Any]) -> None:
    workflow.generated_content = content
    if workflow.generation is not None:
        complete_job(workflow.generation)


def select_content(
    workflow: Workflow,
    *,
    seo_title: str | None = None,
    blog_post_markdown: str | None = None,
    show_notes_markdown: str | None = None,
) -> SelectedContent:
    if workflow.generated_content is None:
        raise TransitionRejected("content must be generated before selecting variants")
    selected = workflow.selected_content or SelectedContent()
    if seo_title is not None:
        selected.seo_title = seo_title
    if blog_post_markdown is not None:
        selected.blog_post_markdown = blog_post_markdown
    if show_notes_markdown is not None:
        selected.show_notes_markdown = show_notes_markdown
    workflow.selected_content = selected
    return selected


# ----------------------------------------------------------------------
# publishing
# ----------------------------------------------------------------------
def begin_publish(workflow: Workflow) -> PublishState:
    if workflow.generated_content is None:
        raise TransitionRejected("content must be generated before publishing")
    if workflow.publish is not None:
        if workflow.publish.status == "completed":
            raise TransitionRejected("workflow is already published")
        if workflow.publish.status == "processing":
            raise TransitionRejected("publishing is already in progress")
    workflow.publish = PublishState(status="processing")
    return workflow.publish


def record_publish_success(workflow: Workflow, post_url: str | None, post_id: str | None) -> None:
    workflow.publish = PublishState(status="completed", post_url=post_url, post_id=post_id)


def record_publish_failure(workflow: Workflow, error: str) -> None:
    workflow.publish = PublishState(status="failed", error=error)


# ----------------------------------------------------------------------
# job bookkeeping
# ----------------------------------------------------------------------
def mark_processing(job: JobState) -> None:
    if not job.is_terminal:
        job.status = "processing"


def complete_job(job: JobState) -> None:
    job.status = "completed"
    job.error = None
    job.completed_at = utcnow()


def fail_job(job: JobState, error: str) -> None:
    job.status = "failed"
    job.error = error
    job.completed_at = utcnow()


def abandon_job(job: JobState, error: str = "timed out waiting for a result; try again") -> None:
    job.status = "abandoned"
    job.error = error
    job.completed_at = utcnow()
