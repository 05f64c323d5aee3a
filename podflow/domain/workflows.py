"""Domain entities for the podcast publishing workflow."""
from __future__ import annotations

import secrets
import string
import time
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Any, Literal

JobStatus = Literal["dispatched", "processing", "completed", "failed", "abandoned"]
ActivityType = Literal["upload", "transcribe", "generate", "publish", "error"]

TERMINAL_JOB_STATUSES: frozenset[str] = frozenset({"completed", "failed", "abandoned"})

_ID_ALPHABET = string.digits + string.ascii_lowercase


def utcnow() -> str:
    return datetime.now(timezone.utc).isoformat()


def new_token(length: int = 9) -> str:
    return "".join(secrets.choice(_ID_ALPHABET) for _ in range(length))


def new_workflow_id() -> str:
    """Timestamp plus random suffix: collisions need two creations in the same millisecond
    drawing the same 9 base36 characters."""

    return f"workflow_{int(time.time() * 1000)}_{new_token()}"


@dataclass(slots=True)
class UploadedFile:
    url: str
    filename: str
    size: int = 0


@dataclass(slots=True)
class ActivityEntry:
    id: str
    timestamp: str
    type: ActivityType
    message: str
    details: dict[str, Any] | None = None


@dataclass(slots=True)
class JobState:
    """Progress marker of the latest dispatch of an external job."""

    job_id: str
    status: JobStatus = "dispatched"
    error: str | None = None
    dispatched_at: str = field(default_factory=utcnow)
    completed_at: str | None = None

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_JOB_STATUSES


@dataclass(slots=True)
class SelectedContent:
    seo_title: str | None = None
    blog_post_markdown: str | None = None
    show_notes_markdown: str | None = None


@dataclass(slots=True)
class PublishState:
    status: Literal["processing", "completed", "failed"] = "processing"
    post_url: str | None = None
    post_id: str | None = None
    error: str | None = None
    updated_at: str = field(default_factory=utcnow)


@dataclass(slots=True)
class Workflow:
    """One operator's pass through upload, transcription, generation and publishing."""

    id: str
    uploaded_file: UploadedFile | None = None
    episode_title: str | None = None
    transcript: str = ""
    transcript_approved: bool = False
    transcription: JobState | None = None
    generated_content: dict[str, Any] | None = None
    generation: JobState | None = None
    selected_content: SelectedContent | None = None
    publish: PublishState | None = None
    activity_log: list[ActivityEntry] = field(default_factory=list)
    created_at: str = field(default_factory=utcnow)
    updated_at: str = field(default_factory=utcnow)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Workflow":
        uploaded = data.get("uploaded_file")
        transcription = data.get("transcription")
        generation = data.get("generation")
        selected = data.get("selected_content")
        publish = data.get("publish")
        return cls(
            id=str(data["id"]),
            uploaded_file=UploadedFile(**uploaded) if uploaded else None,
            episode_title=data.get("episode_title"),
            transcript=str(data.get("transcript") or ""),
            transcript_approved=bool(data.get("transcript_approved", False)),
            transcription=JobState(**transcription) if transcription else None,
            generated_content=data.get("generated_content"),
            generation=JobState(**generation) if generation else None,
            selected_content=SelectedContent(**selected) if selected else None,
            publish=PublishState(**publish) if publish else None,
            activity_log=[ActivityEntry(**entry) for entry in data.get("activity_log") or []],
            created_at=str(data.get("created_at") or utcnow()),
            updated_at=str(data.get("updated_at") or utcnow()),
        )


@dataclass(slots=True)
class TranscriptionJob:
    """Transient correlation record for an in-flight transcription."""

    job_id: str
    status: Literal["processing", "completed", "failed"] = "processing"
    transcript: str | None = None
    error: str | None = None
    workflow_id: str | None = None
    updated_at: str = field(default_factory=utcnow)

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_JOB_STATUSES

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "TranscriptionJob":
        return cls(
            job_id=str(data["job_id"]),
            status=data.get("status") or "processing",
            transcript=data.get("transcript"),
            error=data.get("error"),
            workflow_id=data.get("workflow_id"),
            updated_at=str(data.get("updated_at") or utcnow()),
        )
