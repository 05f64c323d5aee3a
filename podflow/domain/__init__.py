"""Domain layer definitions."""

from .workflows import (
    TERMINAL_JOB_STATUSES,
    ActivityEntry,
    JobState,
    PublishState,
    SelectedContent,
    TranscriptionJob,
    UploadedFile,
    Workflow,
    new_token,
    new_workflow_id,
    utcnow,
)

__all__ = [
    "TERMINAL_JOB_STATUSES",
    "ActivityEntry",
    "JobState",
    "PublishState",
    "SelectedContent",
    "TranscriptionJob",
    "UploadedFile",
    "Workflow",
    "new_token",
    "new_workflow_id",
    "utcnow",
]
