"""Error taxonomy shared by the service, infrastructure and HTTP layers."""
from __future__ import annotations


class PodflowError(Exception):
    """Base exception for all podflow errors."""


class ConfigurationError(PodflowError):
    """Raised when a required external-service setting is missing."""


class ValidationError(PodflowError):
    """Raised when required input is missing or malformed."""


class TransitionRejected(ValidationError):
    """Raised when a stage action is not allowed in the workflow's current stage."""

    def __init__(self, reason: str) -> None:
        self.reason = reason
        super().__init__(reason)


class WorkflowNotFound(PodflowError):
    def __init__(self, workflow_id: str) -> None:
        self.workflow_id = workflow_id
        super().__init__(f"workflow {workflow_id!r} not found")


class UpstreamError(PodflowError):
    """Raised when an external service fails, answers non-2xx or returns an unusable payload."""

    def __init__(self, service: str, message: str) -> None:
        self.service = service
        self.message = message
        super().__init__(f"{service}: {message}")


class AuthenticationError(PodflowError):
    """Raised when a session or callback secret does not check out."""
