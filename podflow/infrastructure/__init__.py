"""Infrastructure layer exports."""

from .automation import AutomationClient
from .jobs import InMemoryJobStore, JobStore, JobStoreError, RedisJobStore
from .sessions import SESSION_COOKIE, SessionManager, check_callback_secret
from .storage import ObjectStorage, StoredObject, UploadDestination
from .workflows import InMemoryWorkflowRepository, JsonFileWorkflowRepository, WorkflowRepository

__all__ = [
    "AutomationClient",
    "InMemoryJobStore",
    "InMemoryWorkflowRepository",
    "JobStore",
    "JobStoreError",
    "JsonFileWorkflowRepository",
    "ObjectStorage",
    "RedisJobStore",
    "SESSION_COOKIE",
    "SessionManager",
    "StoredObject",
    "UploadDestination",
    "WorkflowRepository",
    "check_callback_secret",
]
