"""Application services."""

from .workflows import (
    WorkflowService,
    build_workflow_service,
    configure_workflow_service,
    get_workflow_service,
    reset_workflow_state,
)

__all__ = [
    "WorkflowService",
    "build_workflow_service",
    "configure_workflow_service",
    "get_workflow_service",
    "reset_workflow_state",
]
