"""Durable step runtime shared by the scan and enrichment workflows."""

from .errors import (
    WorkflowError,
    StepFailedError,
    FatalWorkflowError,
    PreconditionError,
    WorkflowCancelledError,
    WorkflowTimeoutError,
)
from .runtime import (
    WorkflowContext,
    WorkflowEngine,
    StepRunner,
    CancellationRegistry,
    wait_until,
)

__all__ = [
    "WorkflowError",
    "StepFailedError",
    "FatalWorkflowError",
    "PreconditionError",
    "WorkflowCancelledError",
    "WorkflowTimeoutError",
    "WorkflowContext",
    "WorkflowEngine",
    "StepRunner",
    "CancellationRegistry",
    "wait_until",
]
