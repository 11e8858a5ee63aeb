"""
Workflow Errors

Exceptions raised by the step runtime and the orchestrators.

- StepFailedError: a step exhausted its retries (fails the run)
- FatalWorkflowError: no safe default exists, never retried
- PreconditionError: a bounded wait for another workflow's data ran out
- WorkflowCancelledError: superseded by a newer trigger for the same key
- WorkflowTimeoutError: the workflow's wall-clock budget was exceeded
"""

from typing import Optional


class WorkflowError(Exception):
    """Base class for workflow runtime errors."""

    def __init__(self, message: str, execution_id: Optional[str] = None):
        super().__init__(message)
        self.execution_id = execution_id


class StepFailedError(WorkflowError):
    """Raised when a step keeps failing after all retries."""

    def __init__(self, step_name: str, attempts: int, cause: BaseException, execution_id: Optional[str] = None):
        super().__init__(
            f"Step '{step_name}' failed after {attempts} attempt(s): {cause}",
            execution_id=execution_id,
        )
        self.step_name = step_name
        self.attempts = attempts
        self.cause = cause


class FatalWorkflowError(WorkflowError):
    """Raised for unrecoverable conditions (unknown lead, no domain, missing run)."""


class PreconditionError(FatalWorkflowError):
    """Raised when data another workflow should have written never appeared."""


class WorkflowCancelledError(WorkflowError):
    """Raised when a newer execution for the same business key takes over."""


class WorkflowTimeoutError(WorkflowError):
    """Raised when a workflow exceeds its overall time budget."""

    def __init__(self, workflow_name: str, timeout: float, execution_id: Optional[str] = None):
        super().__init__(
            f"Workflow '{workflow_name}' exceeded its {timeout:.0f}s budget",
            execution_id=execution_id,
        )
        self.timeout = timeout
