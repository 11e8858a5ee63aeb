"""
Durable Step Runtime

A small durable-execution layer on top of the relational store:

- Each workflow execution has a row in workflow_runs
- Each named step has a row in workflow_steps keyed by (execution, step name)
- A completed step is never re-run: replaying the execution returns the
  stored JSON result instead
- A failing step is retried with exponential backoff, up to a bounded count
- A new execution for the same business key cancels older running ones
  (database flag for other processes, task cancellation in this process)
- Every execution runs under an overall wall-clock budget

Step bodies must pass everything the next step needs through their return
value, which has to be JSON-serializable.

Usage:
    engine = WorkflowEngine(session_factory)

    async def handler(ctx, step):
        pages = await step.run("crawl-site", lambda: crawl(ctx))
        ...

    await engine.execute("scan", handler, business_key=f"scan:{scan_id}", timeout=600)
"""

import asyncio
import json
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Awaitable, Callable, Dict, Optional, TypeVar
from uuid import uuid4

from ..database.models import WorkflowRun, WorkflowStep, WorkflowStatus, StepStatus
from ..database.session import SessionFactory, get_db_context
from .errors import (
    FatalWorkflowError,
    PreconditionError,
    StepFailedError,
    WorkflowCancelledError,
    WorkflowTimeoutError,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")


def to_json_value(value: Any) -> Any:
    """Normalize a step result to what a JSON column gives back on replay."""
    return json.loads(json.dumps(value, default=str))


# =============================================================================
# RUN CONTEXT
# =============================================================================

class RunLoggerAdapter(logging.LoggerAdapter):
    """Prefix every message with the run it belongs to."""

    def process(self, msg, kwargs):
        return f"[{self.extra['run_id']}] {msg}", kwargs


@dataclass
class WorkflowContext:
    """
    Run-scoped handles passed to every component call.

    Holds the store handle (session factory) and a logger bound to the run
    instead of relying on module-level singletons.
    """
    execution_id: str
    workflow_name: str
    session_factory: SessionFactory
    business_key: Optional[str] = None
    run_id: Optional[str] = None
    log: logging.LoggerAdapter = field(init=False, repr=False)

    def __post_init__(self):
        self._bind_logger()

    def bind_run(self, run_id) -> None:
        """Attach the scan run id once it is known."""
        self.run_id = str(run_id)
        self._bind_logger()

    def _bind_logger(self) -> None:
        base = logging.getLogger(f"outrank.workflow.{self.workflow_name}")
        label = self.run_id or self.execution_id
        self.log = RunLoggerAdapter(base, {"run_id": label})


# =============================================================================
# CANCELLATION
# =============================================================================

class CancellationRegistry:
    """In-process handles on running executions, keyed by execution id."""

    def __init__(self):
        self._tasks: Dict[str, asyncio.Task] = {}
        self._cancelled: set = set()

    def attach(self, execution_id: str, task: asyncio.Task) -> None:
        self._tasks[execution_id] = task
        self._cancelled.discard(execution_id)

    def cancel(self, execution_id: str) -> bool:
        self._cancelled.add(execution_id)
        task = self._tasks.get(execution_id)
        if task is not None and not task.done():
            task.cancel()
            return True
        return False

    def is_cancelled(self, execution_id: str) -> bool:
        return execution_id in self._cancelled

    def release(self, execution_id: str) -> None:
        self._tasks.pop(execution_id, None)
        self._cancelled.discard(execution_id)


# =============================================================================
# STEPS
# =============================================================================

class StepRunner:
    """
    Runs named, memoized, retryable steps for one workflow execution.

    Parallel fan-out is plain asyncio:
        results = await asyncio.gather(*(step.run(f"query-{p}", ...) for p in platforms))
    """

    def __init__(
        self,
        ctx: WorkflowContext,
        registry: CancellationRegistry,
        max_retries: int = 3,
        retry_delay: float = 1.0,
    ):
        self.ctx = ctx
        self.registry = registry
        self.max_retries = max_retries
        self.retry_delay = retry_delay

    async def run(
        self,
        name: str,
        fn: Callable[[], Awaitable[T]],
        retries: Optional[int] = None,
    ) -> T:
        """
        Run a step once per execution.

        Args:
            name: Step name, unique within the execution
            fn: Zero-argument coroutine function doing the work
            retries: Override the default retry count for this step

        Returns:
            The step's JSON-normalized result (stored or fresh)

        Raises:
            StepFailedError: retries exhausted
            FatalWorkflowError: raised by the step, never retried
            WorkflowCancelledError: the execution was superseded
        """
        stored = self._load(name)
        if stored is not None and stored.status == StepStatus.COMPLETED:
            self.ctx.log.debug(f"Step {name} already completed, using stored result")
            return stored.result

        max_retries = self.max_retries if retries is None else retries
        attempts = stored.attempts if stored is not None else 0
        failures = 0

        while True:
            self._check_cancelled()
            attempts += 1
            self._record(name, status=StepStatus.RUNNING, attempts=attempts)

            try:
                result = to_json_value(await fn())
            except (FatalWorkflowError, WorkflowCancelledError) as e:
                self._record(name, status=StepStatus.FAILED, attempts=attempts, error=str(e))
                raise
            except Exception as e:
                failures += 1
                self._record(name, status=StepStatus.FAILED, attempts=attempts, error=str(e))

                if failures > max_retries:
                    self.ctx.log.error(f"Step {name} failed permanently: {e}")
                    raise StepFailedError(name, failures, e, execution_id=self.ctx.execution_id) from e

                delay = self.retry_delay * (2 ** (failures - 1))
                self.ctx.log.warning(
                    f"Step {name} failed (attempt {failures}/{max_retries + 1}), "
                    f"retrying in {delay:.1f}s: {e}"
                )
                await asyncio.sleep(delay)
                continue

            self._record(
                name,
                status=StepStatus.COMPLETED,
                attempts=attempts,
                result=result,
                completed_at=datetime.utcnow(),
            )
            return result

    def _load(self, name: str) -> Optional[WorkflowStep]:
        with get_db_context(self.ctx.session_factory) as db:
            return (
                db.query(WorkflowStep)
                .filter(
                    WorkflowStep.workflow_run_id == self.ctx.execution_id,
                    WorkflowStep.step_name == name,
                )
                .first()
            )

    def _record(self, name: str, **fields) -> None:
        with get_db_context(self.ctx.session_factory) as db:
            row = (
                db.query(WorkflowStep)
                .filter(
                    WorkflowStep.workflow_run_id == self.ctx.execution_id,
                    WorkflowStep.step_name == name,
                )
                .first()
            )
            if row is None:
                row = WorkflowStep(workflow_run_id=self.ctx.execution_id, step_name=name)
                db.add(row)
            for key, value in fields.items():
                setattr(row, key, value)
            if fields.get("status") == StepStatus.COMPLETED:
                row.error = None

    def _check_cancelled(self) -> None:
        """Cooperative cancellation check between attempts."""
        if self.registry.is_cancelled(self.ctx.execution_id):
            raise WorkflowCancelledError(
                f"Execution {self.ctx.execution_id} was cancelled",
                execution_id=self.ctx.execution_id,
            )

        with get_db_context(self.ctx.session_factory) as db:
            run = db.get(WorkflowRun, self.ctx.execution_id)
            if run is not None and run.status == WorkflowStatus.CANCELLED:
                raise WorkflowCancelledError(
                    f"Execution {self.ctx.execution_id} was cancelled by a newer trigger",
                    execution_id=self.ctx.execution_id,
                )


# =============================================================================
# ENGINE
# =============================================================================

class WorkflowEngine:
    """Starts, supervises and records workflow executions."""

    def __init__(
        self,
        session_factory: SessionFactory,
        registry: Optional[CancellationRegistry] = None,
        max_retries: int = 3,
        retry_delay: float = 1.0,
    ):
        self.session_factory = session_factory
        self.registry = registry or CancellationRegistry()
        self.max_retries = max_retries
        self.retry_delay = retry_delay

    async def execute(
        self,
        workflow_name: str,
        handler: Callable[[WorkflowContext, StepRunner], Awaitable[T]],
        payload: Optional[Dict[str, Any]] = None,
        execution_id: Optional[str] = None,
        business_key: Optional[str] = None,
        timeout: Optional[float] = None,
    ) -> T:
        """
        Run a workflow handler to completion.

        Re-using an execution_id resumes that execution: completed steps
        return their stored results.

        Raises:
            WorkflowTimeoutError: the overall budget ran out
            WorkflowCancelledError: a newer execution for business_key took over
            Any error raised by the handler (after the run is marked failed)
        """
        execution_id = execution_id or uuid4().hex
        self._begin(execution_id, workflow_name, business_key, payload or {})

        ctx = WorkflowContext(
            execution_id=execution_id,
            workflow_name=workflow_name,
            session_factory=self.session_factory,
            business_key=business_key,
        )
        step = StepRunner(ctx, self.registry, self.max_retries, self.retry_delay)

        task = asyncio.ensure_future(handler(ctx, step))
        self.registry.attach(execution_id, task)

        try:
            result = await asyncio.wait_for(task, timeout=timeout)
        except asyncio.TimeoutError:
            error = WorkflowTimeoutError(workflow_name, timeout or 0, execution_id=execution_id)
            ctx.log.error(str(error))
            self._finish(execution_id, WorkflowStatus.FAILED, error=str(error))
            raise error from None
        except asyncio.CancelledError:
            if not self.registry.is_cancelled(execution_id):
                self._finish(execution_id, WorkflowStatus.CANCELLED, error="Cancelled")
                raise
            ctx.log.info(f"{workflow_name} execution cancelled by a newer trigger")
            self._finish(execution_id, WorkflowStatus.CANCELLED, error="Superseded")
            raise WorkflowCancelledError(
                f"Execution {execution_id} was cancelled", execution_id=execution_id
            ) from None
        except WorkflowCancelledError:
            ctx.log.info(f"{workflow_name} execution cancelled by a newer trigger")
            self._finish(execution_id, WorkflowStatus.CANCELLED, error="Superseded")
            raise
        except Exception as e:
            self._finish(execution_id, WorkflowStatus.FAILED, error=str(e))
            raise
        finally:
            self.registry.release(execution_id)

        self._finish(execution_id, WorkflowStatus.COMPLETED, result=to_json_value(result))
        return result

    def cancel(self, business_key: str, exclude: Optional[str] = None) -> int:
        """Cancel every running execution for a business key."""
        with get_db_context(self.session_factory) as db:
            query = db.query(WorkflowRun).filter(
                WorkflowRun.business_key == business_key,
                WorkflowRun.status == WorkflowStatus.RUNNING,
            )
            if exclude:
                query = query.filter(WorkflowRun.id != exclude)

            cancelled = 0
            for run in query.all():
                run.status = WorkflowStatus.CANCELLED
                run.finished_at = datetime.utcnow()
                run.error = "Superseded by a newer execution"
                self.registry.cancel(run.id)
                cancelled += 1

        if cancelled:
            logger.info(f"Cancelled {cancelled} running execution(s) for {business_key}")
        return cancelled

    def _begin(self, execution_id: str, workflow_name: str, business_key: Optional[str], payload: Dict[str, Any]) -> None:
        if business_key:
            self.cancel(business_key, exclude=execution_id)

        with get_db_context(self.session_factory) as db:
            run = db.get(WorkflowRun, execution_id)
            if run is None:
                run = WorkflowRun(id=execution_id, workflow_name=workflow_name)
                db.add(run)
            else:
                logger.info(f"Resuming {workflow_name} execution {execution_id}")
            run.business_key = business_key
            run.payload = to_json_value(payload)
            run.status = WorkflowStatus.RUNNING
            run.error = None
            run.finished_at = None

    def _finish(self, execution_id: str, status: WorkflowStatus, result: Any = None, error: Optional[str] = None) -> None:
        with get_db_context(self.session_factory) as db:
            run = db.get(WorkflowRun, execution_id)
            if run is None:
                return
            # A newer trigger may already have marked this execution cancelled
            if run.status == WorkflowStatus.CANCELLED and status != WorkflowStatus.CANCELLED:
                return
            run.status = status
            run.result = result
            run.error = error
            run.finished_at = datetime.utcnow()


# =============================================================================
# BOUNDED WAIT
# =============================================================================

async def wait_until(
    check: Callable[[], Any],
    attempts: int,
    delay: float,
    description: str,
    backoff: float = 1.0,
    log: Optional[logging.LoggerAdapter] = None,
) -> Any:
    """
    Poll a check a bounded number of times until it returns something truthy.

    Args:
        check: Sync callable returning the awaited value (or a falsy value)
        attempts: Maximum number of checks
        delay: Seconds between checks
        description: What we are waiting for, used in the error message
        backoff: Multiplier applied to the delay after each miss

    Raises:
        PreconditionError: the value never appeared
    """
    log = log or logger
    wait = delay
    for attempt in range(1, attempts + 1):
        value = check()
        if value:
            return value
        if attempt < attempts:
            log.info(f"Waiting for {description} (attempt {attempt}/{attempts}), retrying in {wait:.1f}s")
            await asyncio.sleep(wait)
            wait *= backoff

    raise PreconditionError(f"Gave up waiting for {description} after {attempts} attempts")
