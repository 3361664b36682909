"""Workflow execution engine: graph traversal, retries and timeouts."""

import asyncio
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Deque, Dict, Iterable, List, Optional, Set, Union

import httpx
from loguru import logger
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception_type,
    stop_after_attempt,
    wait_incrementing,
)

from ..config import EngineSettings, get_settings
from ..models.workflow import (
    ExecutionStatus,
    RetryPolicy,
    StateTransition,
    StepExecution,
    StepExecutionResult,
    StepStatus,
    StepType,
    WorkflowExecution,
    WorkflowStep,
)
from .conditions import evaluate_conditions
from .exceptions import (
    ExecutionNotFoundError,
    ExecutorNotFoundError,
    StepExecutionError,
    StepTimeoutError,
    WorkflowError,
    WorkflowValidationError,
)
from .executors import (
    ActionRegistry,
    NotificationSender,
    SleepFunc,
    StepExecutor,
    default_executors,
)
from .registry import drain_domain_events
from .state_manager import WorkflowStateManager
from .workflow import Workflow


@dataclass
class _ExecutionRun:
    """Bookkeeping for one execution while the engine tracks it."""

    workflow: Workflow
    execution: WorkflowExecution
    pending: Set["asyncio.Task[List[str]]"] = field(default_factory=set)
    awaiting_approval: Set[str] = field(default_factory=set)
    driving: bool = False


class WorkflowEngine:
    """
    Asynchronous engine that walks a workflow's step graph.

    Features:
    - Starting steps are the steps no other step points at
    - Successors go through an explicit work queue drained by a driver loop,
      one asyncio task per dispatched step
    - Per-step guard conditions, timeouts and linear-backoff retries (tenacity)
    - Global execution ceiling, cooperative cancellation
    - Approval steps park their branch until ``resume_approval`` is called
    - Optional Redis archive and lifecycle webhooks
    """

    def __init__(
        self,
        state_manager: Optional[WorkflowStateManager] = None,
        action_registry: Optional[ActionRegistry] = None,
        notification_sender: Optional[NotificationSender] = None,
        settings: Optional[EngineSettings] = None,
        execution_timeout: Optional[float] = None,
        sleep: Optional[SleepFunc] = None,
    ) -> None:
        """Initialize the engine and register the default executors."""
        self.settings = settings or get_settings()
        self.state_manager = state_manager
        self.execution_timeout = (
            execution_timeout
            if execution_timeout is not None
            else self.settings.execution_timeout_seconds
        )
        self._sleep = sleep or asyncio.sleep
        self._step_executors: Dict[StepType, StepExecutor] = default_executors(
            action_registry, notification_sender
        )
        self._active_executions: Dict[str, WorkflowExecution] = {}
        self._runs: Dict[str, _ExecutionRun] = {}
        self._background: Dict[str, "asyncio.Task[WorkflowExecution]"] = {}
        self._outcomes: Dict[str, List[int]] = {}

    # -- Executor registration -------------------------------------------

    def register_step_executor(
        self, step_type: Union[StepType, str], executor: StepExecutor
    ) -> None:
        """Install or replace the executor responsible for ``step_type``."""
        step_type = StepType(step_type)
        self._step_executors[step_type] = executor
        logger.info(f"Registered {type(executor).__name__} for step type: {step_type.value}")

    def get_step_executor(self, step_type: Union[StepType, str]) -> Optional[StepExecutor]:
        return self._step_executors.get(StepType(step_type))

    # -- Workflow execution ----------------------------------------------

    async def execute_workflow(
        self,
        workflow: Workflow,
        initial_context: Optional[Dict[str, Any]] = None,
        triggered_by: str = "system",
        webhook_url: Optional[str] = None,
        webhook_events: Optional[List[str]] = None,
    ) -> WorkflowExecution:
        """Run ``workflow`` until every reachable step is terminal.

        Raises:
            WorkflowValidationError: the definition is invalid; nothing runs.
        """
        run = self._prepare(
            workflow, initial_context, triggered_by, webhook_url, webhook_events
        )
        return await self._run(run)

    async def start_workflow(
        self,
        workflow: Workflow,
        initial_context: Optional[Dict[str, Any]] = None,
        triggered_by: str = "system",
        webhook_url: Optional[str] = None,
        webhook_events: Optional[List[str]] = None,
    ) -> WorkflowExecution:
        """Validate and start ``workflow`` in the background.

        Returns the execution record right away; poll it or use
        :meth:`get_execution` to follow progress.
        """
        run = self._prepare(
            workflow, initial_context, triggered_by, webhook_url, webhook_events
        )
        task = asyncio.create_task(self._run(run), name=f"workflow-{run.execution.id}")
        self._background[run.execution.id] = task
        task.add_done_callback(lambda _: self._background.pop(run.execution.id, None))
        return run.execution

    def _prepare(
        self,
        workflow: Workflow,
        initial_context: Optional[Dict[str, Any]],
        triggered_by: str,
        webhook_url: Optional[str],
        webhook_events: Optional[List[str]],
    ) -> _ExecutionRun:
        validation = workflow.validate()
        if not validation.is_valid:
            logger.error(f"Refusing to run invalid workflow {workflow.id}: {validation.errors}")
            raise WorkflowValidationError(validation.errors)

        execution = workflow.start_execution(initial_context, triggered_by)
        drain_domain_events(workflow)
        execution.webhook_url = webhook_url
        execution.webhook_events = list(webhook_events or [])
        execution.context["_metadata"] = {
            "execution_id": execution.id,
            "workflow_id": workflow.id,
            "triggered_by": execution.triggered_by,
            "start_time": execution.started_at,
        }

        run = _ExecutionRun(workflow=workflow, execution=execution)
        self._runs[execution.id] = run
        self._active_executions[execution.id] = execution
        logger.info(
            f"Created workflow execution: {execution.id} "
            f"(workflow: {workflow.name}, triggered by: {execution.triggered_by})"
        )
        return run

    async def _run(self, run: _ExecutionRun) -> WorkflowExecution:
        execution = run.execution
        if execution.is_terminal:
            logger.info(
                f"Execution {execution.id} is {execution.status.value} before start, not running"
            )
            self._runs.pop(execution.id, None)
            self._active_executions.pop(execution.id, None)
            return execution

        try:
            self._transition(execution, ExecutionStatus.RUNNING, "execution started")
            await self._send_webhook(execution, "started")

            starting_steps = run.workflow.starting_steps()
            if not starting_steps:
                raise WorkflowError("No starting steps found in workflow")

            logger.info(
                f"Execution {execution.id} starting with steps: "
                f"{[step.id for step in starting_steps]}"
            )
            await self._drive(run, [step.id for step in starting_steps])
            self._finalize(run)

        except Exception as e:
            logger.error(f"Workflow execution failed: {execution.id} - {e}")
            self._fail(execution, str(e))

        finally:
            await self._release(run)

        return execution

    async def _drive(self, run: _ExecutionRun, step_ids: Iterable[str]) -> None:
        """Drain the work queue, bounded by the execution ceiling."""
        execution = run.execution
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.execution_timeout
        queue: Deque[str] = deque(step_ids)
        run.driving = True

        try:
            while queue or run.pending:
                if execution.status == ExecutionStatus.CANCELLED:
                    logger.info(f"Execution {execution.id} cancelled, stopping dispatch")
                    break

                while queue:
                    self._dispatch(run, queue.popleft())
                if not run.pending:
                    break

                remaining = deadline - loop.time()
                if remaining <= 0:
                    logger.error(
                        f"Execution {execution.id} exceeded {self.execution_timeout}s ceiling"
                    )
                    self._fail(execution, "Workflow execution timed out")
                    break

                done, _ = await asyncio.wait(
                    set(run.pending), timeout=remaining, return_when=asyncio.FIRST_COMPLETED
                )
                for task in done:
                    run.pending.discard(task)
                    if not task.cancelled():
                        queue.extend(task.result())

        finally:
            run.driving = False
            leftovers = list(run.pending)
            run.pending.clear()
            for task in leftovers:
                task.cancel()
            if leftovers:
                await asyncio.gather(*leftovers, return_exceptions=True)

    def _dispatch(self, run: _ExecutionRun, step_id: str) -> None:
        step = run.workflow.get_step(step_id)
        if step is None:
            logger.warning(f"Ignoring unknown successor step: {step_id}")
            return
        task = asyncio.create_task(
            self._execute_step(run, step), name=f"{run.execution.id}:{step.id}"
        )
        run.pending.add(task)

    def _finalize(self, run: _ExecutionRun) -> None:
        execution = run.execution
        if execution.is_terminal:
            return

        if run.awaiting_approval:
            self._transition(
                execution,
                ExecutionStatus.PAUSED,
                "awaiting approval",
                steps=sorted(run.awaiting_approval),
            )
            logger.info(
                f"Execution {execution.id} paused awaiting approval: "
                f"{sorted(run.awaiting_approval)}"
            )
        elif all(se.is_terminal for se in execution.step_executions):
            self._transition(execution, ExecutionStatus.COMPLETED, "all steps terminal")
            logger.info(f"Workflow execution completed: {execution.id}")

    async def _release(self, run: _ExecutionRun) -> None:
        """Stop tracking a run that reached rest, then archive and notify."""
        execution = run.execution
        self._active_executions.pop(execution.id, None)

        if execution.status == ExecutionStatus.PAUSED:
            await self._send_webhook(execution, "paused")
            return

        self._runs.pop(execution.id, None)
        self._record_outcome(run)
        await self._archive(execution)
        await self._send_webhook(execution, execution.status.value)

    # -- Step execution ----------------------------------------------------

    async def _execute_step(self, run: _ExecutionRun, step: WorkflowStep) -> List[str]:
        """Execute one step; returns the successor ids to enqueue."""
        execution = run.execution
        context = execution.context

        if any(
            se.status in (StepStatus.COMPLETED, StepStatus.RUNNING)
            for se in execution.step_executions_for(step.id)
        ):
            logger.debug(f"Step {step.id} already completed or running, skipping re-entry")
            return []

        step_execution = StepExecution(
            step_id=step.id, status=StepStatus.RUNNING, input=dict(context)
        )
        execution.step_executions.append(step_execution)
        execution.current_step = step.id
        logger.info(f"Executing step: {step.name} (ID: {step.id}, type: {step.type.value})")

        try:
            if step.conditions and not evaluate_conditions(step.conditions, context):
                step_execution.status = StepStatus.SKIPPED
                step_execution.completed_at = datetime.utcnow()
                logger.info(f"Step condition not met, skipping: {step.id}")
                return []

            executor = self._step_executors.get(step.type)
            if executor is None:
                raise ExecutorNotFoundError(step.type.value)

            result = await self._execute_with_retry(step, executor, context, step_execution)

        except asyncio.CancelledError:
            step_execution.status = StepStatus.FAILED
            step_execution.error = "Step cancelled"
            step_execution.completed_at = datetime.utcnow()
            raise

        except Exception as e:
            step_execution.status = StepStatus.FAILED
            step_execution.error = str(e) or type(e).__name__
            step_execution.completed_at = datetime.utcnow()
            logger.error(f"Step execution failed: {step.id} - {step_execution.error}")
            self._fail(execution, step_execution.error, step_id=step.id)
            return []

        step_execution.status = StepStatus.COMPLETED if result.success else StepStatus.FAILED
        step_execution.output = result.output
        step_execution.error = result.error
        step_execution.completed_at = datetime.utcnow()

        if result.output:
            context.update(result.output)

        if not result.success:
            logger.warning(f"Step {step.id} failed without stopping the workflow: {result.error}")

        if not result.should_continue:
            if step.type == StepType.APPROVAL:
                run.awaiting_approval.add(step.id)
            logger.info(f"Step {step.id} completed, branch parked")
            return []

        next_steps = result.next_steps if result.next_steps is not None else step.next_steps
        logger.debug(f"Step completed: {step.id}, next: {next_steps}")
        return list(next_steps)

    async def _execute_with_retry(
        self,
        step: WorkflowStep,
        executor: StepExecutor,
        context: Dict[str, Any],
        step_execution: StepExecution,
    ) -> StepExecutionResult:
        policy = step.retry_policy or RetryPolicy()
        backoff_seconds = policy.backoff_ms / 1000.0

        def log_retry(retry_state: RetryCallState) -> None:
            error = retry_state.outcome.exception() if retry_state.outcome else None
            logger.warning(
                f"Retrying step {step.id} in {retry_state.next_action.sleep}s "
                f"(attempt {retry_state.attempt_number}/{policy.max_attempts}): {error}"
            )

        retrying = AsyncRetrying(
            stop=stop_after_attempt(policy.max_attempts),
            wait=wait_incrementing(start=backoff_seconds, increment=backoff_seconds),
            retry=retry_if_exception_type(Exception),
            sleep=self._sleep,
            before_sleep=log_retry,
            reraise=True,
        )

        result: Optional[StepExecutionResult] = None
        async for attempt in retrying:
            with attempt:
                step_execution.retry_count = attempt.retry_state.attempt_number - 1
                result = await self._run_attempt(step, executor, context)
        return result

    async def _run_attempt(
        self, step: WorkflowStep, executor: StepExecutor, context: Dict[str, Any]
    ) -> StepExecutionResult:
        if step.timeout_ms:
            try:
                result = await asyncio.wait_for(
                    executor.execute(step, context), timeout=step.timeout_ms / 1000.0
                )
            except asyncio.TimeoutError:
                raise StepTimeoutError(step.id, step.timeout_ms) from None
        else:
            result = await executor.execute(step, context)

        if not result.success and not result.should_continue:
            raise StepExecutionError(step.id, result.error)
        return result

    # -- Approvals -------------------------------------------------------

    async def resume_approval(
        self,
        execution_id: str,
        step_id: str,
        approved: bool,
        context: Optional[Dict[str, Any]] = None,
        decided_by: Optional[str] = None,
    ) -> WorkflowExecution:
        """Resolve a parked approval step and continue its branch.

        Approved branches continue with the step's ``next_steps``; rejected
        ones continue with ``config.reject_steps`` when set and otherwise end.
        The decision is recorded under ``context["approvals"][step_id]``.
        """
        run = self._runs.get(execution_id)
        if run is None:
            raise ExecutionNotFoundError(execution_id)
        execution = run.execution
        if execution.is_terminal:
            raise WorkflowError(
                f"Execution {execution_id} is already {execution.status.value}"
            )
        if step_id not in run.awaiting_approval:
            raise WorkflowError(f"Step {step_id} is not awaiting approval")

        step = run.workflow.get_step(step_id)
        run.awaiting_approval.discard(step_id)

        if context:
            execution.context.update(context)
        execution.context.setdefault("approvals", {})[step_id] = {
            "approved": approved,
            "decided_by": decided_by,
            "decided_at": datetime.utcnow().isoformat(),
        }

        if approved:
            next_steps = list(step.next_steps)
        else:
            next_steps = list(step.config.get("reject_steps") or [])
        logger.info(
            f"Approval {'granted' if approved else 'rejected'} for step {step_id} "
            f"in execution {execution_id} by {decided_by or 'unknown'}; next: {next_steps}"
        )

        if run.driving:
            for next_id in next_steps:
                self._dispatch(run, next_id)
            return execution

        self._active_executions[execution_id] = execution
        try:
            self._transition(execution, ExecutionStatus.RUNNING, f"approval resolved: {step_id}")
            await self._drive(run, next_steps)
            self._finalize(run)
        except Exception as e:
            logger.error(f"Workflow execution failed: {execution_id} - {e}")
            self._fail(execution, str(e))
        finally:
            await self._release(run)

        return execution

    # -- Execution management --------------------------------------------

    def get_active_executions(self) -> List[WorkflowExecution]:
        """Snapshot of executions currently being driven."""
        return list(self._active_executions.values())

    def get_paused_executions(self) -> List[WorkflowExecution]:
        """Executions waiting on approval decisions."""
        return [
            run.execution
            for run in self._runs.values()
            if run.execution.status == ExecutionStatus.PAUSED
        ]

    async def get_execution(self, execution_id: str) -> Optional[WorkflowExecution]:
        """Look up a tracked execution, falling back to the archive."""
        run = self._runs.get(execution_id)
        if run:
            return run.execution
        if self.state_manager:
            return await self.state_manager.get_execution(execution_id)
        return None

    def cancel_execution(self, execution_id: str) -> bool:
        """Mark a running or paused execution cancelled and stop tracking it.

        Step tasks in flight receive ``asyncio.CancelledError`` at their next
        await; work an executor shields from cancellation keeps running.
        """
        run = self._runs.get(execution_id)
        if run is None or run.execution.is_terminal:
            return False

        self._transition(run.execution, ExecutionStatus.CANCELLED, "cancel requested")
        self._active_executions.pop(execution_id, None)
        for task in list(run.pending):
            task.cancel()
        if not run.driving:
            self._runs.pop(execution_id, None)

        logger.info(f"Cancelled workflow execution: {execution_id}")
        return True

    # -- Helpers -----------------------------------------------------------

    def _transition(
        self,
        execution: WorkflowExecution,
        new_status: ExecutionStatus,
        trigger: str,
        **metadata: Any,
    ) -> None:
        if execution.is_terminal:
            logger.warning(
                f"Ignoring transition of {execution.id} from {execution.status.value} "
                f"to {new_status.value}"
            )
            return
        execution.history.append(
            StateTransition(
                from_state=execution.status,
                to_state=new_status,
                trigger=trigger,
                metadata={"current_step": execution.current_step, **metadata},
            )
        )
        execution.status = new_status
        if execution.is_terminal:
            execution.completed_at = datetime.utcnow()

    def _fail(
        self, execution: WorkflowExecution, error: str, step_id: Optional[str] = None
    ) -> None:
        if execution.is_terminal:
            return
        execution.error = error
        self._transition(execution, ExecutionStatus.FAILED, error, failed_step=step_id)

    def _record_outcome(self, run: _ExecutionRun) -> None:
        status = run.execution.status
        if status not in (ExecutionStatus.COMPLETED, ExecutionStatus.FAILED):
            return
        counts = self._outcomes.setdefault(run.workflow.id, [0, 0])
        if status == ExecutionStatus.COMPLETED:
            counts[0] += 1
        counts[1] += 1
        run.workflow.update_success_rate(counts[0], counts[1])

    async def _archive(self, execution: WorkflowExecution) -> None:
        if not self.state_manager:
            return
        try:
            await self.state_manager.save_execution(execution)
        except Exception as e:
            logger.error(f"Failed to archive execution {execution.id}: {e}")

    async def _send_webhook(self, execution: WorkflowExecution, event: str) -> None:
        """Send webhook notification for execution lifecycle events."""
        if not execution.webhook_url or event not in execution.webhook_events:
            return

        try:
            payload = {
                "event": event,
                "execution_id": execution.id,
                "workflow_id": execution.workflow_id,
                "status": execution.status.value,
                "error": execution.error,
                "timestamp": datetime.utcnow().isoformat(),
            }

            async with httpx.AsyncClient() as client:
                response = await client.post(
                    execution.webhook_url,
                    json=payload,
                    timeout=self.settings.webhook_timeout_seconds,
                )
                response.raise_for_status()
                logger.info(f"Webhook sent: {event} to {execution.webhook_url}")

        except Exception as e:
            logger.error(f"Failed to send webhook: {e}")
