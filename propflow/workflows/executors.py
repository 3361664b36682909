"""Step executors: one strategy per step type."""

import asyncio
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, Awaitable, Callable, ClassVar, Dict, List, Optional, Protocol, Union

import httpx
from loguru import logger

from ..models.workflow import StepExecutionResult, StepType, WorkflowStep
from .conditions import evaluate_conditions
from .exceptions import UnknownActionError

WorkflowContext = Dict[str, Any]
ActionHandler = Callable[[Dict[str, Any], WorkflowContext], Awaitable[Optional[Dict[str, Any]]]]
SleepFunc = Callable[[float], Awaitable[None]]


class StepExecutor(ABC):
    """Performs the work for exactly one :class:`StepType`."""

    step_type: ClassVar[StepType]

    def can_execute(self, step_type: Union[StepType, str]) -> bool:
        try:
            return StepType(step_type) == self.step_type
        except ValueError:
            return False

    @abstractmethod
    async def execute(self, step: WorkflowStep, context: WorkflowContext) -> StepExecutionResult:
        """Run the step. Raising signals a retryable failure."""


# -- Collaborators ------------------------------------------------------------


async def http_request_action(
    parameters: Dict[str, Any], context: WorkflowContext
) -> Dict[str, Any]:
    """Built-in ``http_request`` action backed by httpx."""
    url = parameters.get("url")
    if not url:
        raise ValueError("http_request action requires a 'url' parameter")

    async with httpx.AsyncClient() as client:
        response = await client.request(
            parameters.get("method", "GET").upper(),
            url,
            json=parameters.get("json"),
            headers=parameters.get("headers"),
            timeout=parameters.get("timeout_seconds", 10.0),
        )
        response.raise_for_status()

    try:
        body: Any = response.json()
    except ValueError:
        body = response.text
    return {"status_code": response.status_code, "response": body}


class ActionRegistry:
    """Dispatches business actions by ``action_type``."""

    def __init__(self, include_builtin: bool = True) -> None:
        self._handlers: Dict[str, ActionHandler] = {}
        self._usage_stats: Dict[str, int] = {}
        if include_builtin:
            self.register("http_request", http_request_action)

    def register(self, action_type: str, handler: ActionHandler) -> None:
        """Register or replace the handler for ``action_type``."""
        self._handlers[action_type] = handler
        self._usage_stats.setdefault(action_type, 0)
        logger.debug(f"Registered action handler: {action_type}")

    def unregister(self, action_type: str) -> None:
        self._handlers.pop(action_type, None)
        self._usage_stats.pop(action_type, None)

    def get(self, action_type: str) -> Optional[ActionHandler]:
        return self._handlers.get(action_type)

    def list_actions(self) -> List[Dict[str, Any]]:
        return [
            {"action_type": name, "usage_count": self._usage_stats.get(name, 0)}
            for name in self._handlers
        ]

    async def dispatch(
        self,
        action_type: Optional[str],
        parameters: Dict[str, Any],
        context: WorkflowContext,
    ) -> Dict[str, Any]:
        handler = self._handlers.get(action_type) if action_type else None
        if handler is None:
            raise UnknownActionError(action_type)

        self._usage_stats[action_type] += 1
        logger.debug(f"Executing action: {action_type} with params: {parameters}")
        output = await handler(parameters, context)
        if output is None:
            return {"action_executed": True, "action_type": action_type}
        return output


class NotificationSender(Protocol):
    """Delivers a rendered notification over a channel (email, sms, push...)."""

    async def send(
        self,
        recipients: List[str],
        template: Optional[str],
        channel: str,
        context: WorkflowContext,
    ) -> None:
        ...


class LoggingNotificationSender:
    """Sender that only logs; delivery providers live outside the engine."""

    async def send(
        self,
        recipients: List[str],
        template: Optional[str],
        channel: str,
        context: WorkflowContext,
    ) -> None:
        if not recipients:
            raise ValueError("Notification has no recipients")
        logger.info(
            f"Sending notification '{template}' to {', '.join(recipients)} via {channel}"
        )


# -- Default executors --------------------------------------------------------


class ActionStepExecutor(StepExecutor):
    """Runs ``config.action_type`` through the action registry."""

    step_type = StepType.ACTION

    def __init__(self, registry: Optional[ActionRegistry] = None) -> None:
        self.registry = registry or ActionRegistry()

    async def execute(self, step: WorkflowStep, context: WorkflowContext) -> StepExecutionResult:
        output = await self.registry.dispatch(
            step.config.get("action_type"),
            step.config.get("parameters") or {},
            context,
        )
        return StepExecutionResult(success=True, output=output, should_continue=True)


class NotificationStepExecutor(StepExecutor):
    """Sends a notification; delivery failures never stop the workflow."""

    step_type = StepType.NOTIFICATION

    def __init__(self, sender: Optional[NotificationSender] = None) -> None:
        self.sender = sender or LoggingNotificationSender()

    async def execute(self, step: WorkflowStep, context: WorkflowContext) -> StepExecutionResult:
        recipients = list(step.config.get("recipients") or [])
        try:
            await self.sender.send(
                recipients,
                step.config.get("template"),
                step.config.get("channel", "email"),
                context,
            )
        except Exception as e:
            logger.warning(f"Notification step {step.id} failed: {e}")
            return StepExecutionResult(
                success=False,
                output={"notification_sent": False},
                error=str(e) or "Notification failed",
                should_continue=True,
            )

        return StepExecutionResult(
            success=True, output={"notification_sent": True}, should_continue=True
        )


class ConditionStepExecutor(StepExecutor):
    """Branch node routing to ``true_steps`` or ``false_steps``."""

    step_type = StepType.CONDITION

    async def execute(self, step: WorkflowStep, context: WorkflowContext) -> StepExecutionResult:
        outcome = evaluate_conditions(step.config.get("conditions") or [], context)
        branch = "true_steps" if outcome else "false_steps"
        next_steps = list(step.config.get(branch) or [])
        logger.debug(f"Condition step {step.id} took {branch}: {next_steps}")

        return StepExecutionResult(
            success=True,
            output={"condition_result": outcome},
            next_steps=next_steps,
            should_continue=True,
        )


class DelayStepExecutor(StepExecutor):
    """Suspends the branch for ``config.delay_ms``."""

    step_type = StepType.DELAY

    def __init__(self, sleep: Optional[SleepFunc] = None) -> None:
        self._sleep = sleep or asyncio.sleep

    async def execute(self, step: WorkflowStep, context: WorkflowContext) -> StepExecutionResult:
        delay_ms = step.config.get("delay_ms", 0)
        if delay_ms < 0:
            raise ValueError(f"delay_ms must be non-negative, got {delay_ms}")

        logger.debug(f"Delaying step {step.id} for {delay_ms}ms")
        await self._sleep(delay_ms / 1000.0)
        return StepExecutionResult(
            success=True, output={"delay_completed": True}, should_continue=True
        )


class ApprovalStepExecutor(StepExecutor):
    """Requests approval and parks the branch until a decision arrives."""

    step_type = StepType.APPROVAL

    async def execute(self, step: WorkflowStep, context: WorkflowContext) -> StepExecutionResult:
        approvers = list(step.config.get("approvers") or [])
        logger.info(f"Approval requested for step {step.id} from {approvers}")

        return StepExecutionResult(
            success=True,
            output={
                "approval_requested": True,
                "approvers": approvers,
                "message": step.config.get("message"),
                "requested_at": datetime.utcnow().isoformat(),
            },
            should_continue=False,
        )


def default_executors(
    action_registry: Optional[ActionRegistry] = None,
    notification_sender: Optional[NotificationSender] = None,
) -> Dict[StepType, StepExecutor]:
    """The five executors every engine starts with."""
    executors: List[StepExecutor] = [
        ActionStepExecutor(action_registry),
        NotificationStepExecutor(notification_sender),
        ConditionStepExecutor(),
        DelayStepExecutor(),
        ApprovalStepExecutor(),
    ]
    return {executor.step_type: executor for executor in executors}
