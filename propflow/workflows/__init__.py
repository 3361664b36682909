"""Workflow engine package: aggregate, executors and execution engine."""

from .conditions import evaluate_condition, evaluate_conditions, get_context_value
from .engine import WorkflowEngine
from .exceptions import (
    ExecutionNotFoundError,
    ExecutorNotFoundError,
    StepExecutionError,
    StepTimeoutError,
    UnknownActionError,
    WorkflowError,
    WorkflowValidationError,
)
from .executors import (
    ActionRegistry,
    ActionStepExecutor,
    ApprovalStepExecutor,
    ConditionStepExecutor,
    DelayStepExecutor,
    LoggingNotificationSender,
    NotificationSender,
    NotificationStepExecutor,
    StepExecutor,
)
from .registry import WorkflowRegistry, drain_domain_events, load_definition
from .state_manager import WorkflowStateManager
from .workflow import Workflow

__all__ = [
    "ActionRegistry",
    "ActionStepExecutor",
    "ApprovalStepExecutor",
    "ConditionStepExecutor",
    "DelayStepExecutor",
    "ExecutionNotFoundError",
    "ExecutorNotFoundError",
    "LoggingNotificationSender",
    "NotificationSender",
    "NotificationStepExecutor",
    "StepExecutionError",
    "StepExecutor",
    "StepTimeoutError",
    "UnknownActionError",
    "Workflow",
    "WorkflowEngine",
    "WorkflowError",
    "WorkflowRegistry",
    "WorkflowStateManager",
    "WorkflowValidationError",
    "drain_domain_events",
    "evaluate_condition",
    "evaluate_conditions",
    "get_context_value",
    "load_definition",
]
