"""Data models package."""

from .events import DomainEvent, WorkflowEventType
from .workflow import (
    ApprovalDecisionRequest,
    ConditionOperator,
    ExecutionStats,
    ExecutionStatus,
    ExecutionStatusResponse,
    LogicalOperator,
    RetryPolicy,
    StateTransition,
    StepExecution,
    StepExecutionResult,
    StepStatus,
    StepType,
    TriggerConfig,
    TriggerType,
    ValidationResult,
    WorkflowCategory,
    WorkflowCloneRequest,
    WorkflowCondition,
    WorkflowCreateRequest,
    WorkflowExecuteRequest,
    WorkflowExecution,
    WorkflowStep,
    WorkflowTrigger,
)

__all__ = [
    "ApprovalDecisionRequest",
    "ConditionOperator",
    "DomainEvent",
    "ExecutionStats",
    "ExecutionStatus",
    "ExecutionStatusResponse",
    "LogicalOperator",
    "RetryPolicy",
    "StateTransition",
    "StepExecution",
    "StepExecutionResult",
    "StepStatus",
    "StepType",
    "TriggerConfig",
    "TriggerType",
    "ValidationResult",
    "WorkflowCategory",
    "WorkflowCloneRequest",
    "WorkflowCondition",
    "WorkflowCreateRequest",
    "WorkflowEventType",
    "WorkflowExecuteRequest",
    "WorkflowExecution",
    "WorkflowStep",
    "WorkflowTrigger",
]
