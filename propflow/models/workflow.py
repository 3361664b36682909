"""Workflow models and schemas for the step-graph execution engine."""

from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, field_validator


class StepType(str, Enum):
    """Kinds of nodes a workflow graph may contain."""

    ACTION = "action"
    CONDITION = "condition"
    NOTIFICATION = "notification"
    APPROVAL = "approval"
    DELAY = "delay"
    PARALLEL = "parallel"
    LOOP = "loop"


class ConditionOperator(str, Enum):
    """Comparison operators understood by the condition evaluator."""

    EQ = "eq"
    NE = "ne"
    GT = "gt"
    GTE = "gte"
    LT = "lt"
    LTE = "lte"
    IN = "in"
    CONTAINS = "contains"
    EXISTS = "exists"


class LogicalOperator(str, Enum):
    """Join used when folding a list of conditions."""

    AND = "AND"
    OR = "OR"


class TriggerType(str, Enum):
    """Declared invocation mode of a workflow."""

    EVENT = "event"
    SCHEDULE = "schedule"
    MANUAL = "manual"
    API = "api"


class WorkflowCategory(str, Enum):
    """Business area a workflow automates."""

    LEASE = "lease"
    PAYMENT = "payment"
    MAINTENANCE = "maintenance"
    TENANT = "tenant"
    PROPERTY = "property"
    GENERAL = "general"


class ExecutionStatus(str, Enum):
    """Workflow execution states."""

    PENDING = "pending"
    RUNNING = "running"
    PAUSED = "paused"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


class StepStatus(str, Enum):
    """Individual step execution states."""

    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    SKIPPED = "skipped"


TERMINAL_STEP_STATUSES = frozenset(
    {StepStatus.COMPLETED, StepStatus.FAILED, StepStatus.SKIPPED}
)
TERMINAL_EXECUTION_STATUSES = frozenset(
    {ExecutionStatus.COMPLETED, ExecutionStatus.FAILED, ExecutionStatus.CANCELLED}
)


class RetryPolicy(BaseModel):
    """Retry configuration for failed steps (linear backoff)."""

    max_attempts: int = Field(default=1, ge=1, le=10)
    backoff_ms: int = Field(default=1000, ge=0)


class WorkflowCondition(BaseModel):
    """Guard evaluated against the execution context."""

    field: str = Field(..., description="Dot path into the execution context")
    operator: ConditionOperator
    value: Any = None
    logical_operator: Optional[LogicalOperator] = None

    @field_validator("field")
    @classmethod
    def validate_field(cls, v: str) -> str:
        """Reject blank field paths."""
        if not v or not v.strip():
            raise ValueError("Condition field cannot be empty")
        return v


class TriggerConfig(BaseModel):
    """Trigger-specific settings."""

    event_type: Optional[str] = None
    cron_expression: Optional[str] = None
    conditions: List[WorkflowCondition] = Field(default_factory=list)


class WorkflowTrigger(BaseModel):
    """How a workflow is invoked. Metadata only for the engine."""

    type: TriggerType = TriggerType.MANUAL
    config: TriggerConfig = Field(default_factory=TriggerConfig)


class WorkflowStep(BaseModel):
    """Individual workflow step definition."""

    id: str = Field(..., min_length=1, description="Unique step identifier")
    name: str = Field(..., description="Human-readable step name")
    type: StepType
    config: Dict[str, Any] = Field(default_factory=dict)
    next_steps: List[str] = Field(default_factory=list)
    conditions: Optional[List[WorkflowCondition]] = None
    timeout_ms: Optional[int] = Field(None, gt=0)
    retry_policy: Optional[RetryPolicy] = None


class StepExecution(BaseModel):
    """One attempt record for a step within an execution."""

    step_id: str
    status: StepStatus = StepStatus.PENDING
    started_at: datetime = Field(default_factory=datetime.utcnow)
    completed_at: Optional[datetime] = None
    input: Dict[str, Any] = Field(default_factory=dict)
    output: Optional[Dict[str, Any]] = None
    error: Optional[str] = None
    retry_count: int = Field(default=0, ge=0)

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STEP_STATUSES


class StateTransition(BaseModel):
    """Execution state transition record."""

    from_state: ExecutionStatus
    to_state: ExecutionStatus
    timestamp: datetime = Field(default_factory=datetime.utcnow)
    trigger: str = Field(..., description="What triggered the transition")
    metadata: Dict[str, Any] = Field(default_factory=dict)


class WorkflowExecution(BaseModel):
    """Runtime state of one workflow run."""

    id: str = Field(..., description="Unique execution identifier")
    workflow_id: str = Field(..., description="Reference to workflow definition")
    workflow_version: int = 1
    status: ExecutionStatus = Field(default=ExecutionStatus.PENDING)
    current_step: Optional[str] = None
    triggered_by: str = "system"

    # Timing
    started_at: datetime = Field(default_factory=datetime.utcnow)
    completed_at: Optional[datetime] = None

    # Shared step context and per-step records
    context: Dict[str, Any] = Field(default_factory=dict)
    step_executions: List[StepExecution] = Field(default_factory=list)
    error: Optional[str] = None

    # Audit trail
    history: List[StateTransition] = Field(default_factory=list)

    # Webhook configuration
    webhook_url: Optional[str] = None
    webhook_events: List[str] = Field(default_factory=list)

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_EXECUTION_STATUSES

    def step_executions_for(self, step_id: str) -> List[StepExecution]:
        """Return every record appended for ``step_id``, oldest first."""
        return [se for se in self.step_executions if se.step_id == step_id]


class StepExecutionResult(BaseModel):
    """Value returned by a step executor."""

    success: bool
    output: Optional[Dict[str, Any]] = None
    error: Optional[str] = None
    next_steps: Optional[List[str]] = None
    should_continue: bool = True


class ValidationResult(BaseModel):
    """Outcome of ``Workflow.validate``."""

    is_valid: bool
    errors: List[str] = Field(default_factory=list)


class ExecutionStats(BaseModel):
    """Aggregate run statistics for a workflow."""

    total_executions: int
    success_rate: float
    average_execution_time: Optional[float] = None
    last_executed: Optional[datetime] = None


class WorkflowCreateRequest(BaseModel):
    """API request for creating a workflow."""

    name: str = Field(..., min_length=1, max_length=255)
    description: str = Field(default="", max_length=1000)
    category: WorkflowCategory = WorkflowCategory.GENERAL
    created_by: str = Field(default="system")
    tags: List[str] = Field(default_factory=list)
    definition: Any = Field(
        ..., description="YAML string or JSON object with trigger and steps"
    )


class WorkflowCloneRequest(BaseModel):
    """API request for cloning a workflow."""

    name: str = Field(..., min_length=1, max_length=255)
    created_by: str = Field(default="system")


class WorkflowExecuteRequest(BaseModel):
    """API request for executing a workflow."""

    context: Dict[str, Any] = Field(default_factory=dict)
    triggered_by: str = "api"
    webhook_url: Optional[str] = None
    webhook_events: List[str] = Field(
        default_factory=lambda: ["completed", "failed"]
    )


class ApprovalDecisionRequest(BaseModel):
    """API request resolving a parked approval step."""

    approved: bool
    decided_by: Optional[str] = None
    context: Dict[str, Any] = Field(default_factory=dict)


class ExecutionStatusResponse(BaseModel):
    """API response for execution status."""

    execution_id: str
    workflow_id: str
    status: ExecutionStatus
    current_step: Optional[str]
    started_at: datetime
    completed_at: Optional[datetime]
    elapsed_seconds: Optional[float]
    steps_completed: int
    steps_total: int
    error: Optional[str] = None
