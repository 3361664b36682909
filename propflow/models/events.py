"""Domain events raised by the workflow aggregate."""

from datetime import datetime
from enum import Enum
from typing import Any, Dict

from pydantic import BaseModel, Field


class WorkflowEventType(str, Enum):
    """Names of the events a workflow can record."""

    EXECUTION_STARTED = "WorkflowExecutionStarted"
    STEP_ADDED = "WorkflowStepAdded"
    STEP_REMOVED = "WorkflowStepRemoved"
    STEP_UPDATED = "WorkflowStepUpdated"
    TRIGGER_UPDATED = "WorkflowTriggerUpdated"
    ACTIVATED = "WorkflowActivated"
    DEACTIVATED = "WorkflowDeactivated"
    CLONED = "WorkflowCloned"


class DomainEvent(BaseModel):
    """Something that happened to an aggregate."""

    event_type: WorkflowEventType
    aggregate_id: str
    payload: Dict[str, Any] = Field(default_factory=dict)
    occurred_at: datetime = Field(default_factory=datetime.utcnow)
