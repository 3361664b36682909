"""Workflow aggregate: owns the step graph and records domain events."""

import uuid
from datetime import datetime
from typing import Any, Dict, List, Optional, Set

from loguru import logger
from pydantic import BaseModel, Field, PrivateAttr

from ..models.events import DomainEvent, WorkflowEventType
from ..models.workflow import (
    ExecutionStats,
    ExecutionStatus,
    TriggerType,
    ValidationResult,
    WorkflowCategory,
    WorkflowExecution,
    WorkflowStep,
    WorkflowTrigger,
)


def _new_id(prefix: str) -> str:
    return f"{prefix}_{uuid.uuid4().hex[:12]}"


class Workflow(BaseModel):
    """
    Automated business process definition.

    Structural mutations (``add_step``, ``remove_step``, ``update_step``,
    ``update_trigger``) bump ``version`` and never validate; callers run
    ``validate()`` before executing. Every mutation records a
    :class:`DomainEvent` which can be drained with ``pull_domain_events()``.
    """

    id: str = Field(default_factory=lambda: _new_id("wf"))
    name: str
    description: str = ""
    category: WorkflowCategory = WorkflowCategory.GENERAL
    trigger: WorkflowTrigger = Field(default_factory=WorkflowTrigger)
    steps: List[WorkflowStep] = Field(default_factory=list)
    created_by: str = "system"
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)
    is_active: bool = True
    version: int = Field(default=1, ge=1)
    tags: List[str] = Field(default_factory=list)
    execution_count: int = Field(default=0, ge=0)
    success_rate: float = Field(default=0.0, ge=0.0, le=100.0)

    _domain_events: List[DomainEvent] = PrivateAttr(default_factory=list)

    # -- Domain events ----------------------------------------------------

    @property
    def domain_events(self) -> List[DomainEvent]:
        return list(self._domain_events)

    def pull_domain_events(self) -> List[DomainEvent]:
        """Return pending events and clear them from the aggregate."""
        events, self._domain_events = self._domain_events, []
        return events

    def _record(self, event_type: WorkflowEventType, **payload: Any) -> None:
        self._domain_events.append(
            DomainEvent(event_type=event_type, aggregate_id=self.id, payload=payload)
        )

    def _touch(self, bump_version: bool = True) -> None:
        if bump_version:
            self.version += 1
        self.updated_at = datetime.utcnow()

    # -- Lookups ----------------------------------------------------------

    def get_step(self, step_id: str) -> Optional[WorkflowStep]:
        """Find a step by ID."""
        for step in self.steps:
            if step.id == step_id:
                return step
        return None

    def _index_of(self, step_id: str) -> int:
        for index, step in enumerate(self.steps):
            if step.id == step_id:
                return index
        return -1

    def starting_steps(self) -> List[WorkflowStep]:
        """Steps no other step names as a successor, in definition order."""
        referenced = {next_id for step in self.steps for next_id in step.next_steps}
        return [step for step in self.steps if step.id not in referenced]

    # -- Execution --------------------------------------------------------

    def start_execution(
        self, context: Optional[Dict[str, Any]] = None, triggered_by: Optional[str] = None
    ) -> WorkflowExecution:
        """Create a pending execution record. No step is run here."""
        execution = WorkflowExecution(
            id=_new_id("exec"),
            workflow_id=self.id,
            workflow_version=self.version,
            status=ExecutionStatus.PENDING,
            triggered_by=triggered_by or "system",
            context=dict(context or {}),
        )

        self.execution_count += 1
        self._touch(bump_version=False)
        self._record(
            WorkflowEventType.EXECUTION_STARTED,
            workflow_id=self.id,
            execution_id=execution.id,
            workflow_name=self.name,
            triggered_by=execution.triggered_by,
        )
        return execution

    # -- Step management --------------------------------------------------

    def add_step(self, step: WorkflowStep, after_step_id: Optional[str] = None) -> None:
        """Insert ``step`` at the end or right after ``after_step_id``.

        Edges are not rewired; link ``next_steps`` explicitly.
        """
        index = self._index_of(after_step_id) if after_step_id else -1
        if index == -1:
            self.steps.append(step)
        else:
            self.steps.insert(index + 1, step)

        self._touch()
        self._record(
            WorkflowEventType.STEP_ADDED,
            workflow_id=self.id,
            step_id=step.id,
            step_name=step.name,
            step_type=step.type.value,
        )

    def remove_step(self, step_id: str) -> None:
        """Remove a step and every edge pointing at it."""
        index = self._index_of(step_id)
        if index == -1:
            return

        removed = self.steps.pop(index)
        for step in self.steps:
            step.next_steps = [next_id for next_id in step.next_steps if next_id != step_id]

        self._touch()
        self._record(
            WorkflowEventType.STEP_REMOVED,
            workflow_id=self.id,
            step_id=step_id,
            step_name=removed.name,
        )

    def update_step(self, step_id: str, updates: Dict[str, Any]) -> None:
        """Shallow-merge ``updates`` into the step's fields."""
        index = self._index_of(step_id)
        if index == -1:
            return

        merged = {**self.steps[index].model_dump(), **updates}
        self.steps[index] = WorkflowStep.model_validate(merged)

        self._touch()
        self._record(
            WorkflowEventType.STEP_UPDATED,
            workflow_id=self.id,
            step_id=step_id,
            updated_fields=list(updates.keys()),
        )

    # -- Configuration ----------------------------------------------------

    def update_trigger(self, trigger: WorkflowTrigger) -> None:
        self.trigger = trigger
        self._touch()
        self._record(
            WorkflowEventType.TRIGGER_UPDATED,
            workflow_id=self.id,
            trigger_type=trigger.type.value,
        )

    def activate(self) -> None:
        if self.is_active:
            return
        self.is_active = True
        self._touch(bump_version=False)
        self._record(
            WorkflowEventType.ACTIVATED, workflow_id=self.id, workflow_name=self.name
        )

    def deactivate(self) -> None:
        if not self.is_active:
            return
        self.is_active = False
        self._touch(bump_version=False)
        self._record(
            WorkflowEventType.DEACTIVATED, workflow_id=self.id, workflow_name=self.name
        )

    # -- Validation -------------------------------------------------------

    def validate(self) -> ValidationResult:
        """Check the definition; problems are returned, never raised."""
        errors: List[str] = []

        if not self.name.strip():
            errors.append("Workflow name is required")

        if not self.steps:
            errors.append("Workflow must have at least one step")

        step_ids: Set[str] = set()
        duplicates: List[str] = []
        for step in self.steps:
            if step.id in step_ids and step.id not in duplicates:
                duplicates.append(step.id)
            step_ids.add(step.id)
        for step_id in duplicates:
            errors.append(f"Duplicate step id: {step_id}")

        missing: List[str] = []
        for step in self.steps:
            for next_id in step.next_steps:
                if next_id not in step_ids and next_id not in missing:
                    missing.append(next_id)
        for next_id in missing:
            errors.append(f"Step references non-existent step: {next_id}")

        if self._has_circular_dependency():
            errors.append("Workflow contains circular dependencies")

        trigger_config = self.trigger.config
        if self.trigger.type == TriggerType.SCHEDULE and not trigger_config.cron_expression:
            errors.append("Schedule trigger requires cron expression")
        if self.trigger.type == TriggerType.EVENT and not trigger_config.event_type:
            errors.append("Event trigger requires event type")

        if errors:
            logger.debug(f"Workflow {self.id} failed validation: {errors}")
        return ValidationResult(is_valid=not errors, errors=errors)

    def _has_circular_dependency(self) -> bool:
        """Depth-first search with an explicit on-stack set."""
        edges = {step.id: step.next_steps for step in self.steps}
        visited: Set[str] = set()
        on_stack: Set[str] = set()

        for root in edges:
            if root in visited:
                continue
            stack = [(root, iter(edges[root]))]
            visited.add(root)
            on_stack.add(root)
            while stack:
                node, successors = stack[-1]
                for next_id in successors:
                    if next_id in on_stack:
                        return True
                    if next_id in visited or next_id not in edges:
                        continue
                    visited.add(next_id)
                    on_stack.add(next_id)
                    stack.append((next_id, iter(edges[next_id])))
                    break
                else:
                    stack.pop()
                    on_stack.discard(node)
        return False

    # -- Analytics --------------------------------------------------------

    def update_success_rate(self, successful: int, total: int) -> None:
        self.success_rate = (successful / total) * 100 if total > 0 else 0.0
        self._touch(bump_version=False)

    def get_execution_stats(self) -> ExecutionStats:
        return ExecutionStats(
            total_executions=self.execution_count,
            success_rate=self.success_rate,
        )

    # -- Cloning ----------------------------------------------------------

    def clone(self, new_name: str, created_by: str) -> "Workflow":
        """Copy trigger and steps into a fresh, inactive workflow."""
        now = datetime.utcnow()
        cloned = Workflow(
            name=new_name,
            description=self.description,
            category=self.category,
            trigger=self.trigger.model_copy(deep=True),
            steps=[step.model_copy(deep=True) for step in self.steps],
            created_by=created_by,
            created_at=now,
            updated_at=now,
            is_active=False,
            version=1,
            tags=list(self.tags),
            execution_count=0,
            success_rate=0.0,
        )
        cloned._record(
            WorkflowEventType.CLONED,
            new_workflow_id=cloned.id,
            original_workflow_id=self.id,
            new_workflow_name=new_name,
            cloned_by=created_by,
        )
        logger.info(f"Cloned workflow {self.id} into {cloned.id} ({new_name})")
        return cloned
