"""In-process catalogue of workflow definitions."""

from typing import Any, Dict, List, Optional, Union

import yaml
from loguru import logger

from ..models.events import DomainEvent
from ..models.workflow import WorkflowCategory
from .workflow import Workflow


def drain_domain_events(workflow: Workflow) -> List[DomainEvent]:
    """Pull the workflow's pending events and log each one."""
    events = workflow.pull_domain_events()
    for event in events:
        logger.info(f"{event.event_type.value}: {event.payload}")
    return events


def load_definition(
    definition: Union[str, Dict[str, Any]],
    name: Optional[str] = None,
    **fields: Any,
) -> Workflow:
    """Build a :class:`Workflow` from a YAML string or a mapping.

    Keyword ``fields`` override keys found in the definition.

    Example definition::

        name: Late rent reminder
        category: payment
        trigger:
          type: schedule
          config: {cron_expression: "0 9 * * *"}
        steps:
          - id: check_balance
            name: Check balance
            type: condition
            config:
              conditions: [{field: balance, operator: gt, value: 0}]
              true_steps: [remind]
              false_steps: []
            next_steps: [remind]
          - id: remind
            name: Remind tenant
            type: notification
            config: {recipients: ["tenant@example.com"], channel: email}
    """
    if isinstance(definition, str):
        data = yaml.safe_load(definition)
    else:
        data = dict(definition)

    if not isinstance(data, dict):
        raise ValueError("Workflow definition must be a mapping")

    if name is not None:
        data["name"] = name
    data.update({key: value for key, value in fields.items() if value is not None})
    return Workflow.model_validate(data)


class WorkflowRegistry:
    """Keeps authored workflows addressable by id."""

    def __init__(self) -> None:
        self._workflows: Dict[str, Workflow] = {}

    def add(self, workflow: Workflow) -> Workflow:
        self._workflows[workflow.id] = workflow
        drain_domain_events(workflow)
        logger.info(
            f"Registered workflow: {workflow.name} "
            f"(ID: {workflow.id}, Version: {workflow.version})"
        )
        return workflow

    def get(self, workflow_id: str) -> Optional[Workflow]:
        return self._workflows.get(workflow_id)

    def remove(self, workflow_id: str) -> bool:
        return self._workflows.pop(workflow_id, None) is not None

    def list(
        self,
        category: Optional[WorkflowCategory] = None,
        active_only: bool = False,
    ) -> List[Workflow]:
        return [
            workflow
            for workflow in self._workflows.values()
            if (category is None or workflow.category == category)
            and (not active_only or workflow.is_active)
        ]

    def __len__(self) -> int:
        return len(self._workflows)
