"""Tests for the Workflow aggregate: structure, validation and events."""

import pytest

from propflow.models.events import WorkflowEventType
from propflow.models.workflow import (
    ExecutionStatus,
    RetryPolicy,
    StepType,
    TriggerConfig,
    TriggerType,
    WorkflowCategory,
    WorkflowCondition,
    WorkflowStep,
    WorkflowTrigger,
)
from propflow.workflows.workflow import Workflow

from factories import make_step


def _event_types(workflow: Workflow):
    return [event.event_type for event in workflow.domain_events]


@pytest.mark.unit
class TestWorkflowStructure:
    """Step management, configuration toggles and domain events."""

    def test_add_step_appends_and_bumps_version(self, workflow_factory):
        workflow = workflow_factory(make_step("a"))

        workflow.add_step(make_step("b"))

        assert [s.id for s in workflow.steps] == ["a", "b"]
        assert workflow.version == 2
        assert _event_types(workflow) == [WorkflowEventType.STEP_ADDED]
        assert workflow.domain_events[0].payload["step_type"] == "action"

    def test_add_step_after_named_step(self, workflow_factory):
        workflow = workflow_factory(make_step("a"), make_step("c"))

        workflow.add_step(make_step("b"), after_step_id="a")

        assert [s.id for s in workflow.steps] == ["a", "b", "c"]

    def test_add_step_after_unknown_step_appends(self, workflow_factory):
        workflow = workflow_factory(make_step("a"))

        workflow.add_step(make_step("b"), after_step_id="missing")

        assert [s.id for s in workflow.steps] == ["a", "b"]

    def test_add_step_does_not_rewire_edges(self, workflow_factory):
        workflow = workflow_factory(make_step("a", next_steps=["c"]), make_step("c"))

        workflow.add_step(make_step("b"), after_step_id="a")

        assert workflow.get_step("a").next_steps == ["c"]

    def test_remove_step_strips_references(self, workflow_factory):
        workflow = workflow_factory(
            make_step("a", next_steps=["b", "c"]),
            make_step("b", next_steps=["c"]),
            make_step("c"),
        )

        workflow.remove_step("c")

        assert [s.id for s in workflow.steps] == ["a", "b"]
        assert workflow.get_step("a").next_steps == ["b"]
        assert workflow.get_step("b").next_steps == []
        assert workflow.version == 2
        event = workflow.domain_events[-1]
        assert event.event_type == WorkflowEventType.STEP_REMOVED
        assert event.payload == {"workflow_id": workflow.id, "step_id": "c", "step_name": "C"}

    def test_remove_unknown_step_is_noop(self, workflow_factory):
        workflow = workflow_factory(make_step("a"))

        workflow.remove_step("nope")

        assert workflow.version == 1
        assert workflow.domain_events == []

    def test_update_step_merges_fields(self, workflow_factory):
        workflow = workflow_factory(make_step("a"))

        workflow.update_step(
            "a", {"name": "Charge rent", "retry_policy": {"max_attempts": 3, "backoff_ms": 10}}
        )

        step = workflow.get_step("a")
        assert step.name == "Charge rent"
        assert step.retry_policy == RetryPolicy(max_attempts=3, backoff_ms=10)
        assert step.config == {"action_type": "record"}
        assert workflow.version == 2
        event = workflow.domain_events[-1]
        assert event.event_type == WorkflowEventType.STEP_UPDATED
        assert event.payload["updated_fields"] == ["name", "retry_policy"]

    def test_update_trigger(self, workflow_factory):
        workflow = workflow_factory(make_step("a"))

        workflow.update_trigger(
            WorkflowTrigger(
                type=TriggerType.EVENT, config=TriggerConfig(event_type="lease.signed")
            )
        )

        assert workflow.trigger.config.event_type == "lease.signed"
        assert workflow.version == 2
        assert workflow.domain_events[-1].payload["trigger_type"] == "event"

    def test_activate_and_deactivate_are_idempotent(self, workflow_factory):
        workflow = workflow_factory(make_step("a"))

        workflow.activate()
        assert _event_types(workflow) == []

        workflow.deactivate()
        workflow.deactivate()
        assert workflow.is_active is False

        workflow.activate()
        workflow.activate()
        assert workflow.is_active is True

        assert _event_types(workflow) == [
            WorkflowEventType.DEACTIVATED,
            WorkflowEventType.ACTIVATED,
        ]
        assert workflow.version == 1

    def test_pull_domain_events_clears(self, workflow_factory):
        workflow = workflow_factory(make_step("a"))
        workflow.add_step(make_step("b"))

        events = workflow.pull_domain_events()

        assert len(events) == 1
        assert workflow.domain_events == []

    def test_start_execution_creates_pending_record(self, workflow_factory):
        workflow = workflow_factory(make_step("a"))
        context = {"tenant_id": "t-1"}

        execution = workflow.start_execution(context, triggered_by="landlord-7")

        assert execution.status == ExecutionStatus.PENDING
        assert execution.workflow_id == workflow.id
        assert execution.context == {"tenant_id": "t-1"}
        assert execution.context is not context
        assert execution.step_executions == []
        assert workflow.execution_count == 1
        assert workflow.version == 1
        event = workflow.domain_events[-1]
        assert event.event_type == WorkflowEventType.EXECUTION_STARTED
        assert event.payload["triggered_by"] == "landlord-7"

    def test_start_execution_defaults_to_system(self, workflow_factory):
        workflow = workflow_factory(make_step("a"))

        first = workflow.start_execution({})
        second = workflow.start_execution({})

        assert first.triggered_by == "system"
        assert first.id != second.id
        assert workflow.execution_count == 2


@pytest.mark.unit
class TestStartingSteps:
    """In-degree zero detection over next_steps."""

    def test_linear_chain_has_single_start(self, workflow_factory):
        workflow = workflow_factory(
            make_step("a", next_steps=["b"]),
            make_step("b", next_steps=["c"]),
            make_step("c"),
        )

        assert [s.id for s in workflow.starting_steps()] == ["a"]

    def test_disjoint_chains_each_start(self, workflow_factory):
        workflow = workflow_factory(
            make_step("a", next_steps=["b"]),
            make_step("b"),
            make_step("c", next_steps=["d"]),
            make_step("d"),
        )

        assert [s.id for s in workflow.starting_steps()] == ["a", "c"]


@pytest.mark.unit
class TestWorkflowValidation:
    """validate() reports problems without raising."""

    def test_valid_workflow(self, workflow_factory):
        workflow = workflow_factory(make_step("a", next_steps=["b"]), make_step("b"))

        result = workflow.validate()

        assert result.is_valid is True
        assert result.errors == []

    def test_empty_name_and_no_steps(self):
        result = Workflow(name="   ").validate()

        assert result.is_valid is False
        assert "Workflow name is required" in result.errors
        assert "Workflow must have at least one step" in result.errors

    def test_dangling_reference_flagged_exactly(self, workflow_factory):
        workflow = workflow_factory(
            make_step("a", next_steps=["b", "ghost"]),
            make_step("b", next_steps=["ghost"]),
        )

        result = workflow.validate()

        assert result.errors == ["Step references non-existent step: ghost"]

    def test_cycle_detected(self, workflow_factory):
        workflow = workflow_factory(
            make_step("a", next_steps=["b"]),
            make_step("b", next_steps=["c"]),
            make_step("c", next_steps=["a"]),
        )

        result = workflow.validate()

        assert result.is_valid is False
        assert "Workflow contains circular dependencies" in result.errors

    def test_cycle_reachable_from_start_detected(self, workflow_factory):
        workflow = workflow_factory(
            make_step("start", next_steps=["x"]),
            make_step("x", next_steps=["y"]),
            make_step("y", next_steps=["x"]),
        )

        assert "Workflow contains circular dependencies" in workflow.validate().errors

    def test_self_loop_detected(self, workflow_factory):
        workflow = workflow_factory(make_step("a", next_steps=["a"]))

        assert "Workflow contains circular dependencies" in workflow.validate().errors

    def test_diamond_is_not_a_cycle(self, workflow_factory):
        workflow = workflow_factory(
            make_step("a", next_steps=["b", "c"]),
            make_step("b", next_steps=["d"]),
            make_step("c", next_steps=["d"]),
            make_step("d"),
        )

        assert workflow.validate().is_valid is True

    def test_duplicate_step_ids(self, workflow_factory):
        workflow = workflow_factory(make_step("a"), make_step("a"))

        assert workflow.validate().errors == ["Duplicate step id: a"]

    def test_schedule_trigger_requires_cron(self, workflow_factory):
        workflow = workflow_factory(
            make_step("a"), trigger=WorkflowTrigger(type=TriggerType.SCHEDULE)
        )

        assert workflow.validate().errors == ["Schedule trigger requires cron expression"]

    def test_event_trigger_requires_event_type(self, workflow_factory):
        workflow = workflow_factory(
            make_step("a"), trigger=WorkflowTrigger(type=TriggerType.EVENT)
        )

        assert workflow.validate().errors == ["Event trigger requires event type"]

    def test_valid_schedule_trigger(self, workflow_factory):
        workflow = workflow_factory(
            make_step("a"),
            trigger=WorkflowTrigger(
                type=TriggerType.SCHEDULE, config=TriggerConfig(cron_expression="0 9 1 * *")
            ),
        )

        assert workflow.validate().is_valid is True

    def test_mutations_do_not_validate(self, workflow_factory):
        workflow = workflow_factory(make_step("a"))

        workflow.add_step(make_step("b", next_steps=["missing"]))

        assert len(workflow.steps) == 2
        assert workflow.validate().is_valid is False


@pytest.mark.unit
class TestWorkflowClone:
    """clone() copies structure and resets run state."""

    def test_clone_resets_counters(self, workflow_factory):
        original = workflow_factory(
            make_step(
                "a",
                next_steps=["b"],
                conditions=[WorkflowCondition(field="rent", operator="gt", value=0)],
            ),
            make_step("b", StepType.NOTIFICATION, config={"recipients": ["x@example.com"]}),
            category=WorkflowCategory.PAYMENT,
            tags=["rent"],
            trigger=WorkflowTrigger(
                type=TriggerType.SCHEDULE, config=TriggerConfig(cron_expression="0 9 * * *")
            ),
        )
        original.add_step(make_step("c"))
        original.start_execution({})
        original.update_success_rate(3, 4)

        clone = original.clone("v2", "user1")

        assert clone.id != original.id
        assert clone.name == "v2"
        assert clone.created_by == "user1"
        assert clone.steps == original.steps
        assert clone.trigger == original.trigger
        assert clone.category == WorkflowCategory.PAYMENT
        assert clone.tags == ["rent"]
        assert clone.execution_count == 0
        assert clone.success_rate == 0
        assert clone.version == 1
        assert clone.is_active is False

    def test_clone_is_deep(self, workflow_factory):
        original = workflow_factory(make_step("a", next_steps=["b"]), make_step("b"))

        clone = original.clone("copy", "user1")
        clone.get_step("a").next_steps.append("c")
        clone.trigger.config.event_type = "changed"

        assert original.get_step("a").next_steps == ["b"]
        assert original.trigger.config.event_type is None

    def test_clone_records_event_on_copy(self, workflow_factory):
        original = workflow_factory(make_step("a"))

        clone = original.clone("copy", "user1")

        assert original.domain_events == []
        event = clone.domain_events[-1]
        assert event.event_type == WorkflowEventType.CLONED
        assert event.aggregate_id == clone.id
        assert event.payload["original_workflow_id"] == original.id
        assert event.payload["cloned_by"] == "user1"


@pytest.mark.unit
class TestWorkflowStats:
    def test_update_success_rate(self, workflow_factory):
        workflow = workflow_factory(make_step("a"))

        workflow.update_success_rate(3, 4)
        assert workflow.success_rate == 75.0

        workflow.update_success_rate(0, 0)
        assert workflow.success_rate == 0.0

    def test_execution_stats(self, workflow_factory):
        workflow = workflow_factory(make_step("a"))
        workflow.start_execution({})
        workflow.update_success_rate(1, 1)

        stats = workflow.get_execution_stats()

        assert stats.total_executions == 1
        assert stats.success_rate == 100.0
        assert stats.average_execution_time is None


@pytest.mark.unit
class TestWorkflowModels:
    """Field constraints on the value types."""

    def test_retry_policy_constraints(self):
        with pytest.raises(ValueError):
            RetryPolicy(max_attempts=0)

        with pytest.raises(ValueError):
            RetryPolicy(backoff_ms=-1)

    def test_condition_field_cannot_be_blank(self):
        with pytest.raises(ValueError, match="cannot be empty"):
            WorkflowCondition(field=" ", operator="eq", value=1)

    def test_unknown_step_type_rejected(self):
        with pytest.raises(ValueError):
            WorkflowStep(id="a", name="A", type="teleport")

    def test_step_timeout_must_be_positive(self):
        with pytest.raises(ValueError):
            WorkflowStep(id="a", name="A", type="action", timeout_ms=0)
