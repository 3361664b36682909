"""Local test configuration for the workflow service."""

from __future__ import annotations

import sys
from pathlib import Path
from typing import Any, Callable, Dict, List

import pytest
from fastapi.testclient import TestClient

# -- Path management ------------------------------------------------------
# The service uses a flat ``propflow/`` package layout. Adding the repository
# root keeps ``import propflow`` working when pytest runs without an editable
# install.
SERVICE_ROOT = Path(__file__).resolve().parent.parent
if str(SERVICE_ROOT) not in sys.path:
    sys.path.insert(0, str(SERVICE_ROOT))

from propflow.config import EngineSettings
from propflow.main import create_app
from propflow.models.workflow import WorkflowStep
from propflow.workflows.engine import WorkflowEngine
from propflow.workflows.executors import ActionRegistry
from propflow.workflows.workflow import Workflow

from factories import FakeSleep


@pytest.fixture
def test_settings() -> EngineSettings:
    """Provide test-specific settings."""
    return EngineSettings(
        app_name="propflow-workflows-test",
        cors_origins=["http://localhost:3000", "http://localhost:8000"],
        execution_timeout_seconds=30.0,
        webhook_timeout_seconds=1.0,
    )


@pytest.fixture
def app(test_settings):
    """Create FastAPI app with test settings."""
    return create_app(test_settings)


@pytest.fixture
def client(app):
    """Provide TestClient for the workflow service."""
    return TestClient(app)


@pytest.fixture
def fake_sleep() -> FakeSleep:
    return FakeSleep()


@pytest.fixture
def action_calls() -> List[Dict[str, Any]]:
    """Every call made to the ``record`` action, in order."""
    return []


@pytest.fixture
def action_registry(action_calls) -> ActionRegistry:
    """Registry whose ``record`` action echoes its parameters into the context."""
    registry = ActionRegistry(include_builtin=False)

    async def record(parameters: Dict[str, Any], context: Dict[str, Any]) -> Dict[str, Any]:
        action_calls.append({"parameters": dict(parameters), "context": dict(context)})
        return dict(parameters.get("output", {}))

    registry.register("record", record)
    return registry


@pytest.fixture
def engine(test_settings, action_registry, fake_sleep) -> WorkflowEngine:
    """Engine wired to the recording action registry and a fake retry sleep."""
    return WorkflowEngine(
        action_registry=action_registry, settings=test_settings, sleep=fake_sleep
    )


@pytest.fixture
def workflow_factory() -> Callable[..., Workflow]:
    """Build a workflow around the given steps."""

    def factory(*steps: WorkflowStep, **fields: Any) -> Workflow:
        fields.setdefault("name", "Test Workflow")
        fields.setdefault("created_by", "tester")
        return Workflow(steps=list(steps), **fields)

    return factory
