"""Workflow API endpoints for authoring and running workflows."""

from datetime import datetime
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, HTTPException, status
from loguru import logger
from pydantic import ValidationError

from ..config import get_settings
from ..models.workflow import (
    ApprovalDecisionRequest,
    ExecutionStatus,
    ExecutionStatusResponse,
    StepStatus,
    ValidationResult,
    WorkflowCategory,
    WorkflowCloneRequest,
    WorkflowCreateRequest,
    WorkflowExecuteRequest,
    WorkflowExecution,
)
from ..workflows.engine import WorkflowEngine
from ..workflows.exceptions import (
    ExecutionNotFoundError,
    WorkflowError,
    WorkflowValidationError,
)
from ..workflows.registry import WorkflowRegistry, drain_domain_events, load_definition
from ..workflows.state_manager import WorkflowStateManager
from ..workflows.workflow import Workflow

router = APIRouter(prefix="/api/v1/workflows", tags=["workflows"])

# Global instances (initialized on first request)
_engine: Optional[WorkflowEngine] = None
_registry: Optional[WorkflowRegistry] = None


def get_workflow_engine() -> WorkflowEngine:
    """Get or create workflow engine instance."""
    global _engine

    if _engine is None:
        settings = get_settings()
        state_manager = None
        if settings.persist_executions:
            state_manager = WorkflowStateManager(
                settings.redis_url, retention_days=settings.execution_retention_days
            )
        _engine = WorkflowEngine(state_manager=state_manager, settings=settings)

    return _engine


def get_workflow_registry() -> WorkflowRegistry:
    """Get or create the workflow catalogue."""
    global _registry

    if _registry is None:
        _registry = WorkflowRegistry()

    return _registry


def _require_workflow(workflow_id: str) -> Workflow:
    workflow = get_workflow_registry().get(workflow_id)
    if not workflow:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Workflow not found: {workflow_id}",
        )
    return workflow


def _status_response(execution: WorkflowExecution) -> ExecutionStatusResponse:
    elapsed = None
    if execution.started_at:
        end_time = execution.completed_at or datetime.utcnow()
        elapsed = (end_time - execution.started_at).total_seconds()

    return ExecutionStatusResponse(
        execution_id=execution.id,
        workflow_id=execution.workflow_id,
        status=execution.status,
        current_step=execution.current_step,
        started_at=execution.started_at,
        completed_at=execution.completed_at,
        elapsed_seconds=elapsed,
        steps_completed=len(
            [se for se in execution.step_executions if se.status == StepStatus.COMPLETED]
        ),
        steps_total=len(execution.step_executions),
        error=execution.error,
    )


# -- Definitions ------------------------------------------------------------


@router.post(
    "",
    response_model=Workflow,
    status_code=status.HTTP_201_CREATED,
    summary="Create a new workflow definition",
)
async def create_workflow(request: WorkflowCreateRequest) -> Workflow:
    """
    Create a workflow from a YAML string or JSON object.

    The definition carries the ``trigger`` and ``steps``; name, description,
    category, tags and author come from the request body.
    """
    try:
        workflow = load_definition(
            request.definition,
            name=request.name,
            description=request.description,
            category=request.category,
            created_by=request.created_by,
            tags=request.tags or None,
        )
    except (ValueError, ValidationError, TypeError) as e:
        logger.error(f"Failed to create workflow: {e}")
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Invalid workflow definition: {str(e)}",
        )

    return get_workflow_registry().add(workflow)


@router.get("", response_model=List[Workflow], summary="List workflow definitions")
async def list_workflows(
    category: Optional[WorkflowCategory] = None, active_only: bool = False
) -> List[Workflow]:
    return get_workflow_registry().list(category=category, active_only=active_only)


@router.get("/executions/active", summary="List executions in progress")
async def list_active_executions() -> Dict[str, Any]:
    engine = get_workflow_engine()
    active = engine.get_active_executions()
    paused = engine.get_paused_executions()
    return {
        "total": len(active) + len(paused),
        "executions": [_status_response(e).model_dump(mode="json") for e in active + paused],
    }


@router.get(
    "/executions/{execution_id}",
    response_model=ExecutionStatusResponse,
    summary="Get workflow execution status",
)
async def get_execution_status(execution_id: str) -> ExecutionStatusResponse:
    execution = await get_workflow_engine().get_execution(execution_id)
    if not execution:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Execution not found: {execution_id}",
        )
    return _status_response(execution)


@router.post("/executions/{execution_id}/cancel", summary="Cancel a workflow execution")
async def cancel_execution(execution_id: str) -> Dict[str, Any]:
    """
    Cancel a running or paused execution.

    The engine stops dispatching new steps; a step already running is
    interrupted at its next await.
    """
    if not get_workflow_engine().cancel_execution(execution_id):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Execution cannot be cancelled (not found or already finished)",
        )

    return {
        "execution_id": execution_id,
        "status": ExecutionStatus.CANCELLED.value,
        "message": "Workflow execution cancelled",
    }


@router.post(
    "/executions/{execution_id}/approvals/{step_id}",
    response_model=ExecutionStatusResponse,
    summary="Approve or reject a parked approval step",
)
async def resolve_approval(
    execution_id: str, step_id: str, request: ApprovalDecisionRequest
) -> ExecutionStatusResponse:
    try:
        execution = await get_workflow_engine().resume_approval(
            execution_id,
            step_id,
            approved=request.approved,
            context=request.context,
            decided_by=request.decided_by,
        )
    except ExecutionNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    except WorkflowError as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))

    return _status_response(execution)


@router.get("/{workflow_id}", response_model=Workflow, summary="Get a workflow definition")
async def get_workflow(workflow_id: str) -> Workflow:
    return _require_workflow(workflow_id)


@router.post(
    "/{workflow_id}/validate",
    response_model=ValidationResult,
    summary="Validate a workflow definition",
)
async def validate_workflow(workflow_id: str) -> ValidationResult:
    return _require_workflow(workflow_id).validate()


@router.post("/{workflow_id}/activate", response_model=Workflow)
async def activate_workflow(workflow_id: str) -> Workflow:
    workflow = _require_workflow(workflow_id)
    workflow.activate()
    drain_domain_events(workflow)
    return workflow


@router.post("/{workflow_id}/deactivate", response_model=Workflow)
async def deactivate_workflow(workflow_id: str) -> Workflow:
    workflow = _require_workflow(workflow_id)
    workflow.deactivate()
    drain_domain_events(workflow)
    return workflow


@router.post(
    "/{workflow_id}/clone",
    response_model=Workflow,
    status_code=status.HTTP_201_CREATED,
    summary="Clone a workflow into a new inactive definition",
)
async def clone_workflow(workflow_id: str, request: WorkflowCloneRequest) -> Workflow:
    cloned = _require_workflow(workflow_id).clone(request.name, request.created_by)
    return get_workflow_registry().add(cloned)


@router.post(
    "/{workflow_id}/execute",
    status_code=status.HTTP_202_ACCEPTED,
    summary="Execute a workflow",
)
async def execute_workflow(workflow_id: str, request: WorkflowExecuteRequest) -> Dict[str, Any]:
    """
    Start an execution in the background.

    Inactive workflows are rejected. Use the returned ``execution_id`` with
    ``/executions/{execution_id}`` to follow progress.
    """
    workflow = _require_workflow(workflow_id)
    if not workflow.is_active:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=f"Workflow is inactive: {workflow_id}",
        )

    try:
        execution = await get_workflow_engine().start_workflow(
            workflow,
            request.context,
            triggered_by=request.triggered_by,
            webhook_url=request.webhook_url,
            webhook_events=request.webhook_events,
        )
    except WorkflowValidationError as e:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail={"message": "Workflow validation failed", "errors": e.errors},
        )

    logger.info(f"Started workflow execution: {execution.id}")
    return {
        "execution_id": execution.id,
        "workflow_id": workflow_id,
        "status": execution.status.value,
        "message": "Workflow execution started",
    }
