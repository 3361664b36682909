"""Exceptions raised by the workflow engine."""

from typing import List, Optional


class WorkflowError(Exception):
    """Base class for workflow engine errors."""


class WorkflowValidationError(WorkflowError, ValueError):
    """A workflow definition failed ``validate()`` and cannot run."""

    def __init__(self, errors: List[str]) -> None:
        self.errors = list(errors)
        super().__init__(f"Workflow validation failed: {', '.join(self.errors)}")


class ExecutorNotFoundError(WorkflowError):
    """No executor is registered for a step type."""

    def __init__(self, step_type: str) -> None:
        self.step_type = step_type
        super().__init__(f"No executor found for step type: {step_type}")


class StepExecutionError(WorkflowError):
    """An executor reported a failure that should be retried."""

    def __init__(self, step_id: str, message: Optional[str] = None) -> None:
        self.step_id = step_id
        super().__init__(message or f"Step execution failed: {step_id}")


class StepTimeoutError(StepExecutionError):
    """A step attempt exceeded its ``timeout_ms``."""

    def __init__(self, step_id: str, timeout_ms: int) -> None:
        self.timeout_ms = timeout_ms
        super().__init__(step_id, f"Step execution timed out after {timeout_ms}ms")


class ExecutionNotFoundError(WorkflowError, LookupError):
    """The engine does not track the requested execution."""

    def __init__(self, execution_id: str) -> None:
        self.execution_id = execution_id
        super().__init__(f"Execution not found: {execution_id}")


class UnknownActionError(WorkflowError):
    """An action step named an action type nobody registered."""

    def __init__(self, action_type: Optional[str]) -> None:
        self.action_type = action_type
        super().__init__(f"Unknown action type: {action_type}")
