"""Domain exceptions for the flower task subsystem."""

from __future__ import annotations

from zengarden.clients.base import ConfigurationError
from zengarden.tasks.models import FailureClass, PipelineStage, TaskStatus

__all__ = [
    "AccessDeniedError",
    "ConfigurationError",
    "SessionNotCompletedError",
    "SessionNotFoundError",
    "StageError",
    "TaskNotFoundError",
    "TaskNotRetryableError",
    "TaskStateConflictError",
]


class TaskNotFoundError(Exception):
    """Raised when a task identifier does not exist in the task store."""

    def __init__(self, task_id: str) -> None:
        super().__init__(f"Task not found: {task_id}")
        self.task_id = task_id


class SessionNotFoundError(Exception):
    """Raised when a focus session identifier does not exist."""

    def __init__(self, session_id: str) -> None:
        super().__init__(f"Focus session not found: {session_id}")
        self.session_id = session_id


class SessionNotCompletedError(Exception):
    """Raised when generation is requested for a session that has not completed."""

    def __init__(self, session_id: str, status: str) -> None:
        super().__init__(f"Focus session {session_id} is not completed (status={status}).")
        self.session_id = session_id
        self.status = status


class AccessDeniedError(Exception):
    """Raised when a user attempts to access a resource they do not own."""

    def __init__(self, resource: str, user_id: str) -> None:
        super().__init__(f"User '{user_id}' has no access to {resource}.")
        self.resource = resource
        self.user_id = user_id


class TaskNotRetryableError(Exception):
    """Raised when a manual retry is requested for a task that has not failed."""

    def __init__(self, task_id: str, status: TaskStatus) -> None:
        super().__init__(
            f"Only failed tasks can be retried manually, got {status.value} (task_id={task_id}).",
        )
        self.task_id = task_id
        self.status = status


class TaskStateConflictError(RuntimeError):
    """Raised when a task row changed concurrently under a state transition."""


class StageError(RuntimeError):
    """A retryable pipeline stage failure surfaced to the dispatcher."""

    def __init__(
        self,
        stage: PipelineStage,
        message: str,
        *,
        failure_class: FailureClass = FailureClass.TRANSIENT,
    ) -> None:
        super().__init__(message)
        self.stage = stage
        self.failure_class = failure_class
