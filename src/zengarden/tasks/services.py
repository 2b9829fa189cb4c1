"""Use-case services for the flower task API."""

from __future__ import annotations

import logging
from dataclasses import dataclass

from zengarden.tasks.errors import (
    AccessDeniedError,
    SessionNotCompletedError,
    SessionNotFoundError,
    TaskNotFoundError,
)
from zengarden.tasks.models import (
    FlowerView,
    FlowerWithTask,
    SessionStatus,
    TaskDetails,
    TaskView,
)
from zengarden.tasks.repository import FlowerTaskRepository

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class GenerationRequest:
    """High-level command to request a flower for a finished focus session."""

    user_id: str
    session_id: str
    max_retries: int | None = None


@dataclass(slots=True)
class GenerationTicket:
    flower: FlowerView
    task: TaskView
    created: bool


class FlowerTaskService:
    """Ownership checks and idempotent task creation on top of the repository."""

    def __init__(
        self,
        *,
        repository: FlowerTaskRepository,
        default_max_retries: int = 3,
    ) -> None:
        self.repository = repository
        self.default_max_retries = default_max_retries

    def request_generation(self, command: GenerationRequest) -> GenerationTicket:
        """Create the flower and its task, or return the ones already made for the session."""

        focus_session = self.repository.get_focus_session(session_id=command.session_id)
        if focus_session is None:
            raise SessionNotFoundError(command.session_id)
        if focus_session.user_id != command.user_id:
            raise AccessDeniedError(f"focus session {command.session_id}", command.user_id)
        if focus_session.status != SessionStatus.COMPLETED:
            raise SessionNotCompletedError(command.session_id, focus_session.status.value)

        flower, task, created = self.repository.create_flower_task(
            user_id=command.user_id,
            session_id=command.session_id,
            max_retries=command.max_retries or self.default_max_retries,
        )
        if created:
            logger.info("Queued flower task %s for session %s", task.task_id, command.session_id)
        return GenerationTicket(flower=flower, task=task, created=created)

    def get_task(self, *, task_id: str, user_id: str | None = None) -> TaskDetails:
        details = self.repository.get_task_details(task_id=task_id)
        if details is None:
            raise TaskNotFoundError(task_id)
        self._check_owner(details, user_id=user_id)
        return details

    def retry_task(self, *, task_id: str, user_id: str | None = None) -> TaskView:
        """Manually requeue a failed task with a fresh retry budget."""

        self.get_task(task_id=task_id, user_id=user_id)
        task = self.repository.retry_task(task_id=task_id)
        logger.info("Task %s manually re-queued", task_id)
        return task

    def list_flowers(self, *, user_id: str, limit: int = 100) -> list[FlowerWithTask]:
        return self.repository.list_flowers(user_id=user_id, limit=limit)

    @staticmethod
    def _check_owner(details: TaskDetails, *, user_id: str | None) -> None:
        if user_id is not None and details.flower.user_id != user_id:
            raise AccessDeniedError(f"task {details.task.task_id}", user_id)
