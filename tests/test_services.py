from __future__ import annotations

import allure
import pytest

from zengarden.tasks.errors import (
    AccessDeniedError,
    SessionNotCompletedError,
    SessionNotFoundError,
    TaskNotFoundError,
    TaskNotRetryableError,
)
from zengarden.tasks.models import FailureClass, FocusSessionView, SessionStatus, TaskStatus
from zengarden.tasks.repository import FlowerTaskRepository
from zengarden.tasks.services import FlowerTaskService, GenerationRequest

pytestmark = [
    allure.epic("Flower Tasks"),
    allure.feature("Task API"),
]


@pytest.fixture()
def service(repository: FlowerTaskRepository) -> FlowerTaskService:
    return FlowerTaskService(repository=repository, default_max_retries=3)


def test_request_generation_returns_same_task_for_same_session(
    service: FlowerTaskService,
    focus_session: FocusSessionView,
) -> None:
    request = GenerationRequest(user_id="user-1", session_id=focus_session.session_id)

    first = service.request_generation(request)
    second = service.request_generation(request)

    assert first.created is True
    assert second.created is False
    assert second.task.task_id == first.task.task_id
    assert first.task.max_retries == 3
    assert len(service.list_flowers(user_id="user-1")) == 1


def test_request_generation_honours_explicit_max_retries(
    service: FlowerTaskService,
    focus_session: FocusSessionView,
) -> None:
    ticket = service.request_generation(
        GenerationRequest(user_id="user-1", session_id=focus_session.session_id, max_retries=5),
    )

    assert ticket.task.max_retries == 5


def test_request_generation_rejects_unknown_session(service: FlowerTaskService) -> None:
    with pytest.raises(SessionNotFoundError):
        service.request_generation(GenerationRequest(user_id="user-1", session_id="nope"))


def test_request_generation_rejects_foreign_session(
    repository: FlowerTaskRepository,
    service: FlowerTaskService,
    focus_session: FocusSessionView,
) -> None:
    repository.upsert_user(user_id="user-2")

    with pytest.raises(AccessDeniedError, match="user-2"):
        service.request_generation(
            GenerationRequest(user_id="user-2", session_id=focus_session.session_id),
        )
    assert repository.list_flowers(user_id="user-1") == []


def test_request_generation_requires_completed_session(
    repository: FlowerTaskRepository,
    service: FlowerTaskService,
    focus_session: FocusSessionView,
) -> None:
    interrupted = repository.add_focus_session(
        user_id="user-1",
        reason="Deep work",
        duration_seconds=300,
        status=SessionStatus.INTERRUPTED,
    )

    with pytest.raises(SessionNotCompletedError, match="interrupted"):
        service.request_generation(
            GenerationRequest(user_id="user-1", session_id=interrupted.session_id),
        )


def test_get_task_checks_owner(
    repository: FlowerTaskRepository,
    service: FlowerTaskService,
    focus_session: FocusSessionView,
) -> None:
    ticket = service.request_generation(
        GenerationRequest(user_id="user-1", session_id=focus_session.session_id),
    )

    details = service.get_task(task_id=ticket.task.task_id, user_id="user-1")
    assert details.task.task_id == ticket.task.task_id
    assert details.flower.flower_id == ticket.flower.flower_id
    assert service.get_task(task_id=ticket.task.task_id).task.status == TaskStatus.PENDING

    with pytest.raises(AccessDeniedError):
        service.get_task(task_id=ticket.task.task_id, user_id="user-2")
    with pytest.raises(TaskNotFoundError):
        service.get_task(task_id="missing")


def test_retry_task_only_for_failed_tasks(
    repository: FlowerTaskRepository,
    service: FlowerTaskService,
    focus_session: FocusSessionView,
) -> None:
    ticket = service.request_generation(
        GenerationRequest(user_id="user-1", session_id=focus_session.session_id),
    )
    task_id = ticket.task.task_id

    with pytest.raises(TaskNotRetryableError):
        service.retry_task(task_id=task_id, user_id="user-1")

    repository.claim_next_pending_task()
    repository.fail_task(
        task_id=task_id,
        expected_retry_count=0,
        retry_count=3,
        failure_class=FailureClass.TRANSIENT,
        error="relay unavailable",
    )

    with pytest.raises(AccessDeniedError):
        service.retry_task(task_id=task_id, user_id="user-2")

    retried = service.retry_task(task_id=task_id, user_id="user-1")
    assert retried.status == TaskStatus.PENDING
    assert retried.retry_count == 0
    assert retried.error is None


def test_list_flowers_includes_task_status(
    service: FlowerTaskService,
    focus_session: FocusSessionView,
) -> None:
    service.request_generation(
        GenerationRequest(user_id="user-1", session_id=focus_session.session_id),
    )

    [entry] = service.list_flowers(user_id="user-1")
    assert entry.task is not None
    assert entry.task.status == TaskStatus.PENDING
    assert entry.flower.session_id == focus_session.session_id
    assert service.list_flowers(user_id="user-2") == []
