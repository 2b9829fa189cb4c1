from __future__ import annotations

import allure
import pytest

from zengarden.clients.base import ConfigurationError
from zengarden.tasks.errors import StageError, TaskStateConflictError
from zengarden.tasks.models import FailureClass, FocusSessionView, PipelineStage, TaskStatus
from zengarden.tasks.repository import FlowerTaskRepository
from zengarden.tasks.retry import RetryPolicy

pytestmark = [
    allure.epic("Flower Tasks"),
    allure.feature("Retry Policy"),
]


@pytest.mark.parametrize(
    ("retry_count", "max_retries", "requeue", "next_count"),
    [
        (0, 3, True, 1),
        (1, 3, True, 2),
        (2, 3, False, 3),
        (0, 1, False, 1),
    ],
)
def test_decide_requeues_until_budget_is_spent(
    retry_count: int,
    max_retries: int,
    requeue: bool,
    next_count: int,
) -> None:
    decision = RetryPolicy().decide(
        retry_count=retry_count,
        max_retries=max_retries,
        failure_class=FailureClass.TRANSIENT,
    )

    assert decision.requeue is requeue
    assert decision.retry_count == next_count
    assert decision.retry_count <= max_retries


def test_configuration_failures_fail_fast_but_still_count() -> None:
    decision = RetryPolicy().decide(
        retry_count=0,
        max_retries=3,
        failure_class=FailureClass.CONFIGURATION,
    )

    assert decision.requeue is False
    assert decision.retry_count == 1


def test_configuration_failures_retry_when_fail_fast_disabled() -> None:
    decision = RetryPolicy(fail_fast_on_configuration_error=False).decide(
        retry_count=0,
        max_retries=3,
        failure_class=FailureClass.CONFIGURATION,
    )

    assert decision.requeue is True


def test_apply_writes_decision_from_stored_counters(
    repository: FlowerTaskRepository,
    focus_session: FocusSessionView,
) -> None:
    repository.create_flower_task(
        user_id="user-1",
        session_id=focus_session.session_id,
        max_retries=2,
    )
    policy = RetryPolicy()

    task = repository.claim_next_pending_task()
    assert task is not None
    first = policy.apply(
        repository,
        task_id=task.task_id,
        error=StageError(PipelineStage.GENERATE, "relay unavailable"),
    )
    assert first.requeued is True
    assert first.retry_count == 1
    assert first.failure_class == FailureClass.TRANSIENT

    repository.claim_next_pending_task()
    second = policy.apply(
        repository,
        task_id=task.task_id,
        error=StageError(PipelineStage.GENERATE, "relay still unavailable"),
    )
    assert second.failed is True

    stored = repository.get_task(task_id=task.task_id)
    assert stored is not None
    assert stored.status == TaskStatus.FAILED
    assert stored.retry_count == 2
    assert stored.error == "relay still unavailable"


def test_apply_classifies_configuration_cause(
    repository: FlowerTaskRepository,
    focus_session: FocusSessionView,
) -> None:
    repository.create_flower_task(
        user_id="user-1",
        session_id=focus_session.session_id,
        max_retries=3,
    )
    task = repository.claim_next_pending_task()
    assert task is not None

    error = StageError(PipelineStage.GENERATE, "GEMINI_API_KEY is not configured")
    error.__cause__ = ConfigurationError("GEMINI_API_KEY is not configured")
    outcome = RetryPolicy().apply(repository, task_id=task.task_id, error=error)

    assert outcome.failed is True
    assert outcome.failure_class == FailureClass.CONFIGURATION
    stored = repository.get_task(task_id=task.task_id)
    assert stored is not None
    assert stored.status == TaskStatus.FAILED
    assert stored.retry_count == 1


def test_apply_drops_decision_when_task_is_no_longer_in_flight(
    repository: FlowerTaskRepository,
    focus_session: FocusSessionView,
) -> None:
    _, task, _ = repository.create_flower_task(
        user_id="user-1",
        session_id=focus_session.session_id,
        max_retries=3,
    )

    outcome = RetryPolicy().apply(
        repository,
        task_id=task.task_id,
        error=RuntimeError("late"),
    )

    assert outcome.requeued is False
    assert outcome.failed is False
    stored = repository.get_task(task_id=task.task_id)
    assert stored is not None
    assert stored.retry_count == 0


def test_apply_on_missing_task_is_a_no_op(repository: FlowerTaskRepository) -> None:
    outcome = RetryPolicy().apply(repository, task_id="missing", error=RuntimeError(""))

    assert outcome.requeued is False
    assert outcome.failed is False
    assert outcome.error == "RuntimeError"


def test_apply_ignores_failure_from_a_run_that_lost_its_claim(
    repository: FlowerTaskRepository,
    focus_session: FocusSessionView,
) -> None:
    repository.create_flower_task(
        user_id="user-1",
        session_id=focus_session.session_id,
        max_retries=3,
    )
    first_claim = repository.claim_next_pending_task()
    assert first_claim is not None
    assert repository.schedule_retry(
        task_id=first_claim.task_id,
        expected_retry_count=0,
        retry_count=1,
        failure_class=FailureClass.STALLED,
        error="stalled",
    )
    second_claim = repository.claim_next_pending_task()
    assert second_claim is not None
    assert second_claim.retry_count == 1

    outcome = RetryPolicy().apply(
        repository,
        task_id=first_claim.task_id,
        error=TaskStateConflictError("no longer generating"),
        expected_retry_count=first_claim.retry_count,
    )

    assert outcome.requeued is False
    assert outcome.failed is False
    stored = repository.get_task(task_id=first_claim.task_id)
    assert stored is not None
    assert stored.status == TaskStatus.GENERATING
    assert stored.retry_count == 1
