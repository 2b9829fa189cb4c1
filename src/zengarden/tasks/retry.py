"""Bounded retry policy for failed pipeline runs."""

from __future__ import annotations

import logging
from dataclasses import dataclass

from zengarden.tasks.failure_classifier import classify_stage_failure
from zengarden.tasks.models import FailureClass
from zengarden.tasks.repository import FlowerTaskRepository

logger = logging.getLogger(__name__)

_RETRYABLE = frozenset(
    {FailureClass.TRANSIENT, FailureClass.STALLED, FailureClass.UNEXPECTED},
)


@dataclass(slots=True, frozen=True)
class RetryDecision:
    """What to do with a task whose pipeline run failed."""

    requeue: bool
    retry_count: int


@dataclass(slots=True)
class RetryOutcome:
    task_id: str
    requeued: bool
    failed: bool
    retry_count: int
    failure_class: FailureClass | None
    error: str


class RetryPolicy:
    """Decide requeue vs terminal failure from stored counters only."""

    def __init__(self, *, fail_fast_on_configuration_error: bool = True) -> None:
        self.fail_fast_on_configuration_error = fail_fast_on_configuration_error

    def decide(
        self,
        *,
        retry_count: int,
        max_retries: int,
        failure_class: FailureClass,
    ) -> RetryDecision:
        next_count = retry_count + 1
        if failure_class not in _RETRYABLE and self.fail_fast_on_configuration_error:
            return RetryDecision(requeue=False, retry_count=next_count)
        return RetryDecision(requeue=next_count < max_retries, retry_count=next_count)

    def apply(
        self,
        repository: FlowerTaskRepository,
        *,
        task_id: str,
        error: BaseException,
        failure_class: FailureClass | None = None,
        event_type: str | None = None,
        expected_retry_count: int | None = None,
    ) -> RetryOutcome:
        """Read the task's counters and write back the retry decision.

        ``expected_retry_count`` is the counter the failed run was claimed
        with. When the stored counter has moved on, the task was requeued
        and possibly re-claimed since, so the decision is dropped.
        """

        message = _error_message(error)
        task = repository.get_task(task_id=task_id)
        if task is None:
            logger.warning("Task %s vanished before retry policy could run", task_id)
            return RetryOutcome(
                task_id=task_id,
                requeued=False,
                failed=False,
                retry_count=0,
                failure_class=None,
                error=message,
            )

        claimed_count = task.retry_count if expected_retry_count is None else expected_retry_count
        resolved_class = failure_class or classify_stage_failure(error)
        if claimed_count != task.retry_count:
            logger.warning(
                "Task %s was requeued since this run was claimed (retry_count %d -> %d); "
                "retry decision dropped",
                task_id,
                claimed_count,
                task.retry_count,
            )
            return RetryOutcome(
                task_id=task_id,
                requeued=False,
                failed=False,
                retry_count=task.retry_count,
                failure_class=resolved_class,
                error=message,
            )

        decision = self.decide(
            retry_count=claimed_count,
            max_retries=task.max_retries,
            failure_class=resolved_class,
        )
        if decision.requeue:
            written = repository.schedule_retry(
                task_id=task_id,
                expected_retry_count=claimed_count,
                retry_count=decision.retry_count,
                failure_class=resolved_class,
                error=message,
                event_type=event_type or "retry_scheduled",
            )
            if written:
                logger.info(
                    "Task %s failed (%s), will retry (%d/%d): %s",
                    task_id,
                    resolved_class.value,
                    decision.retry_count,
                    task.max_retries,
                    message,
                )
        else:
            written = repository.fail_task(
                task_id=task_id,
                expected_retry_count=claimed_count,
                retry_count=decision.retry_count,
                failure_class=resolved_class,
                error=message,
                event_type=event_type or "failed",
            )
            if written:
                logger.warning(
                    "Task %s failed after %d attempt(s) (%s): %s",
                    task_id,
                    decision.retry_count,
                    resolved_class.value,
                    message,
                )
        if not written:
            logger.warning("Task %s changed state concurrently; retry decision dropped", task_id)

        return RetryOutcome(
            task_id=task_id,
            requeued=decision.requeue and written,
            failed=not decision.requeue and written,
            retry_count=decision.retry_count if written else task.retry_count,
            failure_class=resolved_class,
            error=message,
        )


def _error_message(error: BaseException) -> str:
    message = str(error).strip()
    return message or type(error).__name__
