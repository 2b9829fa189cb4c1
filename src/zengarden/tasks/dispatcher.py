"""Polling dispatcher that claims pending flower tasks and runs the pipeline."""

from __future__ import annotations

import logging
import signal
import threading
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import timedelta

from zengarden.tasks.errors import TaskStateConflictError
from zengarden.tasks.models import FailureClass, TaskView
from zengarden.tasks.pipeline import PipelineRunner
from zengarden.tasks.repository import FlowerTaskRepository
from zengarden.tasks.retry import RetryOutcome, RetryPolicy

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class TickSummary:
    """Aggregate dispatcher counters for CLI reporting."""

    processed: int = 0
    completed: int = 0
    retried: int = 0
    failed: int = 0
    recovered: int = 0
    superseded: int = 0
    busy: int = 0
    idle: int = 0

    def add(self, other: TickSummary) -> None:
        self.processed += other.processed
        self.completed += other.completed
        self.retried += other.retried
        self.failed += other.failed
        self.recovered += other.recovered
        self.superseded += other.superseded
        self.busy += other.busy
        self.idle += other.idle


class Dispatcher:
    """Single-flight task dispatcher.

    The busy lock only guards against overlapping ticks inside one
    ``Dispatcher``; exclusion across processes comes from the repository's
    compare-and-set claim.
    """

    def __init__(  # noqa: PLR0913
        self,
        *,
        repository: FlowerTaskRepository,
        pipeline: PipelineRunner,
        retry_policy: RetryPolicy,
        poll_interval_seconds: float = 5.0,
        stale_task_seconds: int = 1_800,
    ) -> None:
        self.repository = repository
        self.pipeline = pipeline
        self.retry_policy = retry_policy
        self.poll_interval_seconds = poll_interval_seconds
        self.stale_task_seconds = stale_task_seconds
        self._busy = threading.Lock()
        self._stop = threading.Event()
        self._stop_signal_name: str | None = None

    @property
    def busy(self) -> bool:
        return self._busy.locked()

    @property
    def stop_requested(self) -> bool:
        return self._stop.is_set()

    def tick(self) -> TickSummary:
        """Recover stalled work, then claim and run at most one pending task."""

        summary = TickSummary()
        if not self._busy.acquire(blocking=False):
            summary.busy = 1
            return summary
        try:
            self._recover_stale_tasks(summary)
            task = self.repository.claim_next_pending_task()
            if task is None:
                summary.idle = 1
                return summary

            summary.processed = 1
            logger.info("Claimed task %s (retry_count=%d)", task.task_id, task.retry_count)
            self._run_pipeline(task, summary)
            return summary
        finally:
            self._busy.release()

    def run_loop(self, *, max_ticks: int | None = None) -> TickSummary:
        """Tick every poll interval until stopped or ``max_ticks`` reached."""

        aggregate = TickSummary()
        ticks = 0
        with self._signal_handlers():
            while not self._stop.is_set():
                if max_ticks is not None and ticks >= max_ticks:
                    break
                ticks += 1
                try:
                    aggregate.add(self.tick())
                except Exception:
                    logger.exception("Dispatcher tick failed")
                if max_ticks is not None and ticks >= max_ticks:
                    break
                self._stop.wait(self.poll_interval_seconds)
        if self._stop_signal_name is not None:
            logger.info("Dispatcher stopped by %s", self._stop_signal_name)
        return aggregate

    def stop(self) -> None:
        self._stop.set()

    def _run_pipeline(self, task: TaskView, summary: TickSummary) -> None:
        try:
            outcome = self.pipeline.run(task)
        except TaskStateConflictError as conflict:
            # The row moved on without this run; whoever holds it now decides its fate.
            summary.superseded = 1
            logger.warning("Task %s superseded, run abandoned: %s", task.task_id, conflict)
            return
        except Exception as error:  # noqa: BLE001
            logger.warning("Task %s pipeline failed: %s", task.task_id, error)
            self._apply_retry(task, error, summary)
            return

        summary.completed = 1
        logger.info(
            "Task %s completed (minted=%s, image=%s)",
            task.task_id,
            outcome.minted,
            outcome.image_url,
        )

    def _apply_retry(
        self,
        task: TaskView,
        error: BaseException,
        summary: TickSummary,
        *,
        failure_class: FailureClass | None = None,
        event_type: str | None = None,
    ) -> RetryOutcome | None:
        try:
            outcome = self.retry_policy.apply(
                self.repository,
                task_id=task.task_id,
                error=error,
                failure_class=failure_class,
                event_type=event_type,
                expected_retry_count=task.retry_count,
            )
        except Exception:
            logger.exception("Task %s: could not record failure", task.task_id)
            return None
        self._record_retry(summary, outcome)
        return outcome

    def _recover_stale_tasks(self, summary: TickSummary) -> None:
        if self.stale_task_seconds <= 0:
            return
        stale = self.repository.list_stale_tasks(
            stale_after=timedelta(seconds=self.stale_task_seconds),
        )
        for task in stale:
            outcome = self._apply_retry(
                task,
                RuntimeError(
                    f"Task stalled in {task.status.value} for over "
                    f"{self.stale_task_seconds} seconds",
                ),
                TickSummary(),
                failure_class=FailureClass.STALLED,
                event_type="stale_recovered",
            )
            if outcome is not None and (outcome.requeued or outcome.failed):
                summary.recovered += 1
        if summary.recovered:
            logger.warning("Recovered %d stalled task(s)", summary.recovered)

    @staticmethod
    def _record_retry(summary: TickSummary, outcome: RetryOutcome) -> None:
        if outcome.requeued:
            summary.retried = 1
        elif outcome.failed:
            summary.failed = 1

    @contextmanager
    def _signal_handlers(self) -> Iterator[None]:
        if threading.current_thread() is not threading.main_thread():
            yield
            return

        original_sigint = signal.getsignal(signal.SIGINT)
        original_sigterm = signal.getsignal(signal.SIGTERM)

        def _handler(signum: int, _: object | None) -> None:
            try:
                self._stop_signal_name = signal.Signals(signum).name
            except ValueError:
                self._stop_signal_name = str(signum)
            self.stop()

        signal.signal(signal.SIGINT, _handler)
        signal.signal(signal.SIGTERM, _handler)
        try:
            yield
        finally:
            signal.signal(signal.SIGINT, original_sigint)
            signal.signal(signal.SIGTERM, original_sigterm)
