"""Persistent queue repository for flower generation tasks."""

from __future__ import annotations

import json
from datetime import timedelta
from pathlib import Path
from typing import Any
from uuid import uuid4

from sqlalchemy import update as sa_update
from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, col, select

from zengarden.storage.alembic_runner import upgrade_head
from zengarden.storage.common import (
    build_sqlite_engine,
    to_db_datetime,
    to_optional_aware,
    to_utc_aware_datetime,
    utc_now,
)
from zengarden.storage.sqlmodel_models import (
    AppUser,
    Flower,
    FlowerTask,
    FlowerTaskEvent,
    FocusSession,
)
from zengarden.tasks.errors import (
    TaskNotFoundError,
    TaskNotRetryableError,
    TaskStateConflictError,
)
from zengarden.tasks.models import (
    IN_FLIGHT_STATUSES,
    FailureClass,
    FlowerView,
    FlowerWithTask,
    FocusSessionView,
    SessionStatus,
    TaskContext,
    TaskDetails,
    TaskEventView,
    TaskStatus,
    TaskView,
    UserView,
)

_IN_FLIGHT_VALUES = tuple(status.value for status in IN_FLIGHT_STATUSES)


class FlowerTaskRepository:
    """Queue persistence facade backed by SQLModel + SQLite.

    The ``flower_tasks`` table is the queue: every state transition is a
    compare-and-set ``UPDATE`` guarded by the expected current status, so
    concurrent dispatchers (threads or processes) cannot both win a claim.
    """

    def __init__(self, db_path: Path, *, sqlite_busy_timeout_ms: int = 5_000) -> None:
        self.db_path = db_path
        self.engine = build_sqlite_engine(
            db_path=db_path,
            busy_timeout_ms=sqlite_busy_timeout_ms,
        )

    def close(self) -> None:
        """Close underlying DB resources."""

        self.engine.dispose()

    def init_schema(self) -> None:
        """Run schema migrations."""

        upgrade_head(self.engine)

    # -- external collaborators (users, focus sessions) ----------------------

    def upsert_user(
        self,
        *,
        user_id: str,
        address: str | None = None,
        display_name: str = "",
    ) -> UserView:
        """Create a user or update its wallet address and display name."""

        with Session(self.engine) as session:
            row = session.get(AppUser, user_id)
            if row is None:
                row = AppUser(
                    user_id=user_id,
                    address=address,
                    display_name=display_name,
                    total_flowers=0,
                    created_at=to_db_datetime(utc_now()),
                )
            else:
                row.address = address
                row.display_name = display_name
            session.add(row)
            session.commit()
            session.refresh(row)
            return _to_user_view(row)

    def get_user(self, *, user_id: str) -> UserView | None:
        with Session(self.engine) as session:
            row = session.get(AppUser, user_id)
            return _to_user_view(row) if row is not None else None

    def add_focus_session(
        self,
        *,
        user_id: str,
        reason: str,
        duration_seconds: int,
        status: SessionStatus = SessionStatus.COMPLETED,
        session_id: str | None = None,
    ) -> FocusSessionView:
        """Record a focus session owned by the session-management collaborator."""

        if duration_seconds < 0:
            raise ValueError(f"duration_seconds must be >= 0, got {duration_seconds}")
        with Session(self.engine) as session:
            if session.get(AppUser, user_id) is None:
                raise ValueError(f"User not found: {user_id}")
            row = FocusSession(
                session_id=session_id or str(uuid4()),
                user_id=user_id,
                reason=reason,
                duration_seconds=duration_seconds,
                status=status.value,
                created_at=to_db_datetime(utc_now()),
            )
            session.add(row)
            session.commit()
            session.refresh(row)
            return _to_session_view(row)

    def get_focus_session(self, *, session_id: str) -> FocusSessionView | None:
        with Session(self.engine) as session:
            row = session.get(FocusSession, session_id)
            return _to_session_view(row) if row is not None else None

    # -- task creation and lookup ----------------------------------------------

    def create_flower_task(
        self,
        *,
        user_id: str,
        session_id: str,
        max_retries: int,
    ) -> tuple[FlowerView, TaskView, bool]:
        """Create a flower and its pending task, or return the existing pair.

        Returns ``(flower, task, created)``; ``created`` is False when the
        session already had a flower.
        """

        if max_retries < 1:
            raise ValueError(f"max_retries must be >= 1, got {max_retries}")

        existing = self._find_by_session(session_id=session_id)
        if existing is not None:
            return existing[0], existing[1], False

        now = to_db_datetime(utc_now())
        flower_id = str(uuid4())
        task_id = str(uuid4())
        try:
            with Session(self.engine) as session:
                flower = Flower(
                    flower_id=flower_id,
                    user_id=user_id,
                    session_id=session_id,
                    minted=False,
                    created_at=now,
                    updated_at=now,
                )
                session.add(flower)
                session.flush()
                task = FlowerTask(
                    task_id=task_id,
                    flower_id=flower_id,
                    status=TaskStatus.PENDING.value,
                    retry_count=0,
                    max_retries=max_retries,
                    created_at=now,
                    updated_at=now,
                )
                session.add(task)
                session.flush()
                self._add_event(
                    session=session,
                    task_id=task_id,
                    event_type="created",
                    status_from=None,
                    status_to=TaskStatus.PENDING,
                    details={"session_id": session_id, "max_retries": max_retries},
                )
                session.commit()
                session.refresh(flower)
                session.refresh(task)
                return _to_flower_view(flower), _to_task_view(task), True
        except IntegrityError:
            # Lost a creation race on flowers.session_id.
            existing = self._find_by_session(session_id=session_id)
            if existing is None:
                raise
            return existing[0], existing[1], False

    def get_task(self, *, task_id: str) -> TaskView | None:
        with Session(self.engine) as session:
            row = session.get(FlowerTask, task_id)
            return _to_task_view(row) if row is not None else None

    def get_flower(self, *, flower_id: str) -> FlowerView | None:
        with Session(self.engine) as session:
            row = session.get(Flower, flower_id)
            return _to_flower_view(row) if row is not None else None

    def get_task_details(self, *, task_id: str) -> TaskDetails | None:
        """Return task details with flower and event stream."""

        with Session(self.engine) as session:
            task = session.get(FlowerTask, task_id)
            if task is None:
                return None
            flower = session.get(Flower, task.flower_id)
            if flower is None:
                raise RuntimeError(f"Task {task_id} has no flower row.")

            event_rows = session.exec(
                select(FlowerTaskEvent)
                .where(FlowerTaskEvent.task_id == task_id)
                .order_by(col(FlowerTaskEvent.created_at).asc(), col(FlowerTaskEvent.id).asc()),
            ).all()
            task_view = _to_task_view(task)
            flower_view = _to_flower_view(flower)

        events: list[TaskEventView] = []
        for row in event_rows:
            details = {}
            if row.details_json:
                parsed = json.loads(row.details_json)
                if isinstance(parsed, dict):
                    details = parsed
            events.append(
                TaskEventView(
                    event_id=row.id or 0,
                    task_id=row.task_id,
                    event_type=row.event_type,
                    status_from=(
                        TaskStatus(row.status_from) if row.status_from is not None else None
                    ),
                    status_to=TaskStatus(row.status_to) if row.status_to is not None else None,
                    created_at=to_utc_aware_datetime(row.created_at),
                    details=details,
                ),
            )
        return TaskDetails(task=task_view, flower=flower_view, events=events)

    def list_tasks(
        self,
        *,
        status: TaskStatus | None = None,
        limit: int = 50,
    ) -> list[TaskView]:
        """List recent tasks, optionally filtered by status."""

        with Session(self.engine) as session:
            statement = select(FlowerTask).order_by(col(FlowerTask.created_at).desc()).limit(limit)
            if status is not None:
                statement = statement.where(FlowerTask.status == status.value)
            rows = session.exec(statement).all()
            return [_to_task_view(row) for row in rows]

    def list_flowers(self, *, user_id: str, limit: int = 100) -> list[FlowerWithTask]:
        """List a user's flowers, newest first, with their task state."""

        with Session(self.engine) as session:
            rows = session.exec(
                select(Flower, FlowerTask)
                .join(FlowerTask, col(FlowerTask.flower_id) == col(Flower.flower_id), isouter=True)
                .where(Flower.user_id == user_id)
                .order_by(col(Flower.created_at).desc())
                .limit(limit),
            ).all()
            return [
                FlowerWithTask(
                    flower=_to_flower_view(flower),
                    task=_to_task_view(task) if task is not None else None,
                )
                for flower, task in rows
            ]

    def get_pipeline_context(self, *, task_id: str) -> TaskContext:
        """Load task, flower, session inputs and recipient wallet for the pipeline."""

        with Session(self.engine) as session:
            row = session.exec(
                select(FlowerTask, Flower, FocusSession, AppUser)
                .join(Flower, col(Flower.flower_id) == col(FlowerTask.flower_id))
                .join(FocusSession, col(FocusSession.session_id) == col(Flower.session_id))
                .join(AppUser, col(AppUser.user_id) == col(Flower.user_id))
                .where(FlowerTask.task_id == task_id),
            ).one_or_none()
            if row is None:
                raise TaskNotFoundError(task_id)
            task, flower, focus_session, user = row
            return TaskContext(
                task=_to_task_view(task),
                flower=_to_flower_view(flower),
                reason=focus_session.reason,
                duration_seconds=focus_session.duration_seconds,
                wallet_address=user.address or None,
            )

    # -- queue transitions -------------------------------------------------------

    def claim_next_pending_task(self) -> TaskView | None:
        """Atomically claim the oldest pending task and mark it generating."""

        while True:
            now = to_db_datetime(utc_now())
            with Session(self.engine) as session:
                candidate = session.exec(
                    select(FlowerTask)
                    .where(FlowerTask.status == TaskStatus.PENDING.value)
                    .order_by(
                        col(FlowerTask.created_at).asc(),
                        col(FlowerTask.task_id).asc(),
                    )
                    .limit(1),
                ).one_or_none()
                if candidate is None:
                    return None

                result = session.exec(
                    sa_update(FlowerTask)
                    .where(
                        col(FlowerTask.task_id) == candidate.task_id,
                        col(FlowerTask.status) == TaskStatus.PENDING.value,
                    )
                    .values(
                        status=TaskStatus.GENERATING.value,
                        started_at=now,
                        completed_at=None,
                        updated_at=now,
                    ),
                )
                if result.rowcount != 1:
                    session.rollback()
                    continue

                claimed = session.exec(
                    select(FlowerTask).where(FlowerTask.task_id == candidate.task_id),
                ).one()
                self._add_event(
                    session=session,
                    task_id=claimed.task_id,
                    event_type="claimed",
                    status_from=TaskStatus.PENDING,
                    status_to=TaskStatus.GENERATING,
                    details={"retry_count": claimed.retry_count},
                )
                session.commit()
                return _to_task_view(claimed)

    def advance_task(
        self,
        *,
        task_id: str,
        from_status: TaskStatus,
        to_status: TaskStatus,
        expected_retry_count: int | None = None,
    ) -> bool:
        """Move a running task to its next pipeline status.

        With ``expected_retry_count`` the move also requires the claim the
        caller holds: a requeue bumps ``retry_count``, so a run whose task
        was recovered and re-claimed elsewhere no longer matches.
        """

        now = to_db_datetime(utc_now())
        with Session(self.engine) as session:
            result = session.exec(
                sa_update(FlowerTask)
                .where(
                    col(FlowerTask.task_id) == task_id,
                    col(FlowerTask.status) == from_status.value,
                    *_claim_guard(expected_retry_count),
                )
                .values(status=to_status.value, updated_at=now),
            )
            if result.rowcount != 1:
                session.rollback()
                return False
            self._add_event(
                session=session,
                task_id=task_id,
                event_type="stage_started",
                status_from=from_status,
                status_to=to_status,
                details={},
            )
            session.commit()
            return True

    def complete_task(self, *, task_id: str, expected_retry_count: int | None = None) -> bool:
        """Mark a minting task completed and credit the owner's flower count."""

        now = to_db_datetime(utc_now())
        with Session(self.engine) as session:
            row = session.exec(
                select(FlowerTask, Flower)
                .join(Flower, col(Flower.flower_id) == col(FlowerTask.flower_id))
                .where(FlowerTask.task_id == task_id),
            ).one_or_none()
            if row is None:
                raise TaskNotFoundError(task_id)
            _, flower = row

            result = session.exec(
                sa_update(FlowerTask)
                .where(
                    col(FlowerTask.task_id) == task_id,
                    col(FlowerTask.status) == TaskStatus.MINTING.value,
                    *_claim_guard(expected_retry_count),
                )
                .values(
                    status=TaskStatus.COMPLETED.value,
                    completed_at=now,
                    updated_at=now,
                ),
            )
            if result.rowcount != 1:
                session.rollback()
                return False
            session.exec(
                sa_update(AppUser)
                .where(col(AppUser.user_id) == flower.user_id)
                .values(total_flowers=col(AppUser.total_flowers) + 1),
            )
            self._add_event(
                session=session,
                task_id=task_id,
                event_type="completed",
                status_from=TaskStatus.MINTING,
                status_to=TaskStatus.COMPLETED,
                details={"minted": flower.minted},
            )
            session.commit()
            return True

    def schedule_retry(  # noqa: PLR0913
        self,
        *,
        task_id: str,
        expected_retry_count: int,
        retry_count: int,
        failure_class: FailureClass,
        error: str,
        event_type: str = "retry_scheduled",
    ) -> bool:
        """Requeue an in-flight task for automatic retry."""

        return self._release_in_flight(
            task_id=task_id,
            status_to=TaskStatus.PENDING,
            expected_retry_count=expected_retry_count,
            retry_count=retry_count,
            failure_class=failure_class,
            error=error,
            event_type=event_type,
        )

    def fail_task(  # noqa: PLR0913
        self,
        *,
        task_id: str,
        expected_retry_count: int,
        retry_count: int,
        failure_class: FailureClass,
        error: str,
        event_type: str = "failed",
    ) -> bool:
        """Mark an in-flight task terminally failed."""

        return self._release_in_flight(
            task_id=task_id,
            status_to=TaskStatus.FAILED,
            expected_retry_count=expected_retry_count,
            retry_count=retry_count,
            failure_class=failure_class,
            error=error,
            event_type=event_type,
        )

    def retry_task(self, *, task_id: str) -> TaskView:
        """Manual retry for a failed task: reset counters and requeue."""

        now = to_db_datetime(utc_now())
        with Session(self.engine) as session:
            row = session.get(FlowerTask, task_id)
            if row is None:
                raise TaskNotFoundError(task_id)

            previous = TaskStatus(row.status)
            if previous != TaskStatus.FAILED:
                raise TaskNotRetryableError(task_id, previous)
            result = session.exec(
                sa_update(FlowerTask)
                .where(
                    col(FlowerTask.task_id) == task_id,
                    col(FlowerTask.status) == TaskStatus.FAILED.value,
                )
                .values(
                    status=TaskStatus.PENDING.value,
                    retry_count=0,
                    error=None,
                    failure_class=None,
                    started_at=None,
                    completed_at=None,
                    updated_at=now,
                ),
            )
            if result.rowcount != 1:
                session.rollback()
                raise TaskStateConflictError(
                    "Task state changed concurrently while retrying; "
                    f"please retry command (task_id={task_id}).",
                )

            self._add_event(
                session=session,
                task_id=task_id,
                event_type="manual_retry",
                status_from=previous,
                status_to=TaskStatus.PENDING,
                details={"previous_retry_count": row.retry_count},
            )
            session.commit()
            refreshed = session.get(FlowerTask, task_id)
            if refreshed is None:
                raise TaskNotFoundError(task_id)
            return _to_task_view(refreshed)

    def list_stale_tasks(self, *, stale_after: timedelta) -> list[TaskView]:
        """In-flight tasks that have not moved for longer than ``stale_after``."""

        cutoff = to_db_datetime(utc_now() - stale_after)
        with Session(self.engine) as session:
            rows = session.exec(
                select(FlowerTask)
                .where(
                    col(FlowerTask.status).in_(_IN_FLIGHT_VALUES),
                    col(FlowerTask.updated_at) <= cutoff,
                )
                .order_by(col(FlowerTask.updated_at).asc()),
            ).all()
            return [_to_task_view(row) for row in rows]

    # -- flower artifact updates -------------------------------------------------

    def save_flower_prompt(self, *, flower_id: str, prompt: str) -> None:
        self._update_flower(flower_id=flower_id, values={"prompt": prompt})

    def save_flower_image(self, *, flower_id: str, image_url: str) -> None:
        self._update_flower(flower_id=flower_id, values={"image_url": image_url})

    def save_flower_metadata(self, *, flower_id: str, metadata_url: str) -> None:
        self._update_flower(flower_id=flower_id, values={"metadata_url": metadata_url})

    def record_mint(
        self,
        *,
        flower_id: str,
        tx_hash: str,
        token_id: str | None,
        metadata_url: str,
    ) -> None:
        self._update_flower(
            flower_id=flower_id,
            values={
                "tx_hash": tx_hash,
                "token_id": token_id,
                "metadata_url": metadata_url,
                "minted": True,
            },
        )

    def add_task_event(
        self,
        *,
        task_id: str,
        event_type: str,
        status_from: TaskStatus | None = None,
        status_to: TaskStatus | None = None,
        details: dict[str, object] | None = None,
    ) -> None:
        """Append one audit event outside of a state transition."""

        with Session(self.engine) as session:
            self._add_event(
                session=session,
                task_id=task_id,
                event_type=event_type,
                status_from=status_from,
                status_to=status_to,
                details=details or {},
            )
            session.commit()

    # -- internals -----------------------------------------------------------------

    def _find_by_session(self, *, session_id: str) -> tuple[FlowerView, TaskView] | None:
        with Session(self.engine) as session:
            row = session.exec(
                select(Flower, FlowerTask)
                .join(FlowerTask, col(FlowerTask.flower_id) == col(Flower.flower_id))
                .where(Flower.session_id == session_id),
            ).one_or_none()
            if row is None:
                return None
            flower, task = row
            return _to_flower_view(flower), _to_task_view(task)

    def _update_flower(self, *, flower_id: str, values: dict[str, Any]) -> None:
        with Session(self.engine) as session:
            result = session.exec(
                sa_update(Flower)
                .where(col(Flower.flower_id) == flower_id)
                .values(**values, updated_at=to_db_datetime(utc_now())),
            )
            if result.rowcount != 1:
                session.rollback()
                raise RuntimeError(f"Flower not found: {flower_id}")
            session.commit()

    def _release_in_flight(  # noqa: PLR0913
        self,
        *,
        task_id: str,
        status_to: TaskStatus,
        expected_retry_count: int,
        retry_count: int,
        failure_class: FailureClass,
        error: str,
        event_type: str,
    ) -> bool:
        now = to_db_datetime(utc_now())
        with Session(self.engine) as session:
            row = session.get(FlowerTask, task_id)
            if row is None:
                raise TaskNotFoundError(task_id)
            previous = TaskStatus(row.status)
            if previous not in IN_FLIGHT_STATUSES:
                return False

            result = session.exec(
                sa_update(FlowerTask)
                .where(
                    col(FlowerTask.task_id) == task_id,
                    col(FlowerTask.status) == previous.value,
                    col(FlowerTask.retry_count) == expected_retry_count,
                )
                .values(
                    status=status_to.value,
                    retry_count=retry_count,
                    failure_class=failure_class.value,
                    error=error,
                    started_at=None if status_to == TaskStatus.PENDING else row.started_at,
                    updated_at=now,
                ),
            )
            if result.rowcount != 1:
                session.rollback()
                return False
            self._add_event(
                session=session,
                task_id=task_id,
                event_type=event_type,
                status_from=previous,
                status_to=status_to,
                details={
                    "failure_class": failure_class.value,
                    "retry_count": retry_count,
                    "error": error,
                },
            )
            session.commit()
            return True

    def _add_event(  # noqa: PLR0913
        self,
        *,
        session: Session,
        task_id: str,
        event_type: str,
        status_from: TaskStatus | None,
        status_to: TaskStatus | None,
        details: dict[str, object],
    ) -> None:
        session.add(
            FlowerTaskEvent(
                task_id=task_id,
                event_type=event_type,
                status_from=status_from.value if status_from is not None else None,
                status_to=status_to.value if status_to is not None else None,
                details_json=json.dumps(details, ensure_ascii=False, sort_keys=True)
                if details
                else None,
                created_at=to_db_datetime(utc_now()),
            ),
        )


def _claim_guard(expected_retry_count: int | None) -> list[Any]:
    if expected_retry_count is None:
        return []
    return [col(FlowerTask.retry_count) == expected_retry_count]


def _to_user_view(row: AppUser) -> UserView:
    return UserView(
        user_id=row.user_id,
        address=row.address,
        display_name=row.display_name,
        total_flowers=row.total_flowers,
        created_at=to_utc_aware_datetime(row.created_at),
    )


def _to_session_view(row: FocusSession) -> FocusSessionView:
    return FocusSessionView(
        session_id=row.session_id,
        user_id=row.user_id,
        reason=row.reason,
        duration_seconds=row.duration_seconds,
        status=SessionStatus(row.status),
        created_at=to_utc_aware_datetime(row.created_at),
    )


def _to_flower_view(row: Flower) -> FlowerView:
    return FlowerView(
        flower_id=row.flower_id,
        user_id=row.user_id,
        session_id=row.session_id,
        image_url=row.image_url,
        prompt=row.prompt,
        metadata_url=row.metadata_url,
        tx_hash=row.tx_hash,
        token_id=row.token_id,
        minted=bool(row.minted),
        created_at=to_utc_aware_datetime(row.created_at),
        updated_at=to_utc_aware_datetime(row.updated_at),
    )


def _to_task_view(row: FlowerTask) -> TaskView:
    return TaskView(
        task_id=row.task_id,
        flower_id=row.flower_id,
        status=TaskStatus(row.status),
        retry_count=row.retry_count,
        max_retries=row.max_retries,
        failure_class=FailureClass(row.failure_class) if row.failure_class is not None else None,
        error=row.error,
        created_at=to_utc_aware_datetime(row.created_at),
        started_at=to_optional_aware(row.started_at),
        completed_at=to_optional_aware(row.completed_at),
        updated_at=to_utc_aware_datetime(row.updated_at),
    )
