"""Domain models for the flower task queue and pipeline."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any


class TaskStatus(str, Enum):
    """Durable task lifecycle states."""

    PENDING = "pending"
    GENERATING = "generating"
    UPLOADING = "uploading"
    MINTING = "minting"
    COMPLETED = "completed"
    FAILED = "failed"


IN_FLIGHT_STATUSES = frozenset(
    {TaskStatus.GENERATING, TaskStatus.UPLOADING, TaskStatus.MINTING},
)
TERMINAL_STATUSES = frozenset({TaskStatus.COMPLETED, TaskStatus.FAILED})


class FailureClass(str, Enum):
    """Normalized failure classes used by retry policy."""

    TRANSIENT = "transient"
    CONFIGURATION = "configuration"
    STALLED = "stalled"
    UNEXPECTED = "unexpected"


class PipelineStage(str, Enum):
    GENERATE = "generate"
    UPLOAD_IMAGE = "upload_image"
    UPLOAD_METADATA = "upload_metadata"
    MINT = "mint"


class SessionStatus(str, Enum):
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    INTERRUPTED = "interrupted"


@dataclass(slots=True)
class UserView:
    user_id: str
    address: str | None
    display_name: str
    total_flowers: int
    created_at: datetime


@dataclass(slots=True)
class FocusSessionView:
    session_id: str
    user_id: str
    reason: str
    duration_seconds: int
    status: SessionStatus
    created_at: datetime


@dataclass(slots=True)
class FlowerView:
    """Readable flower artifact view."""

    flower_id: str
    user_id: str
    session_id: str
    image_url: str | None
    prompt: str | None
    metadata_url: str | None
    tx_hash: str | None
    token_id: str | None
    minted: bool
    created_at: datetime
    updated_at: datetime


@dataclass(slots=True)
class TaskView:
    """Readable task view for CLI, service and dispatcher logic."""

    task_id: str
    flower_id: str
    status: TaskStatus
    retry_count: int
    max_retries: int
    failure_class: FailureClass | None
    error: str | None
    created_at: datetime
    started_at: datetime | None
    completed_at: datetime | None
    updated_at: datetime


@dataclass(slots=True)
class TaskEventView:
    """Task event entry for audit trail."""

    event_id: int
    task_id: str
    event_type: str
    status_from: TaskStatus | None
    status_to: TaskStatus | None
    created_at: datetime
    details: dict[str, Any] = field(default_factory=dict)


@dataclass(slots=True)
class TaskDetails:
    """Task with its flower and event stream."""

    task: TaskView
    flower: FlowerView
    events: list[TaskEventView]


@dataclass(slots=True)
class TaskContext:
    """Everything the pipeline needs to process one claimed task."""

    task: TaskView
    flower: FlowerView
    reason: str
    duration_seconds: int
    wallet_address: str | None


@dataclass(slots=True)
class FlowerWithTask:
    flower: FlowerView
    task: TaskView | None
