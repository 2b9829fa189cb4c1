"""SQLModel ORM tables for the flower task store."""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import Column, DateTime, ForeignKey, Index, Text, text
from sqlmodel import Field, SQLModel


class AppUser(SQLModel, table=True):
    __tablename__ = "users"  # type: ignore[bad-override]

    user_id: str = Field(primary_key=True)
    address: str | None = Field(default=None, index=True)
    display_name: str = Field(default="")
    total_flowers: int = Field(default=0, sa_column_kwargs={"server_default": text("0")})
    created_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))


class FocusSession(SQLModel, table=True):
    __tablename__ = "focus_sessions"  # type: ignore[bad-override]

    session_id: str = Field(primary_key=True)
    user_id: str = Field(
        sa_column=Column(
            ForeignKey("users.user_id", ondelete="CASCADE"),
            nullable=False,
            index=True,
        ),
    )
    reason: str = Field(sa_column=Column(Text, nullable=False))
    duration_seconds: int
    status: str = Field(index=True)
    created_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))


class Flower(SQLModel, table=True):
    __tablename__ = "flowers"  # type: ignore[bad-override]

    flower_id: str = Field(primary_key=True)
    user_id: str = Field(
        sa_column=Column(
            ForeignKey("users.user_id", ondelete="CASCADE"),
            nullable=False,
            index=True,
        ),
    )
    session_id: str = Field(
        sa_column=Column(
            ForeignKey("focus_sessions.session_id", ondelete="CASCADE"),
            nullable=False,
            unique=True,
        ),
    )
    image_url: str | None = None
    prompt: str | None = Field(default=None, sa_column=Column(Text))
    metadata_url: str | None = None
    tx_hash: str | None = None
    token_id: str | None = None
    minted: bool = Field(default=False, sa_column_kwargs={"server_default": text("0")})
    created_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))
    updated_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))


class FlowerTask(SQLModel, table=True):
    __tablename__ = "flower_tasks"  # type: ignore[bad-override]
    __table_args__ = (Index("idx_flower_tasks_queue", "status", "created_at"),)

    task_id: str = Field(primary_key=True)
    flower_id: str = Field(
        sa_column=Column(
            ForeignKey("flowers.flower_id", ondelete="CASCADE"),
            nullable=False,
            unique=True,
        ),
    )
    status: str
    retry_count: int = Field(default=0)
    max_retries: int = Field(default=3)
    failure_class: str | None = None
    error: str | None = Field(default=None, sa_column=Column(Text))
    created_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))
    started_at: datetime | None = Field(default=None, sa_column=Column(DateTime(timezone=True)))
    completed_at: datetime | None = Field(
        default=None,
        sa_column=Column(DateTime(timezone=True)),
    )
    updated_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))


class FlowerTaskEvent(SQLModel, table=True):
    __tablename__ = "flower_task_events"  # type: ignore[bad-override]
    __table_args__ = (Index("idx_flower_task_events_task_time", "task_id", "created_at"),)

    id: int | None = Field(default=None, primary_key=True)
    task_id: str = Field(
        sa_column=Column(
            ForeignKey("flower_tasks.task_id", ondelete="CASCADE"),
            nullable=False,
        ),
    )
    event_type: str
    status_from: str | None = None
    status_to: str | None = None
    details_json: str | None = Field(default=None, sa_column=Column(Text))
    created_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))
