"""Controllers for flower task CLI commands."""

from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path

from zengarden.clients import EvmMinter, R2Storage, RelayGenerator
from zengarden.config import Settings
from zengarden.tasks.dispatcher import Dispatcher
from zengarden.tasks.models import SessionStatus, TaskStatus
from zengarden.tasks.pipeline import GenerationOptions, PipelineRunner
from zengarden.tasks.repository import FlowerTaskRepository
from zengarden.tasks.retry import RetryPolicy
from zengarden.tasks.services import FlowerTaskService, GenerationRequest


@dataclass(slots=True)
class AddUserCommand:
    """CLI input for seeding a user record."""

    db_path: Path | None
    user_id: str
    address: str | None
    display_name: str


@dataclass(slots=True)
class AddSessionCommand:
    """CLI input for seeding a focus session."""

    db_path: Path | None
    user_id: str
    reason: str
    duration_seconds: int
    status: str
    session_id: str | None


@dataclass(slots=True)
class GenerateFlowerCommand:
    db_path: Path | None
    user_id: str
    session_id: str
    max_retries: int | None


@dataclass(slots=True)
class ListFlowersCommand:
    db_path: Path | None
    user_id: str
    limit: int


@dataclass(slots=True)
class ListTasksCommand:
    """CLI input for task listing."""

    db_path: Path | None
    status: str | None
    limit: int


@dataclass(slots=True)
class InspectTaskCommand:
    db_path: Path | None
    task_id: str
    user_id: str | None


@dataclass(slots=True)
class RetryTaskCommand:
    db_path: Path | None
    task_id: str
    user_id: str | None


@dataclass(slots=True)
class WorkerCommand:
    """CLI input for dispatcher execution."""

    db_path: Path | None
    once: bool
    max_ticks: int | None


class FlowerCliController:
    """Coordinates seeding, task API and worker CLI operations."""

    def add_user(self, command: AddUserCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        with _repository(settings) as repository:
            user = repository.upsert_user(
                user_id=command.user_id,
                address=command.address,
                display_name=command.display_name,
            )
        return [f"User saved: user_id={user.user_id} address={user.address or '-'}"]

    def add_session(self, command: AddSessionCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        with _repository(settings) as repository:
            focus_session = repository.add_focus_session(
                user_id=command.user_id,
                reason=command.reason,
                duration_seconds=command.duration_seconds,
                status=SessionStatus(command.status.strip().lower()),
                session_id=command.session_id,
            )
        return [
            f"Focus session saved: session_id={focus_session.session_id} "
            f"status={focus_session.status.value} duration={focus_session.duration_seconds}s",
        ]

    def generate(self, command: GenerateFlowerCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        with _repository(settings) as repository:
            service = _service(repository, settings)
            ticket = service.request_generation(
                GenerationRequest(
                    user_id=command.user_id,
                    session_id=command.session_id,
                    max_retries=command.max_retries,
                ),
            )
        verb = "Task enqueued" if ticket.created else "Task exists"
        return [
            f"{verb}: task_id={ticket.task.task_id} flower_id={ticket.flower.flower_id} "
            f"status={ticket.task.status.value}",
        ]

    def list_flowers(self, command: ListFlowersCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        with _repository(settings) as repository:
            flowers = _service(repository, settings).list_flowers(
                user_id=command.user_id,
                limit=command.limit,
            )

        lines = [f"Flowers: {len(flowers)}"]
        for entry in flowers:
            flower = entry.flower
            status = entry.task.status.value if entry.task is not None else "-"
            lines.append(
                f"  {flower.flower_id} session={flower.session_id} task_status={status} "
                f"minted={flower.minted} image={flower.image_url or '-'}",
            )
        return lines

    def list_tasks(self, command: ListTasksCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        status_filter = _parse_status(command.status)
        with _repository(settings) as repository:
            tasks = repository.list_tasks(status=status_filter, limit=command.limit)

        lines = [f"Tasks: {len(tasks)}"]
        for task in tasks:
            lines.append(
                f"  {task.task_id} flower={task.flower_id} status={task.status.value} "
                f"retries={task.retry_count}/{task.max_retries} "
                f"created_at={task.created_at.isoformat()}",
            )
        return lines

    def inspect_task(self, command: InspectTaskCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        with _repository(settings) as repository:
            details = _service(repository, settings).get_task(
                task_id=command.task_id,
                user_id=command.user_id,
            )

        task = details.task
        flower = details.flower
        lines = [
            f"Task: {task.task_id}",
            f"Status: {task.status.value}",
            f"Retries: {task.retry_count}/{task.max_retries}",
            f"Failure class: {task.failure_class.value if task.failure_class else '-'}",
            f"Error: {task.error or '-'}",
            f"Flower: {flower.flower_id}",
            f"Image: {flower.image_url or '-'}",
            f"Metadata: {flower.metadata_url or '-'}",
            f"Minted: {flower.minted} tx={flower.tx_hash or '-'} token={flower.token_id or '-'}",
            f"Events: {len(details.events)}",
        ]
        for event in details.events:
            lines.append(
                f"  {event.created_at.isoformat()} {event.event_type} "
                f"{event.status_from.value if event.status_from else '-'} -> "
                f"{event.status_to.value if event.status_to else '-'}",
            )
        return lines

    def retry_task(self, command: RetryTaskCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        with _repository(settings) as repository:
            task = _service(repository, settings).retry_task(
                task_id=command.task_id,
                user_id=command.user_id,
            )
        return [f"Task re-queued: {task.task_id} status={task.status.value}"]

    def run_worker(self, command: WorkerCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        settings.validate_for_worker()
        with _repository(settings) as repository, _dispatcher(repository, settings) as dispatcher:
            summary = (
                dispatcher.tick()
                if command.once
                else dispatcher.run_loop(max_ticks=command.max_ticks)
            )

        return [
            "Worker summary: "
            f"processed={summary.processed} completed={summary.completed} "
            f"retried={summary.retried} failed={summary.failed} "
            f"recovered={summary.recovered} superseded={summary.superseded} idle={summary.idle}",
        ]


def _parse_status(value: str | None) -> TaskStatus | None:
    if value is None:
        return None
    return TaskStatus(value.strip().lower())


def _service(repository: FlowerTaskRepository, settings: Settings) -> FlowerTaskService:
    return FlowerTaskService(
        repository=repository,
        default_max_retries=settings.worker.default_max_retries,
    )


@contextmanager
def _dispatcher(repository: FlowerTaskRepository, settings: Settings) -> Iterator[Dispatcher]:
    generator_settings = settings.generator
    storage_settings = settings.storage
    minter_settings = settings.minter
    generator = RelayGenerator(
        relay_url=generator_settings.relay_url,
        api_key=generator_settings.api_key,
        timeout_seconds=generator_settings.timeout_seconds,
    )
    pipeline = PipelineRunner(
        repository=repository,
        generator=generator,
        storage=R2Storage(
            account_id=storage_settings.account_id,
            access_key_id=storage_settings.access_key_id,
            secret_access_key=storage_settings.secret_access_key,
            bucket_name=storage_settings.bucket_name,
            public_url=storage_settings.public_url,
            endpoint_url=storage_settings.endpoint_url,
            timeout_seconds=storage_settings.timeout_seconds,
        ),
        minter=EvmMinter(
            rpc_url=minter_settings.rpc_url,
            private_key=minter_settings.private_key,
            contract_address=minter_settings.contract_address,
            request_timeout_seconds=minter_settings.request_timeout_seconds,
            receipt_timeout_seconds=minter_settings.receipt_timeout_seconds,
        ),
        options=GenerationOptions(
            text_model=generator_settings.text_model,
            image_model=generator_settings.image_model,
            aspect_ratio=generator_settings.aspect_ratio,
            image_size=generator_settings.image_size,
        ),
    )
    try:
        yield Dispatcher(
            repository=repository,
            pipeline=pipeline,
            retry_policy=RetryPolicy(
                fail_fast_on_configuration_error=(
                    settings.worker.fail_fast_on_configuration_error
                ),
            ),
            poll_interval_seconds=settings.worker.poll_interval_seconds,
            stale_task_seconds=settings.worker.stale_task_seconds,
        )
    finally:
        generator.close()


@contextmanager
def _repository(settings: Settings) -> Iterator[FlowerTaskRepository]:
    repository = FlowerTaskRepository(
        db_path=settings.db_path,
        sqlite_busy_timeout_ms=settings.sqlite_busy_timeout_ms,
    )
    repository.init_schema()
    try:
        yield repository
    finally:
        repository.close()
