"""CLI entrypoint for zengarden."""

import logging
from collections.abc import Callable
from pathlib import Path

import rich_click as click

from zengarden import __version__
from zengarden.tasks.controllers import (
    AddSessionCommand,
    AddUserCommand,
    FlowerCliController,
    GenerateFlowerCommand,
    InspectTaskCommand,
    ListFlowersCommand,
    ListTasksCommand,
    RetryTaskCommand,
    WorkerCommand,
)
from zengarden.tasks.errors import (
    AccessDeniedError,
    SessionNotCompletedError,
    SessionNotFoundError,
    TaskNotFoundError,
    TaskNotRetryableError,
    TaskStateConflictError,
)

click.rich_click.USE_MARKDOWN = True
CONTROLLER = FlowerCliController()

_CLIENT_ERRORS = (
    AccessDeniedError,
    SessionNotCompletedError,
    SessionNotFoundError,
    TaskNotFoundError,
    TaskNotRetryableError,
    TaskStateConflictError,
    ValueError,
)

DB_PATH_OPTION = click.option(
    "--db-path",
    type=click.Path(path_type=Path),
    default=None,
    help="SQLite DB path.",
)


@click.group()
@click.version_option(version=__version__, prog_name="zengarden")
def zengarden() -> None:
    """Zen Garden flower generation CLI."""


@zengarden.group()
def users() -> None:
    """User records (wallet addresses)."""


@users.command("add")
@DB_PATH_OPTION
@click.option("--user-id", required=True, help="User id.")
@click.option("--address", default=None, help="Wallet address that receives minted flowers.")
@click.option("--display-name", default="", help="Display name.")
def users_add(
    db_path: Path | None,
    user_id: str,
    address: str | None,
    display_name: str,
) -> None:
    """Create or update a user."""

    _emit_lines(
        _run(
            lambda: CONTROLLER.add_user(
                AddUserCommand(
                    db_path=db_path,
                    user_id=user_id,
                    address=address,
                    display_name=display_name,
                ),
            ),
        ),
    )


@zengarden.group()
def sessions() -> None:
    """Focus session records."""


@sessions.command("add")
@DB_PATH_OPTION
@click.option("--user-id", required=True, help="Owning user id.")
@click.option("--reason", required=True, help="What the user focused on.")
@click.option(
    "--duration-seconds",
    type=click.IntRange(min=0),
    required=True,
    help="Focus duration in seconds.",
)
@click.option(
    "--status",
    type=click.Choice(["completed", "in_progress", "interrupted"], case_sensitive=False),
    default="completed",
    show_default=True,
    help="Session status.",
)
@click.option("--session-id", default=None, help="Explicit session id (generated if omitted).")
def sessions_add(  # noqa: PLR0913
    db_path: Path | None,
    user_id: str,
    reason: str,
    duration_seconds: int,
    status: str,
    session_id: str | None,
) -> None:
    """Record a focus session."""

    _emit_lines(
        _run(
            lambda: CONTROLLER.add_session(
                AddSessionCommand(
                    db_path=db_path,
                    user_id=user_id,
                    reason=reason,
                    duration_seconds=duration_seconds,
                    status=status,
                    session_id=session_id,
                ),
            ),
        ),
    )


@zengarden.group()
def flowers() -> None:
    """Flower generation requests."""


@flowers.command("generate")
@DB_PATH_OPTION
@click.option("--user-id", required=True, help="Requesting user id.")
@click.option("--session-id", required=True, help="Completed focus session id.")
@click.option(
    "--max-retries",
    type=click.IntRange(min=1),
    default=None,
    help="Automatic attempt budget; defaults to ZENGARDEN_DEFAULT_MAX_RETRIES.",
)
def flowers_generate(
    db_path: Path | None,
    user_id: str,
    session_id: str,
    max_retries: int | None,
) -> None:
    """Queue flower generation for a focus session (idempotent per session)."""

    _emit_lines(
        _run(
            lambda: CONTROLLER.generate(
                GenerateFlowerCommand(
                    db_path=db_path,
                    user_id=user_id,
                    session_id=session_id,
                    max_retries=max_retries,
                ),
            ),
        ),
    )


@flowers.command("list")
@DB_PATH_OPTION
@click.option("--user-id", required=True, help="Owner user id.")
@click.option(
    "--limit",
    type=click.IntRange(min=1, max=500),
    default=100,
    show_default=True,
    help="Max flowers to print.",
)
def flowers_list(db_path: Path | None, user_id: str, limit: int) -> None:
    """List a user's flowers with task status."""

    _emit_lines(
        _run(
            lambda: CONTROLLER.list_flowers(
                ListFlowersCommand(db_path=db_path, user_id=user_id, limit=limit),
            ),
        ),
    )


@zengarden.group()
def tasks() -> None:
    """Flower task queue."""


@tasks.command("list")
@DB_PATH_OPTION
@click.option(
    "--status",
    type=click.Choice(
        ["pending", "generating", "uploading", "minting", "completed", "failed"],
        case_sensitive=False,
    ),
    default=None,
    help="Optional status filter.",
)
@click.option(
    "--limit",
    type=click.IntRange(min=1, max=500),
    default=50,
    show_default=True,
    help="Max tasks to print.",
)
def tasks_list(db_path: Path | None, status: str | None, limit: int) -> None:
    """List flower tasks."""

    _emit_lines(
        _run(
            lambda: CONTROLLER.list_tasks(
                ListTasksCommand(db_path=db_path, status=status, limit=limit),
            ),
        ),
    )


@tasks.command("show")
@DB_PATH_OPTION
@click.argument("task_id")
@click.option("--user-id", default=None, help="Reject tasks not owned by this user.")
def tasks_show(db_path: Path | None, task_id: str, user_id: str | None) -> None:
    """Inspect one task with its flower and event history."""

    _emit_lines(
        _run(
            lambda: CONTROLLER.inspect_task(
                InspectTaskCommand(db_path=db_path, task_id=task_id, user_id=user_id),
            ),
        ),
    )


@tasks.command("retry")
@DB_PATH_OPTION
@click.argument("task_id")
@click.option("--user-id", default=None, help="Reject tasks not owned by this user.")
def tasks_retry(db_path: Path | None, task_id: str, user_id: str | None) -> None:
    """Manually re-queue a failed task."""

    _emit_lines(
        _run(
            lambda: CONTROLLER.retry_task(
                RetryTaskCommand(db_path=db_path, task_id=task_id, user_id=user_id),
            ),
        ),
    )


@zengarden.command("worker")
@DB_PATH_OPTION
@click.option(
    "--once/--loop",
    default=False,
    show_default=True,
    help="Run a single dispatcher tick or poll until interrupted.",
)
@click.option(
    "--max-ticks",
    type=click.IntRange(min=1),
    default=None,
    help="Optional cap for dispatcher ticks in loop mode.",
)
@click.option(
    "--log-level",
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"], case_sensitive=False),
    default="INFO",
    show_default=True,
    help="Root logger level.",
)
def worker(db_path: Path | None, once: bool, max_ticks: int | None, log_level: str) -> None:
    """Run the flower task dispatcher."""

    logging.basicConfig(
        level=log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    _emit_lines(
        _run(
            lambda: CONTROLLER.run_worker(
                WorkerCommand(db_path=db_path, once=once, max_ticks=max_ticks),
            ),
        ),
    )


def _run(action: Callable[[], list[str]]) -> list[str]:
    try:
        return action()
    except _CLIENT_ERRORS as error:
        raise click.ClickException(str(error)) from error


def _emit_lines(lines: list[str]) -> None:
    for line in lines:
        click.echo(line)


if __name__ == "__main__":  # pragma: no cover
    zengarden()
