"""Four-stage flower pipeline executed for one claimed task."""

from __future__ import annotations

import logging
import mimetypes
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any
from uuid import uuid4

from zengarden.clients.base import (
    GeneratedFlower,
    Generator,
    Minter,
    MintResult,
    ObjectStorage,
)
from zengarden.clients.generator import generate_flower
from zengarden.storage.common import utc_now
from zengarden.tasks.errors import StageError, TaskStateConflictError
from zengarden.tasks.models import PipelineStage, TaskContext, TaskStatus, TaskView
from zengarden.tasks.repository import FlowerTaskRepository

logger = logging.getLogger(__name__)

DEFAULT_IMAGE_EXTENSION = "png"


class StageResultKind(str, Enum):
    OK = "ok"
    RETRYABLE = "retryable"
    SKIPPED = "skipped"


@dataclass(slots=True, frozen=True)
class StageResult:
    """Outcome of one pipeline stage: a value, a retryable error or a skip."""

    kind: StageResultKind
    value: Any = None
    error: BaseException | None = None
    reason: str | None = None

    @classmethod
    def ok(cls, value: Any = None) -> StageResult:
        return cls(kind=StageResultKind.OK, value=value)

    @classmethod
    def retryable(cls, error: BaseException) -> StageResult:
        return cls(kind=StageResultKind.RETRYABLE, error=error)

    @classmethod
    def skipped(cls, reason: str, error: BaseException | None = None) -> StageResult:
        return cls(kind=StageResultKind.SKIPPED, reason=reason, error=error)


@dataclass(slots=True)
class GenerationOptions:
    text_model: str = "gemini-3-flash-preview"
    image_model: str = "gemini-3-pro-image-preview"
    aspect_ratio: str = "1:1"
    image_size: str = "1K"


@dataclass(slots=True)
class PipelineOutcome:
    """Summary of a pipeline run that reached the completed state."""

    task_id: str
    flower_id: str
    image_url: str
    metadata_url: str
    minted: bool
    tx_hash: str | None = None
    token_id: str | None = None
    mint_skip_reason: str | None = None


class PipelineRunner:
    """Run generate, upload image, upload metadata and mint for one task.

    Failures in the first three stages raise ``StageError`` to the caller,
    leaving the task in its current in-flight status for the retry policy.
    Mint problems never propagate: the task completes with ``minted=False``.
    """

    def __init__(  # noqa: PLR0913
        self,
        *,
        repository: FlowerTaskRepository,
        generator: Generator,
        storage: ObjectStorage,
        minter: Minter,
        options: GenerationOptions | None = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.repository = repository
        self.generator = generator
        self.storage = storage
        self.minter = minter
        self.options = options or GenerationOptions()
        self.clock = clock

    def run(self, task: TaskView) -> PipelineOutcome:
        context = self.repository.get_pipeline_context(task_id=task.task_id)
        flower_id = context.flower.flower_id

        generated: GeneratedFlower = self._unwrap(
            PipelineStage.GENERATE,
            self._generate(context),
        )
        self.repository.save_flower_prompt(flower_id=flower_id, prompt=generated.prompt)

        self._advance(task, TaskStatus.GENERATING, TaskStatus.UPLOADING)
        image_url: str = self._unwrap(
            PipelineStage.UPLOAD_IMAGE,
            self._upload_image(context, generated),
        )
        self.repository.save_flower_image(flower_id=flower_id, image_url=image_url)

        self._advance(task, TaskStatus.UPLOADING, TaskStatus.MINTING)
        metadata = build_flower_metadata(context, image_url=image_url, now=self.clock())
        metadata_url: str = self._unwrap(
            PipelineStage.UPLOAD_METADATA,
            self._upload_metadata(context, metadata),
        )
        self.repository.save_flower_metadata(flower_id=flower_id, metadata_url=metadata_url)

        mint_result = self._mint(context, metadata_url=metadata_url, display_name=metadata["name"])
        outcome = PipelineOutcome(
            task_id=task.task_id,
            flower_id=flower_id,
            image_url=image_url,
            metadata_url=metadata_url,
            minted=mint_result.kind == StageResultKind.OK,
        )
        if mint_result.kind == StageResultKind.OK:
            minted: MintResult = mint_result.value
            self.repository.record_mint(
                flower_id=flower_id,
                tx_hash=minted.tx_ref,
                token_id=minted.token_id,
                metadata_url=metadata_url,
            )
            outcome.tx_hash = minted.tx_ref
            outcome.token_id = minted.token_id
        else:
            outcome.mint_skip_reason = mint_result.reason
            self.repository.add_task_event(
                task_id=task.task_id,
                event_type="mint_skipped",
                details={"reason": mint_result.reason or ""},
            )

        if not self.repository.complete_task(
            task_id=task.task_id,
            expected_retry_count=task.retry_count,
        ):
            raise TaskStateConflictError(
                f"Task {task.task_id} left minting status before completion.",
            )
        return outcome

    def _generate(self, context: TaskContext) -> StageResult:
        try:
            return StageResult.ok(
                generate_flower(
                    self.generator,
                    reason=context.reason,
                    duration_seconds=context.duration_seconds,
                    text_model=self.options.text_model,
                    image_model=self.options.image_model,
                    aspect_ratio=self.options.aspect_ratio,
                    image_size=self.options.image_size,
                ),
            )
        except Exception as exc:  # noqa: BLE001
            return StageResult.retryable(exc)

    def _upload_image(self, context: TaskContext, generated: GeneratedFlower) -> StageResult:
        extension = image_extension(generated.mime_type)
        key = f"flowers/{context.flower.user_id}/{self._object_name()}.{extension}"
        try:
            return StageResult.ok(
                self.storage.put_object(
                    generated.image_bytes,
                    key=key,
                    content_type=generated.mime_type,
                ),
            )
        except Exception as exc:  # noqa: BLE001
            return StageResult.retryable(exc)

    def _upload_metadata(self, context: TaskContext, metadata: dict[str, Any]) -> StageResult:
        key = f"metadata/{context.flower.user_id}/{self._object_name()}.json"
        try:
            return StageResult.ok(self.storage.put_json(metadata, key=key))
        except Exception as exc:  # noqa: BLE001
            return StageResult.retryable(exc)

    def _mint(self, context: TaskContext, *, metadata_url: str, display_name: str) -> StageResult:
        if not context.wallet_address:
            logger.info("Task %s: owner has no wallet address, mint skipped", context.task.task_id)
            return StageResult.skipped("no wallet address")
        try:
            return StageResult.ok(
                self.minter.mint(
                    context.wallet_address,
                    metadata_url=metadata_url,
                    display_name=display_name,
                ),
            )
        except Exception as exc:  # noqa: BLE001
            logger.warning(
                "Task %s: mint failed, completing without NFT: %s",
                context.task.task_id,
                exc,
            )
            return StageResult.skipped(f"mint failed: {exc}", error=exc)

    def _advance(self, task: TaskView, from_status: TaskStatus, to_status: TaskStatus) -> None:
        if not self.repository.advance_task(
            task_id=task.task_id,
            from_status=from_status,
            to_status=to_status,
            expected_retry_count=task.retry_count,
        ):
            raise TaskStateConflictError(
                f"Task {task.task_id} is no longer {from_status.value} under this claim; "
                f"cannot move to {to_status.value}.",
            )

    def _unwrap(self, stage: PipelineStage, result: StageResult) -> Any:
        if result.kind == StageResultKind.OK:
            return result.value
        error = result.error
        message = str(error).strip() if error is not None else ""
        raise StageError(stage, message or f"{stage.value} stage failed") from error

    def _object_name(self) -> str:
        epoch_ms = int(self.clock().timestamp() * 1000)
        return f"{epoch_ms}-{uuid4().hex[:8]}"


def build_flower_metadata(
    context: TaskContext,
    *,
    image_url: str,
    now: datetime,
) -> dict[str, Any]:
    """NFT metadata document in the common ERC-721 JSON shape."""

    epoch_ms = int(now.timestamp() * 1000)
    minutes = context.duration_seconds // 60
    return {
        "name": f"Zen Flower #{epoch_ms}",
        "description": (
            f'A flower grown from {minutes} minutes of focus on "{context.reason}".'
        ),
        "image": image_url,
        "attributes": [
            {"trait_type": "Focus Reason", "value": context.reason},
            {"trait_type": "Duration", "value": f"{context.duration_seconds} seconds"},
            {"trait_type": "Date", "value": now.date().isoformat()},
        ],
    }


def image_extension(mime_type: str) -> str:
    guessed = mimetypes.guess_extension(mime_type.split(";", 1)[0].strip())
    if not guessed:
        return DEFAULT_IMAGE_EXTENSION
    extension = guessed.lstrip(".")
    return "jpg" if extension in {"jpe", "jpeg"} else extension
