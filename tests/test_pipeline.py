from __future__ import annotations

import re
from datetime import UTC, datetime

import allure
import pytest

from zengarden.clients.base import ConfigurationError, MintError
from zengarden.tasks.errors import StageError
from zengarden.tasks.failure_classifier import classify_stage_failure
from zengarden.tasks.models import (
    FailureClass,
    FocusSessionView,
    PipelineStage,
    TaskStatus,
    TaskView,
)
from zengarden.tasks.pipeline import PipelineRunner, build_flower_metadata, image_extension
from zengarden.tasks.repository import FlowerTaskRepository

pytestmark = [
    allure.epic("Flower Tasks"),
    allure.feature("Pipeline Stages"),
]

FIXED_MS = int(datetime(2026, 10, 1, 12, 0, tzinfo=UTC).timestamp() * 1000)


@pytest.fixture()
def claimed_task(
    repository: FlowerTaskRepository,
    focus_session: FocusSessionView,
) -> TaskView:
    repository.create_flower_task(
        user_id="user-1",
        session_id=focus_session.session_id,
        max_retries=3,
    )
    task = repository.claim_next_pending_task()
    assert task is not None
    return task


def test_pipeline_runs_all_stages_and_completes(
    repository: FlowerTaskRepository,
    pipeline: PipelineRunner,
    claimed_task: TaskView,
    fake_generator,
    fake_storage,
    fake_minter,
) -> None:
    outcome = pipeline.run(claimed_task)

    assert outcome.minted is True
    assert outcome.tx_hash == "0xfeedbeef"
    assert outcome.token_id == "42"

    [image_key] = fake_storage.objects
    [metadata_key] = fake_storage.documents
    assert re.fullmatch(rf"flowers/user-1/{FIXED_MS}-[0-9a-f]{{8}}\.png", image_key)
    assert re.fullmatch(rf"metadata/user-1/{FIXED_MS}-[0-9a-f]{{8}}\.json", metadata_key)
    assert fake_storage.objects[image_key][1] == "image/png"

    meta_prompt, text_model = fake_generator.text_calls[0]
    assert 'Focus Reason: "Write the quarterly report"' in meta_prompt
    assert "Focus Duration: 1500 seconds" in meta_prompt
    assert text_model == "gemini-3-flash-preview"
    assert fake_generator.image_calls[0]["prompt"] == fake_generator.image_prompt
    assert fake_generator.image_calls[0]["aspect_ratio"] == "1:1"

    metadata = fake_storage.documents[metadata_key]
    assert fake_minter.calls == [
        {
            "recipient": "0x5B38Da6a701c568545dCfcB03FcB875f56beddC4",
            "metadata_url": outcome.metadata_url,
            "display_name": metadata["name"],
        },
    ]

    flower = repository.get_flower(flower_id=outcome.flower_id)
    task = repository.get_task(task_id=claimed_task.task_id)
    user = repository.get_user(user_id="user-1")
    assert flower is not None
    assert task is not None
    assert user is not None
    assert flower.prompt == fake_generator.image_prompt
    assert flower.image_url == f"https://cdn.example.com/{image_key}"
    assert flower.metadata_url == f"https://cdn.example.com/{metadata_key}"
    assert flower.minted is True
    assert flower.tx_hash == "0xfeedbeef"
    assert task.status == TaskStatus.COMPLETED
    assert user.total_flowers == 1


def test_mint_failure_still_completes_task(
    repository: FlowerTaskRepository,
    pipeline: PipelineRunner,
    claimed_task: TaskView,
    fake_minter,
) -> None:
    fake_minter.error = MintError("execution reverted")

    outcome = pipeline.run(claimed_task)

    flower = repository.get_flower(flower_id=outcome.flower_id)
    task = repository.get_task(task_id=claimed_task.task_id)
    assert flower is not None
    assert task is not None
    assert task.status == TaskStatus.COMPLETED
    assert task.error is None
    assert flower.minted is False
    assert flower.tx_hash is None
    assert flower.image_url is not None
    assert flower.metadata_url is not None
    assert outcome.mint_skip_reason == "mint failed: execution reverted"

    details = repository.get_task_details(task_id=claimed_task.task_id)
    assert details is not None
    assert "mint_skipped" in [event.event_type for event in details.events]


def test_mint_is_skipped_without_wallet_address(
    repository: FlowerTaskRepository,
    pipeline: PipelineRunner,
    claimed_task: TaskView,
    fake_minter,
) -> None:
    repository.upsert_user(user_id="user-1", address=None, display_name="Ada")

    outcome = pipeline.run(claimed_task)

    assert fake_minter.calls == []
    assert outcome.minted is False
    assert outcome.mint_skip_reason == "no wallet address"
    task = repository.get_task(task_id=claimed_task.task_id)
    assert task is not None
    assert task.status == TaskStatus.COMPLETED


def test_image_upload_failure_raises_stage_error_after_saving_prompt(
    repository: FlowerTaskRepository,
    pipeline: PipelineRunner,
    claimed_task: TaskView,
    fake_generator,
    fake_storage,
    fake_minter,
) -> None:
    fake_storage.object_error = ConnectionError("upload timed out")

    with pytest.raises(StageError, match="upload timed out") as caught:
        pipeline.run(claimed_task)

    assert caught.value.stage == PipelineStage.UPLOAD_IMAGE
    assert isinstance(caught.value.__cause__, ConnectionError)
    assert fake_minter.calls == []

    task = repository.get_task(task_id=claimed_task.task_id)
    context = repository.get_pipeline_context(task_id=claimed_task.task_id)
    assert task is not None
    assert task.status == TaskStatus.UPLOADING
    assert context.flower.prompt == fake_generator.image_prompt
    assert context.flower.image_url is None


def test_metadata_upload_failure_keeps_image_url(
    repository: FlowerTaskRepository,
    pipeline: PipelineRunner,
    claimed_task: TaskView,
    fake_storage,
) -> None:
    fake_storage.json_error = TimeoutError("read timeout")

    with pytest.raises(StageError) as caught:
        pipeline.run(claimed_task)

    assert caught.value.stage == PipelineStage.UPLOAD_METADATA
    task = repository.get_task(task_id=claimed_task.task_id)
    context = repository.get_pipeline_context(task_id=claimed_task.task_id)
    assert task is not None
    assert task.status == TaskStatus.MINTING
    assert context.flower.image_url is not None
    assert context.flower.metadata_url is None


def test_generator_configuration_error_is_classified(
    pipeline: PipelineRunner,
    claimed_task: TaskView,
    fake_generator,
) -> None:
    fake_generator.text_error = ConfigurationError("GEMINI_API_KEY is not configured")

    with pytest.raises(StageError) as caught:
        pipeline.run(claimed_task)

    assert caught.value.stage == PipelineStage.GENERATE
    assert str(caught.value) == "GEMINI_API_KEY is not configured"
    assert classify_stage_failure(caught.value) == FailureClass.CONFIGURATION
    assert fake_generator.image_calls == []


def test_build_flower_metadata_shape(
    repository: FlowerTaskRepository,
    focus_session: FocusSessionView,
) -> None:
    _, task, _ = repository.create_flower_task(
        user_id="user-1",
        session_id=focus_session.session_id,
        max_retries=3,
    )
    context = repository.get_pipeline_context(task_id=task.task_id)
    now = datetime(2026, 10, 1, 12, 0, tzinfo=UTC)

    metadata = build_flower_metadata(context, image_url="https://cdn.example.com/a.png", now=now)

    assert metadata["name"] == f"Zen Flower #{FIXED_MS}"
    assert "25 minutes" in metadata["description"]
    assert "Write the quarterly report" in metadata["description"]
    assert metadata["image"] == "https://cdn.example.com/a.png"
    assert metadata["attributes"] == [
        {"trait_type": "Focus Reason", "value": "Write the quarterly report"},
        {"trait_type": "Duration", "value": "1500 seconds"},
        {"trait_type": "Date", "value": "2026-10-01"},
    ]


@pytest.mark.parametrize(
    ("mime_type", "extension"),
    [
        ("image/png", "png"),
        ("image/jpeg", "jpg"),
        ("image/png; charset=binary", "png"),
        ("application/x-unknown-flower", "png"),
    ],
)
def test_image_extension(mime_type: str, extension: str) -> None:
    assert image_extension(mime_type) == extension
