"""Shared test fixtures."""

from __future__ import annotations

from collections.abc import Iterator
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

import pytest

from zengarden.clients.base import GeneratedImage, MintResult
from zengarden.tasks.models import FocusSessionView
from zengarden.tasks.pipeline import PipelineRunner
from zengarden.tasks.repository import FlowerTaskRepository

WALLET_ADDRESS = "0x5B38Da6a701c568545dCfcB03FcB875f56beddC4"
FIXED_NOW = datetime(2026, 10, 1, 12, 0, tzinfo=UTC)
PNG_BYTES = b"\x89PNG\r\n\x1a\nfake-flower"


class FakeGenerator:
    """Records prompts and returns canned generation results."""

    def __init__(self) -> None:
        self.text_calls: list[tuple[str, str]] = []
        self.image_calls: list[dict[str, str]] = []
        self.text_error: BaseException | None = None
        self.image_error: BaseException | None = None
        self.image_prompt = "A single white lotus on still water, ink wash, soft teal and gold."
        self.mime_type = "image/png"

    def generate_text(self, prompt: str, *, model: str) -> str:
        self.text_calls.append((prompt, model))
        if self.text_error is not None:
            raise self.text_error
        return self.image_prompt

    def generate_image(
        self,
        prompt: str,
        *,
        model: str,
        aspect_ratio: str,
        image_size: str,
    ) -> GeneratedImage:
        self.image_calls.append(
            {
                "prompt": prompt,
                "model": model,
                "aspect_ratio": aspect_ratio,
                "image_size": image_size,
            },
        )
        if self.image_error is not None:
            raise self.image_error
        return GeneratedImage(image_bytes=PNG_BYTES, mime_type=self.mime_type)


class FakeStorage:
    """In-memory object store returning CDN-style public URLs."""

    def __init__(self, base_url: str = "https://cdn.example.com") -> None:
        self.base_url = base_url
        self.objects: dict[str, tuple[bytes, str]] = {}
        self.documents: dict[str, dict[str, Any]] = {}
        self.object_error: BaseException | None = None
        self.json_error: BaseException | None = None

    def put_object(self, data: bytes, *, key: str, content_type: str) -> str:
        if self.object_error is not None:
            raise self.object_error
        self.objects[key] = (data, content_type)
        return f"{self.base_url}/{key}"

    def put_json(self, document: dict[str, Any], *, key: str) -> str:
        if self.json_error is not None:
            raise self.json_error
        self.documents[key] = document
        return f"{self.base_url}/{key}"


class FakeMinter:
    def __init__(self) -> None:
        self.calls: list[dict[str, str]] = []
        self.error: BaseException | None = None

    def mint(self, recipient: str, *, metadata_url: str, display_name: str) -> MintResult:
        self.calls.append(
            {
                "recipient": recipient,
                "metadata_url": metadata_url,
                "display_name": display_name,
            },
        )
        if self.error is not None:
            raise self.error
        return MintResult(tx_ref="0xfeedbeef", token_id="42")


@pytest.fixture()
def db_path(tmp_path: Path) -> Path:
    return tmp_path / "zengarden.db"


@pytest.fixture()
def repository(db_path: Path) -> Iterator[FlowerTaskRepository]:
    repo = FlowerTaskRepository(db_path)
    repo.init_schema()
    try:
        yield repo
    finally:
        repo.close()


@pytest.fixture()
def focus_session(repository: FlowerTaskRepository) -> FocusSessionView:
    repository.upsert_user(user_id="user-1", address=WALLET_ADDRESS, display_name="Ada")
    return repository.add_focus_session(
        user_id="user-1",
        reason="Write the quarterly report",
        duration_seconds=1_500,
        session_id="session-1",
    )


@pytest.fixture()
def fake_generator() -> FakeGenerator:
    return FakeGenerator()


@pytest.fixture()
def fake_storage() -> FakeStorage:
    return FakeStorage()


@pytest.fixture()
def fake_minter() -> FakeMinter:
    return FakeMinter()


@pytest.fixture()
def pipeline(
    repository: FlowerTaskRepository,
    fake_generator: FakeGenerator,
    fake_storage: FakeStorage,
    fake_minter: FakeMinter,
) -> PipelineRunner:
    return PipelineRunner(
        repository=repository,
        generator=fake_generator,
        storage=fake_storage,
        minter=fake_minter,
        clock=lambda: FIXED_NOW,
    )
