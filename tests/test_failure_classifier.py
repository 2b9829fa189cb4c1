from __future__ import annotations

import allure
import pytest

from zengarden.clients.base import ConfigurationError, GeneratorError
from zengarden.tasks.errors import StageError, TaskStateConflictError
from zengarden.tasks.failure_classifier import classify_stage_failure
from zengarden.tasks.models import FailureClass, PipelineStage

pytestmark = [
    allure.epic("Flower Tasks"),
    allure.feature("Retry Policy"),
]


def _stage_error(message: str, cause: BaseException | None = None) -> StageError:
    error = StageError(PipelineStage.UPLOAD_IMAGE, message)
    error.__cause__ = cause
    return error


def test_stage_error_from_network_failure_is_transient() -> None:
    error = _stage_error("Connection reset by peer", ConnectionError("Connection reset by peer"))

    assert classify_stage_failure(error) == FailureClass.TRANSIENT


def test_stage_error_caused_by_configuration_error() -> None:
    error = _stage_error("boom", ConfigurationError("boom"))

    assert classify_stage_failure(error) == FailureClass.CONFIGURATION


@pytest.mark.parametrize(
    "message",
    [
        "R2 storage not configured: missing R2_PUBLIC_URL",
        "Generation failed: API key not valid. Please pass a valid API key.",
        "An error occurred (InvalidAccessKeyId) when calling the PutObject operation",
        "An error occurred (NoSuchBucket) when calling the PutObject operation",
        "Client error '401 Unauthorized' for url",
    ],
)
def test_configuration_patterns_in_stage_messages(message: str) -> None:
    assert classify_stage_failure(_stage_error(message)) == FailureClass.CONFIGURATION


def test_explicit_stage_failure_class_wins() -> None:
    error = StageError(
        PipelineStage.GENERATE,
        "timed out",
        failure_class=FailureClass.STALLED,
    )

    assert classify_stage_failure(error) == FailureClass.STALLED


def test_bare_configuration_error() -> None:
    assert classify_stage_failure(ConfigurationError("NFT minting not configured")) == (
        FailureClass.CONFIGURATION
    )


def test_errors_outside_stages_are_unexpected() -> None:
    assert classify_stage_failure(TaskStateConflictError("moved")) == FailureClass.UNEXPECTED
    assert classify_stage_failure(GeneratorError("Relay returned no text")) == (
        FailureClass.UNEXPECTED
    )
