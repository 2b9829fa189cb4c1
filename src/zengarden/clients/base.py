"""Contracts for the remote services consumed by the flower pipeline."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Protocol


class ConfigurationError(RuntimeError):
    """Raised at call time when credentials or endpoints are missing."""


class GeneratorError(RuntimeError):
    """The generation relay reported an unsuccessful call."""


class MintError(RuntimeError):
    """The mint transaction could not be confirmed."""


@dataclass(slots=True)
class GeneratedImage:
    image_bytes: bytes
    mime_type: str


@dataclass(slots=True)
class GeneratedFlower:
    """Output of the generate stage."""

    image_bytes: bytes
    mime_type: str
    prompt: str


@dataclass(slots=True)
class MintResult:
    tx_ref: str
    token_id: str | None


class Generator(Protocol):
    """Text and image generation backend."""

    def generate_text(self, prompt: str, *, model: str) -> str:
        """Return generated text for the prompt."""

    def generate_image(
        self,
        prompt: str,
        *,
        model: str,
        aspect_ratio: str,
        image_size: str,
    ) -> GeneratedImage:
        """Return generated image bytes and MIME type."""


class ObjectStorage(Protocol):
    """Public object storage for images and metadata documents."""

    def put_object(self, data: bytes, *, key: str, content_type: str) -> str:
        """Upload bytes and return the public URL."""

    def put_json(self, document: dict[str, Any], *, key: str) -> str:
        """Upload a JSON document and return the public URL."""


class Minter(Protocol):
    """Chain-specific NFT minting backend."""

    def mint(self, recipient: str, *, metadata_url: str, display_name: str) -> MintResult:
        """Mint one token to ``recipient`` and return its transaction reference."""
