"""HTTP client for the text/image generation relay."""

from __future__ import annotations

import base64
import binascii
import logging
from typing import Any

import httpx

from zengarden.clients.base import (
    ConfigurationError,
    GeneratedFlower,
    GeneratedImage,
    Generator,
    GeneratorError,
)
from zengarden.clients.prompts import build_meta_prompt

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_SECONDS = 120.0
DEFAULT_MIME_TYPE = "image/png"


class RelayGenerator:
    """Generation relay client speaking the ``/generate`` JSON protocol."""

    def __init__(
        self,
        *,
        relay_url: str,
        api_key: str,
        timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self._relay_url = relay_url.rstrip("/")
        self._api_key = api_key
        self._client = httpx.Client(
            timeout=httpx.Timeout(timeout_seconds, connect=10.0),
            transport=transport,
        )

    def generate_text(self, prompt: str, *, model: str) -> str:
        payload = self._post(
            "/generate/text",
            {"prompt": prompt, "modelId": model, "thinkingBudget": 0},
        )
        text = payload.get("text")
        if not isinstance(text, str) or not text.strip():
            raise GeneratorError("Relay returned no text")
        return text.strip()

    def generate_image(
        self,
        prompt: str,
        *,
        model: str,
        aspect_ratio: str,
        image_size: str,
    ) -> GeneratedImage:
        payload = self._post(
            "/generate",
            {
                "prompt": prompt,
                "modelId": model,
                "aspectRatio": aspect_ratio,
                "imageSize": image_size,
            },
        )
        encoded = payload.get("imageBase64")
        if not isinstance(encoded, str) or not encoded:
            raise GeneratorError("Relay returned no image data")
        try:
            image_bytes = base64.b64decode(encoded, validate=True)
        except (binascii.Error, ValueError) as exc:
            raise GeneratorError(f"Relay returned malformed image data: {exc}") from exc
        mime_type = payload.get("mimeType") or DEFAULT_MIME_TYPE
        return GeneratedImage(image_bytes=image_bytes, mime_type=str(mime_type))

    def _post(self, path: str, body: dict[str, Any]) -> dict[str, Any]:
        if not self._api_key:
            raise ConfigurationError("GEMINI_API_KEY is not configured")
        url = f"{self._relay_url}{path}"
        response = self._client.post(url, json={"apiKey": self._api_key, **body})
        if response.status_code in {401, 403}:
            raise ConfigurationError(
                f"Relay rejected credentials: HTTP {response.status_code}",
            )
        response.raise_for_status()
        payload = response.json()
        if not isinstance(payload, dict):
            raise GeneratorError(f"Relay returned unexpected payload type from {path}")
        if not payload.get("success"):
            error = payload.get("error") or "unknown relay error"
            raise GeneratorError(f"Generation failed: {error}")
        return payload

    def close(self) -> None:
        self._client.close()

    def __enter__(self) -> RelayGenerator:
        return self

    def __exit__(self, *_: object) -> None:
        self.close()


def generate_flower(  # noqa: PLR0913
    generator: Generator,
    *,
    reason: str,
    duration_seconds: int,
    text_model: str,
    image_model: str,
    aspect_ratio: str = "1:1",
    image_size: str = "1K",
) -> GeneratedFlower:
    """Ask the text model for an image prompt, then render the flower from it."""

    meta_prompt = build_meta_prompt(reason, duration_seconds)
    image_prompt = generator.generate_text(meta_prompt, model=text_model)
    logger.debug("Image prompt for %r: %s", reason, image_prompt)
    image = generator.generate_image(
        image_prompt,
        model=image_model,
        aspect_ratio=aspect_ratio,
        image_size=image_size,
    )
    return GeneratedFlower(
        image_bytes=image.image_bytes,
        mime_type=image.mime_type,
        prompt=image_prompt,
    )
