"""Prompt templates for flower generation."""

from __future__ import annotations

META_PROMPT_TEMPLATE = """You are a creative artist specializing in botanical illustrations.

Based on the following focus session, create a detailed image generation prompt for a unique flower:

Focus Reason: "{reason}"
Focus Duration: {duration_seconds} seconds

Create a prompt (100-150 words) that describes:
1. A specific flower type that metaphorically relates to the focus theme
2. A color palette of 2-3 colors that reflects the mood of the session
3. An art style (watercolor, ink wash, digital painting, or similar)
4. The background and composition
5. Symbolic elements that connect the flower to the focus reason

Requirements:
- A single flower, centered in the frame
- A clean, minimal background
- Zen garden aesthetic
- Calming and peaceful feel
- Square format (1:1 aspect ratio)

Output ONLY the image generation prompt, no explanations."""


def build_meta_prompt(reason: str, duration_seconds: int) -> str:
    """Render the text-model prompt that asks for an image prompt."""

    return META_PROMPT_TEMPLATE.format(
        reason=reason.strip(),
        duration_seconds=duration_seconds,
    )
