"""Prompt builders for painflow."""

from painflow.prompts.extraction_prompts import (
    PAIN_POINT_SYSTEM_PROMPT,
    build_pain_point_user_prompt,
    truncate_text,
)

__all__ = [
    "PAIN_POINT_SYSTEM_PROMPT",
    "build_pain_point_user_prompt",
    "truncate_text",
]
