"""Batch extraction of pain-point clusters from the LLM."""

from __future__ import annotations

import logging

from pydantic import ValidationError

from painflow.models import LLMJsonClient
from painflow.prompts import PAIN_POINT_SYSTEM_PROMPT, build_pain_point_user_prompt
from painflow.schemas import BatchItem, ExtractedCluster, ExtractionPayload

logger = logging.getLogger(__name__)


class ClusterExtractionError(ValueError):
    """Raised when an extraction payload fails schema validation."""


def _format_validation_issues(exc: ValidationError) -> str:
    issues: list[str] = []
    for error in exc.errors():
        path = ".".join(str(part) for part in error.get("loc", ()))
        issues.append(f"{path or '<root>'}: {error.get('msg', 'invalid')}")
    return ", ".join(issues)


def validate_extraction_payload(payload: dict) -> list[ExtractedCluster]:
    """Validate a raw LLM payload and return its clusters."""

    try:
        parsed = ExtractionPayload.model_validate(payload)
    except ValidationError as exc:
        raise ClusterExtractionError(
            f"LLM response validation failed: {_format_validation_issues(exc)}"
        ) from exc
    return parsed.clusters


def extract_pain_clusters(
    items: list[BatchItem],
    llm_client: LLMJsonClient,
    *,
    existing_context: list[str] | None = None,
    item_char_limit: int = 1200,
) -> list[ExtractedCluster]:
    """Extract candidate clusters for one batch of items in one LLM call.

    Labels are not guaranteed unique and quotes may cite ids that are not in
    the batch; callers must defend against both.
    """

    user_prompt = build_pain_point_user_prompt(
        items,
        existing_context=existing_context,
        item_char_limit=item_char_limit,
    )
    logger.info("Extracting clusters for %d items (prompt %d chars)", len(items), len(user_prompt))

    payload = llm_client.complete_json(
        system_prompt=PAIN_POINT_SYSTEM_PROMPT,
        user_prompt=user_prompt,
    )
    return validate_extraction_payload(payload)
