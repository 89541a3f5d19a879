"""Tests for prompt construction and extraction payload validation."""

from __future__ import annotations

import pytest

from painflow.pipeline import ClusterExtractionError, extract_pain_clusters, validate_extraction_payload
from painflow.prompts import PAIN_POINT_SYSTEM_PROMPT, build_pain_point_user_prompt, truncate_text
from painflow.schemas import BatchItem


class _FakeJsonClient:
    def __init__(self, payload: dict):
        self.payload = payload
        self.calls: list[dict] = []

    def complete_json(self, *, system_prompt: str, user_prompt: str, **kwargs) -> dict:
        self.calls.append({"system_prompt": system_prompt, "user_prompt": user_prompt})
        return self.payload


def _items() -> list[BatchItem]:
    return [
        BatchItem(id="item-1", text="Exporting to CSV takes forever", title="Export rant"),
        BatchItem(id="item-2", text="I copy invoices by hand every week"),
    ]


class TestPrompt:
    def test_lists_items_with_ids_and_titles(self):
        prompt = build_pain_point_user_prompt(_items())
        assert "Analyze the following 2 texts" in prompt
        assert '#1 id=item-1 title="Export rant"\nExporting to CSV takes forever' in prompt
        assert "#2 id=item-2\nI copy invoices by hand every week" in prompt
        assert "You MUST return at least 1 cluster" in prompt
        assert "CONTEXT - EXISTING PAIN POINTS" not in prompt

    def test_singular_count(self):
        assert "Analyze the following 1 text " in build_pain_point_user_prompt(_items()[:1])

    def test_existing_context_block(self):
        prompt = build_pain_point_user_prompt(
            _items(), existing_context=["Slow Export: CSV export is slow"]
        )
        assert "CONTEXT - EXISTING PAIN POINTS" in prompt
        assert "- Slow Export: CSV export is slow" in prompt
        assert "EXACT SAME LABEL" in prompt

    def test_long_items_are_truncated(self):
        items = [BatchItem(id="item-1", text="x" * 50)]
        prompt = build_pain_point_user_prompt(items, item_char_limit=10)
        assert "x" * 10 + "…" in prompt
        assert "x" * 11 not in prompt

    def test_truncate_text(self):
        assert truncate_text("short", 10) == "short"
        assert truncate_text("abcdef", 3) == "abc…"


class TestValidateExtractionPayload:
    def test_accepts_camel_case_fields_and_ignores_extras(self):
        clusters = validate_extraction_payload(
            {
                "clusters": [
                    {
                        "label": "Manual CSV Export",
                        "pain": "Exports are manual",
                        "quotes": [{"sourceId": "item-1", "quote": "takes forever"}],
                        "scores": {"spendIntent": 0.6, "total": 0.7, "confidence": 0.2},
                        "priority": "high",
                    }
                ]
            }
        )
        assert clusters[0].quotes[0].source_id == "item-1"
        assert clusters[0].scores.spend_intent == 0.6
        assert clusters[0].tags is None

    def test_empty_cluster_list_is_valid(self):
        assert validate_extraction_payload({"clusters": []}) == []

    @pytest.mark.parametrize(
        "payload",
        [
            {},
            {"clusters": [{"label": "x", "pain": "y"}]},
            {"clusters": [{"label": "x", "pain": "y", "quotes": [], "scores": {"total": 1.5}}]},
        ],
    )
    def test_rejects_invalid_payloads(self, payload):
        with pytest.raises(ClusterExtractionError, match="LLM response validation failed"):
            validate_extraction_payload(payload)

    def test_error_lists_field_paths(self):
        with pytest.raises(ClusterExtractionError, match=r"clusters\.0\.quotes"):
            validate_extraction_payload({"clusters": [{"label": "x", "pain": "y"}]})

    @pytest.mark.parametrize("field", ["workaround", "solution", "tags", "scores"])
    def test_rejects_explicit_null_optional_fields(self, field):
        cluster = {"label": "x", "pain": "y", "quotes": [], field: None}
        with pytest.raises(ClusterExtractionError, match=rf"clusters\.0\.{field}"):
            validate_extraction_payload({"clusters": [cluster]})


def test_extract_pain_clusters_sends_one_request():
    client = _FakeJsonClient(
        {
            "clusters": [
                {
                    "label": "Manual invoicing",
                    "pain": "Invoices are copied by hand",
                    "quotes": [{"sourceId": "item-2", "quote": "by hand every week"}],
                }
            ]
        }
    )

    clusters = extract_pain_clusters(_items(), client, existing_context=["Billing"])

    assert [cluster.label for cluster in clusters] == ["Manual invoicing"]
    assert len(client.calls) == 1
    assert client.calls[0]["system_prompt"] == PAIN_POINT_SYSTEM_PROMPT
    assert "- Billing" in client.calls[0]["user_prompt"]
