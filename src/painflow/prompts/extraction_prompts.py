"""Prompts for pain-point cluster extraction."""

from __future__ import annotations

from painflow.schemas import BatchItem

PAIN_POINT_SYSTEM_PROMPT = """You are a product analyst who identifies pain points from community discussions. Your job is to find problems users complain about and suggest SaaS solutions.

Key principles:
- Find ANY problems, frustrations, or complaints in the texts
- Group similar problems together into clusters
- For each cluster, identify the pain, current workarounds, and potential solutions
- Score each cluster on severity (0-1), frequency (0-1), spend intent (0-1), recency (0-1), and total (0-1)
- Always return at least 1 cluster if you find ANY problems

Return ONLY valid JSON. No explanations."""

_EXAMPLE_OUTPUT = """{
  "clusters": [
    {
      "label": "Manual CSV Export Issues",
      "pain": "Users struggle with exporting data to CSV format manually",
      "workaround": "Copy-paste into spreadsheet software",
      "solution": "One-click CSV export tool with formatting options",
      "quotes": [
        {"sourceId": "item-1", "quote": "I hate having to manually format CSV files"},
        {"sourceId": "item-5", "quote": "Exporting to CSV takes forever"}
      ],
      "tags": ["CSV", "export", "automation"],
      "scores": {
        "severity": 0.7,
        "frequency": 0.8,
        "spendIntent": 0.6,
        "recency": 0.9,
        "total": 0.75
      }
    }
  ]
}"""


def truncate_text(text: str, limit: int) -> str:
    """Cap `text` at `limit` characters, marking the cut with an ellipsis."""

    if len(text) <= limit:
        return text
    return text[:limit] + "…"


def build_existing_context_block(existing_context: list[str]) -> str:
    if not existing_context:
        return ""
    labels = "\n".join(f"- {label}" for label in existing_context)
    return (
        "\n\nCONTEXT - EXISTING PAIN POINTS:\n"
        "The following pain points have already been identified.\n"
        "If the new items match these existing patterns, group them into a cluster "
        "with the EXACT SAME LABEL as the existing one.\n"
        "If they represent NEW problems, create NEW clusters with new labels.\n\n"
        f"Existing Labels:\n{labels}\n"
    )


def _render_item(index: int, item: BatchItem, char_limit: int) -> str:
    title = f' title="{item.title}"' if item.title else ""
    return f"#{index} id={item.id}{title}\n{truncate_text(item.text, char_limit)}"


def build_pain_point_user_prompt(
    items: list[BatchItem],
    *,
    existing_context: list[str] | None = None,
    item_char_limit: int = 1200,
) -> str:
    """Build the user prompt for one extraction batch."""

    count = len(items)
    plural = "s" if count != 1 else ""
    rendered_items = "\n\n".join(
        _render_item(index, item, item_char_limit) for index, item in enumerate(items, start=1)
    )
    prompt = (
        f"Analyze the following {count} text{plural} from community discussions. "
        "Your task is to identify pain points and group similar problems together.\n\n"
        "CRITICAL: You MUST return at least 1 cluster. If you find ANY problems, complaints, "
        "or frustrations in the texts, create clusters for them. "
        "Do NOT return an empty clusters array."
        f"{build_existing_context_block(existing_context or [])}\n\n"
        "For each cluster:\n"
        "- label: Short name (2-5 words) for the pain point. "
        "USE AN EXISTING LABEL if the pain point matches one of the contexts.\n"
        "- pain: One clear sentence describing the problem\n"
        "- workaround: What users currently do to work around it (if mentioned)\n"
        "- solution: A SaaS or product idea that could solve it\n"
        "- quotes: 2-5 direct quotes from the texts showing this pain "
        "(use the sourceId from the text)\n"
        "- tags: 2-5 relevant tags\n"
        "- scores: Estimate 0.0-1.0 for each metric\n\n"
        f"Example output format:\n{_EXAMPLE_OUTPUT}\n\n"
        "IMPORTANT: Look for any problems, frustrations, or pain points mentioned. "
        "Group similar ones together. Return at least 1 cluster if you find ANY issues.\n\n"
        f"Texts to analyze:\n{rendered_items}\n\n"
        "Analyze these texts and return clusters in JSON format:"
    )
    return prompt.strip()
