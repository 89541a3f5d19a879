"""Turning pasted text and normalized scraper output into SourceItems."""

from __future__ import annotations

import logging
import re
from collections.abc import Iterable

from sqlalchemy.orm import Session

from painflow.db import SourceItem
from painflow.errors import InvalidInputError
from painflow.runs import get_flow_or_raise
from painflow.schemas import IngestedItem

logger = logging.getLogger(__name__)

_BLANK_LINE_SPLIT = re.compile(r"\n{2,}")


def split_paste_text(text: str) -> list[str]:
    """Split pasted text into blocks separated by blank lines."""

    blocks = [block.strip() for block in _BLANK_LINE_SPLIT.split(text)]
    blocks = [block for block in blocks if block]
    return blocks or [text]


def ingest_paste(session: Session, flow_id: str, text: str) -> list[SourceItem]:
    """Store one SourceItem per pasted block."""

    get_flow_or_raise(session, flow_id)
    cleaned = (text or "").strip()
    if not cleaned:
        raise InvalidInputError("text is required for paste")

    items = [SourceItem(flow_id=flow_id, text=chunk) for chunk in split_paste_text(cleaned)]
    session.add_all(items)
    session.flush()
    logger.info("Ingested %d pasted items into flow %s", len(items), flow_id)
    return items


def ingest_items(
    session: Session,
    flow_id: str,
    items: Iterable[IngestedItem],
) -> list[SourceItem]:
    """Store already-normalized items (e.g. Reddit posts and comments)."""

    get_flow_or_raise(session, flow_id)
    rows = [
        SourceItem(
            flow_id=flow_id,
            title=item.title,
            text=item.text,
            reddit_id=item.reddit_id,
            author_hash=item.author_hash,
            score=item.score,
            num_comments=item.num_comments,
            url=item.url,
            item_created_at=item.item_created_at,
        )
        for item in items
    ]
    session.add_all(rows)
    session.flush()
    logger.info("Ingested %d items into flow %s", len(rows), flow_id)
    return rows
