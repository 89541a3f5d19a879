"""Batch partitioning and same-run cluster accumulation."""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from typing import TypeVar

from painflow.schemas import ExtractedCluster

MAX_CLUSTER_TAGS = 10
MAX_RUN_QUOTES_PER_CLUSTER = 10

T = TypeVar("T")


def partition_items(items: Sequence[T], batch_size: int) -> list[list[T]]:
    """Split `items` into consecutive batches of at most `batch_size`, order preserved."""

    if batch_size <= 0:
        raise ValueError(f"batch_size must be positive, got {batch_size}.")
    return [list(items[start : start + batch_size]) for start in range(0, len(items), batch_size)]


def merge_tags(*tag_lists: Iterable[str] | None, limit: int = MAX_CLUSTER_TAGS) -> list[str]:
    """Union tag lists in order, dropping exact duplicates, capped at `limit`."""

    merged: list[str] = []
    seen: set[str] = set()
    for tags in tag_lists:
        for tag in tags or ():
            if tag in seen:
                continue
            seen.add(tag)
            merged.append(tag)
    return merged[:limit]


def _total(cluster: ExtractedCluster) -> float | None:
    return cluster.scores.total if cluster.scores is not None else None


class ClusterAccumulator:
    """Collects clusters across the batches of one run, collapsing equal labels.

    Labels match case-insensitively. On a match quotes are concatenated and
    truncated, tags are unioned, and the whole score object is swapped for the
    incoming one only when its total is strictly higher. A zero total counts
    as no total.
    """

    def __init__(self) -> None:
        self._clusters: list[ExtractedCluster] = []
        self._by_label: dict[str, ExtractedCluster] = {}

    def __len__(self) -> int:
        return len(self._clusters)

    @property
    def clusters(self) -> list[ExtractedCluster]:
        return list(self._clusters)

    def add(self, incoming: ExtractedCluster) -> None:
        key = incoming.label.lower()
        existing = self._by_label.get(key)
        if existing is None:
            stored = incoming.model_copy(deep=True)
            self._clusters.append(stored)
            self._by_label[key] = stored
            return

        existing.quotes = [*existing.quotes, *incoming.quotes][:MAX_RUN_QUOTES_PER_CLUSTER]
        existing.tags = merge_tags(existing.tags, incoming.tags)

        incoming_total = _total(incoming)
        existing_total = _total(existing)
        if incoming_total and (existing_total is None or incoming_total > existing_total):
            existing.scores = incoming.scores.model_copy() if incoming.scores else None

    def extend(self, clusters: Iterable[ExtractedCluster]) -> None:
        for cluster in clusters:
            self.add(cluster)
