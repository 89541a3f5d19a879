"""Tests for batch partitioning and same-run cluster accumulation."""

from __future__ import annotations

import pytest

from painflow.pipeline import (
    MAX_CLUSTER_TAGS,
    MAX_RUN_QUOTES_PER_CLUSTER,
    ClusterAccumulator,
    merge_tags,
    partition_items,
)
from painflow.schemas import ClusterQuote, ClusterScores, ExtractedCluster


def _cluster(label: str, *, quotes: int = 1, tags=None, total=None, severity=None):
    extra = {}
    if tags is not None:
        extra["tags"] = tags
    if total is not None or severity is not None:
        extra["scores"] = ClusterScores(total=total, severity=severity)
    return ExtractedCluster(
        label=label,
        pain=f"{label} pain",
        quotes=[ClusterQuote(source_id=f"{label}-{index}", quote="q") for index in range(quotes)],
        **extra,
    )


class TestPartitionItems:
    def test_covers_every_item_in_order(self):
        items = list(range(120))
        batches = partition_items(items, 50)
        assert [len(batch) for batch in batches] == [50, 50, 20]
        assert [item for batch in batches for item in batch] == items

    def test_empty_input_yields_no_batches(self):
        assert partition_items([], 10) == []

    @pytest.mark.parametrize("batch_size", [0, -3])
    def test_rejects_non_positive_batch_size(self, batch_size):
        with pytest.raises(ValueError, match="batch_size"):
            partition_items([1, 2, 3], batch_size)


class TestMergeTags:
    def test_union_preserves_first_seen_order(self):
        assert merge_tags(["csv", "export"], ["export", "api"]) == ["csv", "export", "api"]

    def test_none_lists_are_skipped(self):
        assert merge_tags(None, ["a"], None) == ["a"]

    def test_capped(self):
        tags = [f"tag-{index}" for index in range(15)]
        assert merge_tags(tags) == tags[:MAX_CLUSTER_TAGS]


class TestClusterAccumulator:
    def test_labels_collapse_case_insensitively(self):
        accumulator = ClusterAccumulator()
        accumulator.add(_cluster("Slow Export", tags=["csv"]))
        accumulator.add(_cluster("slow export", tags=["csv", "speed"]))

        assert len(accumulator) == 1
        merged = accumulator.clusters[0]
        assert merged.label == "Slow Export"
        assert len(merged.quotes) == 2
        assert merged.tags == ["csv", "speed"]

    def test_quotes_are_capped(self):
        accumulator = ClusterAccumulator()
        accumulator.extend([_cluster("Billing", quotes=7), _cluster("billing", quotes=7)])

        assert len(accumulator.clusters[0].quotes) == MAX_RUN_QUOTES_PER_CLUSTER

    def test_scores_swap_only_for_higher_total(self):
        accumulator = ClusterAccumulator()
        accumulator.add(_cluster("Billing", total=0.6, severity=0.2))
        accumulator.add(_cluster("BILLING", total=0.4, severity=0.9))
        assert accumulator.clusters[0].scores.total == 0.6
        assert accumulator.clusters[0].scores.severity == 0.2

        accumulator.add(_cluster("billing", total=0.8))
        assert accumulator.clusters[0].scores.total == 0.8
        assert accumulator.clusters[0].scores.severity is None

    def test_missing_scores_are_replaced_by_scored_duplicate(self):
        accumulator = ClusterAccumulator()
        accumulator.add(_cluster("Billing"))
        accumulator.add(_cluster("billing", total=0.3))
        assert accumulator.clusters[0].scores.total == 0.3

    def test_zero_total_does_not_replace_stored_scores(self):
        accumulator = ClusterAccumulator()
        accumulator.add(_cluster("Billing", severity=0.9))
        accumulator.add(_cluster("billing", total=0.0))

        scores = accumulator.clusters[0].scores
        assert scores.severity == 0.9
        assert scores.total is None

    def test_first_occurrence_is_copied(self):
        original = _cluster("Billing")
        accumulator = ClusterAccumulator()
        accumulator.add(original)
        accumulator.add(_cluster("billing"))

        assert len(original.quotes) == 1

    def test_distinct_labels_keep_arrival_order(self):
        accumulator = ClusterAccumulator()
        accumulator.extend([_cluster("B"), _cluster("A"), _cluster("b")])
        assert [cluster.label for cluster in accumulator.clusters] == ["B", "A"]
