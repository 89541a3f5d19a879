"""Analysis pipeline stages."""

from painflow.pipeline.accumulate import (
    MAX_CLUSTER_TAGS,
    MAX_RUN_QUOTES_PER_CLUSTER,
    ClusterAccumulator,
    merge_tags,
    partition_items,
)
from painflow.pipeline.extraction import (
    ClusterExtractionError,
    extract_pain_clusters,
    validate_extraction_payload,
)
from painflow.pipeline.orchestrator import (
    AnalysisOrchestrator,
    AnalysisOutcome,
    PreparedAnalysis,
    is_connectivity_error,
)
from painflow.pipeline.reconcile import (
    MAX_MEMBERS_PER_CLUSTER,
    ReconciliationResult,
    merge_clusters,
    write_clusters,
)

__all__ = [
    "MAX_CLUSTER_TAGS",
    "MAX_MEMBERS_PER_CLUSTER",
    "MAX_RUN_QUOTES_PER_CLUSTER",
    "AnalysisOrchestrator",
    "AnalysisOutcome",
    "ClusterAccumulator",
    "ClusterExtractionError",
    "PreparedAnalysis",
    "ReconciliationResult",
    "extract_pain_clusters",
    "is_connectivity_error",
    "merge_clusters",
    "merge_tags",
    "partition_items",
    "validate_extraction_payload",
    "write_clusters",
]
