"""Materialize extracted clusters into persisted entities, and merge clusters by hand.

Both entry points expect to run inside one transaction (see
`painflow.db.session_scope`); nothing here commits.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

from sqlalchemy import select
from sqlalchemy.orm import Session

from painflow.db import (
    LABEL_MAX_LENGTH,
    SUMMARY_MAX_LENGTH,
    Cluster,
    ClusterMember,
    Idea,
    SourceItem,
)
from painflow.db.cascade import delete_cluster, delete_clusters_for_flow
from painflow.errors import ClusterNotFoundError, InvalidMergeError
from painflow.pipeline.accumulate import merge_tags
from painflow.schemas import AnalysisMode, ClusterScores, ExtractedCluster

logger = logging.getLogger(__name__)

MAX_MEMBERS_PER_CLUSTER = 20
UNTITLED_LABEL = "Untitled"
SOLUTION_PLACEHOLDER = "TBD"

SCORE_FIELDS = {
    "severity": "severity_score",
    "frequency": "frequency_score",
    "spend_intent": "spend_intent_score",
    "recency": "recency_score",
    "total": "total_score",
}


@dataclass
class ReconciliationResult:
    """What one write phase did."""

    cluster_ids: list[str] = field(default_factory=list)
    created_cluster_ids: list[str] = field(default_factory=list)
    updated_cluster_ids: list[str] = field(default_factory=list)
    members_created: int = 0
    deleted_cluster_count: int = 0


def labels_match(left: str, right: str) -> bool:
    """Fuzzy label match: either label is a case-insensitive substring of the other."""

    a = left.lower()
    b = right.lower()
    return a in b or b in a


def find_matching_cluster(label: str, candidates: list[Cluster]) -> Cluster | None:
    """Return the first candidate whose label fuzzily matches; iteration order decides."""

    for candidate in candidates:
        if labels_match(candidate.label, label):
            return candidate
    return None


def _apply_scores_preserving(cluster: Cluster, scores: ClusterScores | None) -> None:
    """Overwrite each score the incoming cluster carries; keep the rest."""

    if scores is None:
        return
    for score_name, column in SCORE_FIELDS.items():
        value = getattr(scores, score_name)
        if value is not None:
            setattr(cluster, column, value)


def _create_cluster(session: Session, flow_id: str, incoming: ExtractedCluster) -> Cluster:
    scores = incoming.scores or ClusterScores()
    label = incoming.label[:LABEL_MAX_LENGTH] or UNTITLED_LABEL
    cluster = Cluster(
        flow_id=flow_id,
        label=label,
        summary=incoming.pain[:SUMMARY_MAX_LENGTH] if incoming.pain else None,
        tags=merge_tags(incoming.tags),
        severity_score=scores.severity,
        frequency_score=scores.frequency,
        spend_intent_score=scores.spend_intent,
        recency_score=scores.recency,
        total_score=scores.total,
    )
    session.add(cluster)
    session.flush()

    session.add(
        Idea(
            cluster_id=cluster.id,
            pain=incoming.pain or cluster.label,
            workaround=incoming.workaround or None,
            solution=incoming.solution or SOLUTION_PLACEHOLDER,
            confidence=scores.total,
        )
    )
    return cluster


def write_clusters(
    session: Session,
    flow_id: str,
    clusters: list[ExtractedCluster],
    mode: AnalysisMode,
) -> ReconciliationResult:
    """Persist a run's accumulated clusters.

    `full` deletes every existing cluster of the flow first. `refine` keeps
    them and folds incoming clusters into fuzzy label matches, updating scores
    per field (tags are left untouched on matched clusters).
    """

    result = ReconciliationResult()

    if mode is AnalysisMode.FULL:
        result.deleted_cluster_count = delete_clusters_for_flow(session, flow_id)
        candidates: list[Cluster] = []
    else:
        candidates = list(
            session.scalars(
                select(Cluster).where(Cluster.flow_id == flow_id).order_by(Cluster.created_at)
            )
        )

    known_item_ids = set(session.scalars(select(SourceItem.id).where(SourceItem.flow_id == flow_id)))
    existing_pairs: set[tuple[str, str]] = set()
    if candidates:
        rows = session.execute(
            select(ClusterMember.cluster_id, ClusterMember.source_item_id).where(
                ClusterMember.cluster_id.in_([candidate.id for candidate in candidates])
            )
        )
        existing_pairs = {(row.cluster_id, row.source_item_id) for row in rows}

    for incoming in clusters:
        target = find_matching_cluster(incoming.label, candidates) if candidates else None
        if target is not None:
            _apply_scores_preserving(target, incoming.scores)
            if target.id not in result.updated_cluster_ids:
                result.updated_cluster_ids.append(target.id)
        else:
            target = _create_cluster(session, flow_id, incoming)
            result.created_cluster_ids.append(target.id)

        for quote in incoming.quotes[:MAX_MEMBERS_PER_CLUSTER]:
            if quote.source_id not in known_item_ids:
                logger.debug(
                    "Skipping quote citing unknown item %s for cluster %s",
                    quote.source_id,
                    target.id,
                )
                continue
            pair = (target.id, quote.source_id)
            if pair in existing_pairs:
                continue
            session.add(ClusterMember(cluster_id=target.id, source_item_id=quote.source_id))
            existing_pairs.add(pair)
            result.members_created += 1

        result.cluster_ids.append(target.id)

    session.flush()
    return result


def _load_flow_cluster(session: Session, flow_id: str, cluster_id: str, role: str) -> Cluster:
    cluster = session.get(Cluster, cluster_id)
    if cluster is None or cluster.flow_id != flow_id:
        raise ClusterNotFoundError(cluster_id, role=role)
    return cluster


def _max_score(left: float | None, right: float | None) -> float:
    return max(left or 0.0, right or 0.0)


def merge_clusters(
    session: Session,
    flow_id: str,
    source_cluster_id: str,
    target_cluster_id: str,
) -> Cluster:
    """Fold the source cluster into the target and delete the source.

    Members move over unless the target already cites the same item, tags are
    unioned, and every score becomes the max of the pair (missing counts as 0).
    """

    if not source_cluster_id or not target_cluster_id:
        raise InvalidMergeError("Source and target cluster IDs are required.")
    if source_cluster_id == target_cluster_id:
        raise InvalidMergeError("Cannot merge a cluster into itself.")

    source = _load_flow_cluster(session, flow_id, source_cluster_id, "Source cluster")
    target = _load_flow_cluster(session, flow_id, target_cluster_id, "Target cluster")

    target_item_ids = set(
        session.scalars(
            select(ClusterMember.source_item_id).where(ClusterMember.cluster_id == target.id)
        )
    )
    source_members = list(
        session.scalars(select(ClusterMember).where(ClusterMember.cluster_id == source.id))
    )
    for member in source_members:
        if member.source_item_id in target_item_ids:
            session.delete(member)
        else:
            member.cluster_id = target.id
            target_item_ids.add(member.source_item_id)

    target.tags = merge_tags(target.tags, source.tags)
    for column in SCORE_FIELDS.values():
        setattr(target, column, _max_score(getattr(source, column), getattr(target, column)))

    session.flush()
    delete_cluster(session, source.id)
    session.expunge(source)
    logger.info("Merged cluster %s into %s", source_cluster_id, target_cluster_id)
    return target
