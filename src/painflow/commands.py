"""Flow, item and cluster management operations.

Every function takes an open session and leaves committing to the caller
(`painflow.db.session_scope`).
"""

from __future__ import annotations

import logging

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from painflow.control import AnalysisController
from painflow.db import (
    LABEL_MAX_LENGTH,
    SUMMARY_MAX_LENGTH,
    Cluster,
    ClusterMember,
    Flow,
    Idea,
    SourceItem,
)
from painflow.db import cascade
from painflow.errors import (
    ClusterMemberNotFoundError,
    ClusterNotFoundError,
    InvalidInputError,
    NoActiveAnalysisError,
    SourceItemNotFoundError,
)
from painflow.pipeline.reconcile import merge_clusters as _merge_clusters
from painflow.runs import get_analysis_status, get_flow_or_raise
from painflow.schemas import (
    AnalysisStatus,
    AnalysisStatusSnapshot,
    ClusterView,
    FlowSummary,
    IdeaView,
)

logger = logging.getLogger(__name__)


def _count_by_flow(session: Session, model) -> dict[str, int]:
    rows = session.execute(select(model.flow_id, func.count()).group_by(model.flow_id))
    return {flow_id: int(count) for flow_id, count in rows}


def _flow_summary(flow: Flow, *, items_count: int, clusters_count: int) -> FlowSummary:
    return FlowSummary(
        id=flow.id,
        name=flow.name,
        description=flow.description,
        created_at=flow.created_at,
        analysis_status=flow.analysis_status,
        last_analyzed_at=flow.last_analyzed_at,
        items_count=items_count,
        clusters_count=clusters_count,
    )


def create_flow(session: Session, name: str, description: str | None = None) -> FlowSummary:
    cleaned = (name or "").strip()
    if not cleaned:
        raise InvalidInputError("Flow name is required.")
    flow = Flow(
        name=cleaned,
        description=(description or "").strip() or None,
        analysis_status=AnalysisStatus.IDLE,
    )
    session.add(flow)
    session.flush()
    logger.info("Created flow %s (%s)", flow.id, flow.name)
    return _flow_summary(flow, items_count=0, clusters_count=0)


def list_flows(session: Session) -> list[FlowSummary]:
    """All flows, newest first."""

    item_counts = _count_by_flow(session, SourceItem)
    cluster_counts = _count_by_flow(session, Cluster)
    flows = session.scalars(select(Flow).order_by(Flow.created_at.desc(), Flow.id.desc()))
    return [
        _flow_summary(
            flow,
            items_count=item_counts.get(flow.id, 0),
            clusters_count=cluster_counts.get(flow.id, 0),
        )
        for flow in flows
    ]


def get_flow(session: Session, flow_id: str) -> FlowSummary:
    flow = get_flow_or_raise(session, flow_id)
    items_count = session.scalar(
        select(func.count()).select_from(SourceItem).where(SourceItem.flow_id == flow_id)
    )
    clusters_count = session.scalar(
        select(func.count()).select_from(Cluster).where(Cluster.flow_id == flow_id)
    )
    return _flow_summary(
        flow,
        items_count=int(items_count or 0),
        clusters_count=int(clusters_count or 0),
    )


def delete_flow(session: Session, flow_id: str) -> None:
    flow = get_flow_or_raise(session, flow_id)
    session.expunge(flow)
    cascade.delete_flow(session, flow_id)
    logger.info("Deleted flow %s", flow_id)


def get_status(session: Session, flow_id: str, *, history_limit: int = 5) -> AnalysisStatusSnapshot:
    return get_analysis_status(session, flow_id, history_limit=history_limit)


def _cluster_view(cluster: Cluster, idea: Idea | None, member_count: int) -> ClusterView:
    return ClusterView(
        id=cluster.id,
        label=cluster.label,
        summary=cluster.summary,
        tags=list(cluster.tags or []),
        severity_score=cluster.severity_score,
        frequency_score=cluster.frequency_score,
        spend_intent_score=cluster.spend_intent_score,
        recency_score=cluster.recency_score,
        total_score=cluster.total_score,
        created_at=cluster.created_at,
        idea=(
            IdeaView(
                pain=idea.pain,
                workaround=idea.workaround,
                solution=idea.solution,
                confidence=idea.confidence,
            )
            if idea is not None
            else None
        ),
        member_count=member_count,
    )


def list_clusters(session: Session, flow_id: str) -> list[ClusterView]:
    """Clusters of a flow by descending total score; unscored clusters last."""

    get_flow_or_raise(session, flow_id)
    clusters = list(
        session.scalars(
            select(Cluster)
            .where(Cluster.flow_id == flow_id)
            .order_by(Cluster.total_score.desc().nulls_last(), Cluster.created_at, Cluster.id)
        )
    )
    cluster_ids = [cluster.id for cluster in clusters]
    if not cluster_ids:
        return []

    ideas = {
        idea.cluster_id: idea
        for idea in session.scalars(select(Idea).where(Idea.cluster_id.in_(cluster_ids)))
    }
    member_counts = {
        cluster_id: int(count)
        for cluster_id, count in session.execute(
            select(ClusterMember.cluster_id, func.count())
            .where(ClusterMember.cluster_id.in_(cluster_ids))
            .group_by(ClusterMember.cluster_id)
        )
    }
    return [
        _cluster_view(cluster, ideas.get(cluster.id), member_counts.get(cluster.id, 0))
        for cluster in clusters
    ]


def _get_flow_cluster(session: Session, flow_id: str, cluster_id: str) -> Cluster:
    get_flow_or_raise(session, flow_id)
    cluster = session.get(Cluster, cluster_id)
    if cluster is None or cluster.flow_id != flow_id:
        raise ClusterNotFoundError(cluster_id)
    return cluster


def get_cluster(session: Session, flow_id: str, cluster_id: str) -> ClusterView:
    cluster = _get_flow_cluster(session, flow_id, cluster_id)
    idea = session.scalar(select(Idea).where(Idea.cluster_id == cluster.id))
    member_count = session.scalar(
        select(func.count()).select_from(ClusterMember).where(ClusterMember.cluster_id == cluster.id)
    )
    return _cluster_view(cluster, idea, int(member_count or 0))


def edit_cluster(
    session: Session,
    flow_id: str,
    cluster_id: str,
    *,
    label: str | None = None,
    summary: str | None = None,
) -> ClusterView:
    """Change only the fields that were provided."""

    cluster = _get_flow_cluster(session, flow_id, cluster_id)
    if label is not None:
        cleaned = label.strip()
        if not cleaned:
            raise InvalidInputError("Cluster label cannot be empty.")
        if len(cleaned) > LABEL_MAX_LENGTH:
            raise InvalidInputError(f"Cluster label must be at most {LABEL_MAX_LENGTH} characters.")
        cluster.label = cleaned
    if summary is not None:
        if len(summary) > SUMMARY_MAX_LENGTH:
            raise InvalidInputError(
                f"Cluster summary must be at most {SUMMARY_MAX_LENGTH} characters."
            )
        cluster.summary = summary.strip() or None
    session.flush()
    return get_cluster(session, flow_id, cluster_id)


def delete_cluster(session: Session, flow_id: str, cluster_id: str) -> None:
    cluster = _get_flow_cluster(session, flow_id, cluster_id)
    session.expunge(cluster)
    cascade.delete_cluster(session, cluster_id)
    logger.info("Deleted cluster %s from flow %s", cluster_id, flow_id)


def delete_cluster_member(session: Session, flow_id: str, cluster_id: str, member_id: str) -> None:
    _get_flow_cluster(session, flow_id, cluster_id)
    member = session.get(ClusterMember, member_id)
    if member is None or member.cluster_id != cluster_id:
        raise ClusterMemberNotFoundError(member_id)
    session.delete(member)
    session.flush()


def delete_item(session: Session, flow_id: str, item_id: str) -> None:
    get_flow_or_raise(session, flow_id)
    item = session.get(SourceItem, item_id)
    if item is None or item.flow_id != flow_id:
        raise SourceItemNotFoundError(item_id)
    session.expunge(item)
    cascade.delete_source_item(session, item_id)


def merge_clusters(
    session: Session,
    flow_id: str,
    source_cluster_id: str,
    target_cluster_id: str,
) -> ClusterView:
    get_flow_or_raise(session, flow_id)
    target = _merge_clusters(session, flow_id, source_cluster_id, target_cluster_id)
    return get_cluster(session, flow_id, target.id)


def request_cancel(session: Session, controller: AnalysisController, flow_id: str) -> bool:
    """Ask a running analysis to stop at its next batch boundary.

    Returns whether this process was tracking the run. A flow that reads as
    running but is untracked (e.g. after a restart) still raises nothing; the
    caller decides how to surface the missing acknowledgment.
    """

    flow = get_flow_or_raise(session, flow_id)
    session.refresh(flow)
    if flow.analysis_status is not AnalysisStatus.RUNNING:
        raise NoActiveAnalysisError(flow_id)
    acknowledged = controller.request_cancel(flow_id)
    if not acknowledged:
        logger.warning("Flow %s is marked running but no local run is tracked", flow_id)
    return acknowledged
