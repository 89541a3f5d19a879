"""Explicit cascading deletes, children first."""

from __future__ import annotations

from sqlalchemy import delete, select
from sqlalchemy.orm import Session

from painflow.db.models import AnalysisRun, Cluster, ClusterMember, Flow, Idea, SourceItem


def delete_clusters_for_flow(session: Session, flow_id: str) -> int:
    """Delete every cluster of a flow with its ideas and members; return clusters removed."""

    cluster_ids = select(Cluster.id).where(Cluster.flow_id == flow_id)
    session.execute(
        delete(ClusterMember)
        .where(ClusterMember.cluster_id.in_(cluster_ids))
        .execution_options(synchronize_session=False)
    )
    session.execute(
        delete(Idea)
        .where(Idea.cluster_id.in_(cluster_ids))
        .execution_options(synchronize_session=False)
    )
    result = session.execute(
        delete(Cluster)
        .where(Cluster.flow_id == flow_id)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount or 0


def delete_cluster(session: Session, cluster_id: str) -> None:
    """Delete one cluster, its idea and its remaining members."""

    session.execute(
        delete(ClusterMember)
        .where(ClusterMember.cluster_id == cluster_id)
        .execution_options(synchronize_session=False)
    )
    session.execute(
        delete(Idea).where(Idea.cluster_id == cluster_id).execution_options(synchronize_session=False)
    )
    session.execute(
        delete(Cluster).where(Cluster.id == cluster_id).execution_options(synchronize_session=False)
    )


def delete_source_item(session: Session, item_id: str) -> None:
    """Delete one item and every membership that cites it."""

    session.execute(
        delete(ClusterMember)
        .where(ClusterMember.source_item_id == item_id)
        .execution_options(synchronize_session=False)
    )
    session.execute(
        delete(SourceItem)
        .where(SourceItem.id == item_id)
        .execution_options(synchronize_session=False)
    )


def delete_flow(session: Session, flow_id: str) -> None:
    """Delete a flow and everything that belongs to it."""

    delete_clusters_for_flow(session, flow_id)
    for model in (SourceItem, AnalysisRun):
        session.execute(
            delete(model).where(model.flow_id == flow_id).execution_options(synchronize_session=False)
        )
    session.execute(
        delete(Flow).where(Flow.id == flow_id).execution_options(synchronize_session=False)
    )
