"""ORM entities for flows, ingested items, clusters and analysis runs."""

from __future__ import annotations

import uuid
from datetime import UTC, datetime
from typing import Any, Optional

from sqlalchemy import JSON, DateTime, Enum, Float, ForeignKey, Integer, String, Text
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship

from painflow.schemas import AnalysisStatus

LABEL_MAX_LENGTH = 180
SUMMARY_MAX_LENGTH = 2000


def new_id() -> str:
    return uuid.uuid4().hex


def utc_now() -> datetime:
    """Current UTC time, stored naive so every backend round-trips it identically."""
    return datetime.now(UTC).replace(tzinfo=None)


_status_type = Enum(
    AnalysisStatus,
    native_enum=False,
    length=16,
    values_callable=lambda enum: [member.value for member in enum],
)


class Base(DeclarativeBase):
    pass


class Flow(Base):
    __tablename__ = "flows"

    id: Mapped[str] = mapped_column(String(32), primary_key=True, default=new_id)
    name: Mapped[str] = mapped_column(String(200))
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utc_now, index=True)

    analysis_status: Mapped[AnalysisStatus] = mapped_column(
        _status_type, default=AnalysisStatus.IDLE
    )
    analysis_progress: Mapped[Optional[dict[str, Any]]] = mapped_column(
        JSON(none_as_null=True), nullable=True
    )
    analysis_error: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    last_analyzed_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    analysis_duration_ms: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)

    items = relationship("SourceItem", back_populates="flow", passive_deletes=True)
    clusters = relationship("Cluster", back_populates="flow", passive_deletes=True)
    runs = relationship("AnalysisRun", back_populates="flow", passive_deletes=True)


class SourceItem(Base):
    __tablename__ = "source_items"

    id: Mapped[str] = mapped_column(String(32), primary_key=True, default=new_id)
    flow_id: Mapped[str] = mapped_column(
        String(32), ForeignKey("flows.id", ondelete="CASCADE"), index=True
    )
    title: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    text: Mapped[str] = mapped_column(Text)
    reddit_id: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)
    author_hash: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)
    score: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    num_comments: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    url: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    item_created_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utc_now, index=True)

    flow = relationship("Flow", back_populates="items")


class AnalysisRun(Base):
    __tablename__ = "analysis_runs"

    id: Mapped[str] = mapped_column(String(32), primary_key=True, default=new_id)
    flow_id: Mapped[str] = mapped_column(
        String(32), ForeignKey("flows.id", ondelete="CASCADE"), index=True
    )
    status: Mapped[AnalysisStatus] = mapped_column(_status_type, default=AnalysisStatus.RUNNING)
    started_at: Mapped[datetime] = mapped_column(DateTime, default=utc_now, index=True)
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    duration_ms: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    items_analyzed: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    batches_processed: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    error_message: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    flow = relationship("Flow", back_populates="runs")


class Cluster(Base):
    __tablename__ = "clusters"

    id: Mapped[str] = mapped_column(String(32), primary_key=True, default=new_id)
    flow_id: Mapped[str] = mapped_column(
        String(32), ForeignKey("flows.id", ondelete="CASCADE"), index=True
    )
    label: Mapped[str] = mapped_column(String(LABEL_MAX_LENGTH))
    summary: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    tags: Mapped[list[str]] = mapped_column(JSON, default=list)
    severity_score: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    frequency_score: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    spend_intent_score: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    recency_score: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    total_score: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utc_now, index=True)

    flow = relationship("Flow", back_populates="clusters")
    idea = relationship("Idea", back_populates="cluster", uselist=False, passive_deletes=True)
    members = relationship("ClusterMember", back_populates="cluster", passive_deletes=True)


class Idea(Base):
    __tablename__ = "ideas"

    id: Mapped[str] = mapped_column(String(32), primary_key=True, default=new_id)
    cluster_id: Mapped[str] = mapped_column(
        String(32), ForeignKey("clusters.id", ondelete="CASCADE"), unique=True
    )
    pain: Mapped[str] = mapped_column(Text)
    workaround: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    solution: Mapped[str] = mapped_column(Text)
    confidence: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utc_now)

    cluster = relationship("Cluster", back_populates="idea")


class ClusterMember(Base):
    """Links a cluster to a source item; one row per pair, enforced by the writers."""

    __tablename__ = "cluster_members"

    id: Mapped[str] = mapped_column(String(32), primary_key=True, default=new_id)
    cluster_id: Mapped[str] = mapped_column(
        String(32), ForeignKey("clusters.id", ondelete="CASCADE"), index=True
    )
    source_item_id: Mapped[str] = mapped_column(
        String(32), ForeignKey("source_items.id", ondelete="CASCADE"), index=True
    )
    similarity: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utc_now)

    cluster = relationship("Cluster", back_populates="members")
