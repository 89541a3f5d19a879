"""Persistence layer."""

from painflow.db.models import (
    LABEL_MAX_LENGTH,
    SUMMARY_MAX_LENGTH,
    AnalysisRun,
    Base,
    Cluster,
    ClusterMember,
    Flow,
    Idea,
    SourceItem,
    new_id,
    utc_now,
)
from painflow.db.session import (
    SessionFactory,
    create_db_engine,
    create_session_factory,
    init_database,
    session_scope,
)

__all__ = [
    "LABEL_MAX_LENGTH",
    "SUMMARY_MAX_LENGTH",
    "AnalysisRun",
    "Base",
    "Cluster",
    "ClusterMember",
    "Flow",
    "Idea",
    "SessionFactory",
    "SourceItem",
    "create_db_engine",
    "create_session_factory",
    "init_database",
    "new_id",
    "session_scope",
    "utc_now",
]
