"""Core data schemas for painflow."""

from __future__ import annotations

from datetime import datetime
from enum import StrEnum

from pydantic import BaseModel, ConfigDict, Field, field_validator


class AnalysisStatus(StrEnum):
    """Lifecycle of a flow's analysis (and of each AnalysisRun)."""

    IDLE = "idle"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    CANCELED = "canceled"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES

    @property
    def can_start(self) -> bool:
        """Whether a new run may start from this state."""
        return self in STARTABLE_STATUSES


TERMINAL_STATUSES = frozenset(
    {AnalysisStatus.SUCCEEDED, AnalysisStatus.FAILED, AnalysisStatus.CANCELED}
)
STARTABLE_STATUSES = frozenset({AnalysisStatus.IDLE, *TERMINAL_STATUSES})


class AnalysisMode(StrEnum):
    """How a run's clusters are written back."""

    FULL = "full"
    REFINE = "refine"


class FailureKind(StrEnum):
    """Why a run finished as failed; lets callers choose retry vs. fix input."""

    LLM_UNAVAILABLE = "llm_unavailable"
    LLM_ERROR = "llm_error"
    NO_CLUSTERS = "no_clusters"
    INTERNAL = "internal"


class BatchItem(BaseModel):
    """One item as sent to the LLM."""

    id: str
    text: str
    title: str | None = None


class ClusterScores(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    severity: float | None = Field(default=None, ge=0.0, le=1.0)
    frequency: float | None = Field(default=None, ge=0.0, le=1.0)
    spend_intent: float | None = Field(default=None, ge=0.0, le=1.0, alias="spendIntent")
    recency: float | None = Field(default=None, ge=0.0, le=1.0)
    total: float | None = Field(default=None, ge=0.0, le=1.0)


class ClusterQuote(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    source_id: str = Field(alias="sourceId")
    quote: str


class ExtractedCluster(BaseModel):
    """One candidate cluster returned by the LLM for a batch."""

    model_config = ConfigDict(extra="ignore")

    label: str
    pain: str
    workaround: str | None = None
    solution: str | None = None
    quotes: list[ClusterQuote]
    tags: list[str] | None = None
    scores: ClusterScores | None = None

    @field_validator("workaround", "solution", "tags", "scores", mode="before")
    @classmethod
    def _reject_explicit_null(cls, value: object) -> object:
        # Optional fields may be omitted but not sent as null.
        if value is None:
            raise ValueError("may be omitted but must not be null")
        return value


class ExtractionPayload(BaseModel):
    model_config = ConfigDict(extra="ignore")

    clusters: list[ExtractedCluster]


class AnalysisProgress(BaseModel):
    """Progress snapshot persisted on the Flow while a run is active."""

    batch: int = Field(ge=0)
    total_batches: int = Field(ge=0, alias="totalBatches")
    items_processed: int = Field(ge=0, alias="itemsProcessed")
    total_items: int = Field(ge=0, alias="totalItems")

    model_config = ConfigDict(populate_by_name=True)


class IngestedItem(BaseModel):
    """A normalized item produced by an ingestion source (paste, Reddit, ...)."""

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    text: str = Field(min_length=1)
    title: str | None = None
    reddit_id: str | None = Field(default=None, alias="redditId")
    author_hash: str | None = Field(default=None, alias="authorHash")
    score: int | None = None
    num_comments: int | None = Field(default=None, alias="numComments")
    url: str | None = None
    item_created_at: datetime | None = Field(default=None, alias="itemCreatedAt")


class RunHistoryEntry(BaseModel):
    id: str
    status: AnalysisStatus
    started_at: datetime
    completed_at: datetime | None = None
    duration_ms: int | None = None
    items_analyzed: int | None = None
    batches_processed: int | None = None
    error_message: str | None = None


class AnalysisStatusSnapshot(BaseModel):
    """What status-polling collaborators see for one flow."""

    flow_id: str
    status: AnalysisStatus
    progress: AnalysisProgress | None = None
    error: str | None = None
    last_analyzed_at: datetime | None = None
    analysis_duration_ms: int | None = None
    new_data_available: bool
    items_count: int
    history: list[RunHistoryEntry] = Field(default_factory=list)


class FlowSummary(BaseModel):
    id: str
    name: str
    description: str | None = None
    created_at: datetime
    analysis_status: AnalysisStatus
    last_analyzed_at: datetime | None = None
    items_count: int = 0
    clusters_count: int = 0


class IdeaView(BaseModel):
    pain: str
    workaround: str | None = None
    solution: str
    confidence: float | None = None


class ClusterView(BaseModel):
    """A persisted cluster with its idea and how many items it cites."""

    id: str
    label: str
    summary: str | None = None
    tags: list[str] = Field(default_factory=list)
    severity_score: float | None = None
    frequency_score: float | None = None
    spend_intent_score: float | None = None
    recency_score: float | None = None
    total_score: float | None = None
    created_at: datetime
    idea: IdeaView | None = None
    member_count: int = 0
