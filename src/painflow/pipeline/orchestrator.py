"""Batch analysis orchestration: partition, extract, accumulate, reconcile, finalize."""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass, field

import httpx
import openai
from sqlalchemy import select
from sqlalchemy.orm import Session

from painflow.config import Settings
from painflow.control import AnalysisController
from painflow.db import Cluster, SessionFactory, SourceItem, session_scope
from painflow.errors import (
    AnalysisAlreadyRunningError,
    AnalysisInternalError,
    AnalysisSetupError,
    LLMUnavailableError,
    NoItemsToAnalyzeError,
)
from painflow.models import LLMJsonClient, check_llm_health
from painflow.pipeline.accumulate import ClusterAccumulator, partition_items
from painflow.pipeline.extraction import extract_pain_clusters
from painflow.pipeline.reconcile import ReconciliationResult, write_clusters
from painflow.runs import begin_run, finalize_run, get_flow_or_raise, record_progress
from painflow.schemas import (
    AnalysisMode,
    AnalysisProgress,
    AnalysisStatus,
    BatchItem,
    ExtractedCluster,
    FailureKind,
)

logger = logging.getLogger(__name__)

NO_CLUSTERS_MESSAGE = "Analysis completed but no clusters were generated"
NO_BATCHES_MESSAGE = "Unable to batch items for analysis"
INTERNAL_ERROR_MESSAGE = "An unexpected error occurred during analysis"

ProgressCallback = Callable[[AnalysisProgress], None]

_CONNECTIVITY_ERRORS: tuple[type[BaseException], ...] = (
    LLMUnavailableError,
    openai.APIConnectionError,
    httpx.TransportError,
    ConnectionError,
    TimeoutError,
)


def is_connectivity_error(exc: BaseException) -> bool:
    """Whether an extraction failure means the LLM itself is unreachable or too slow."""

    return isinstance(exc, _CONNECTIVITY_ERRORS)


def format_existing_context(label: str, summary: str | None) -> str:
    return f"{label}: {summary}" if summary else label


@dataclass(frozen=True)
class PreparedAnalysis:
    """A run that passed its preconditions and is registered as running."""

    flow_id: str
    run_id: str
    mode: AnalysisMode
    batches: list[list[BatchItem]]
    total_items: int
    existing_context: list[str]
    started_at: float

    @property
    def total_batches(self) -> int:
        return len(self.batches)


@dataclass
class AnalysisOutcome:
    """Terminal result of one run, as persisted."""

    flow_id: str
    run_id: str
    status: AnalysisStatus
    items_analyzed: int
    batches_processed: int
    duration_ms: int
    error_message: str | None = None
    failure_kind: FailureKind | None = None
    skipped_batches: list[int] = field(default_factory=list)
    reconciliation: ReconciliationResult | None = None

    @property
    def succeeded(self) -> bool:
        return self.status is AnalysisStatus.SUCCEEDED

    @property
    def cluster_count(self) -> int:
        return len(self.reconciliation.cluster_ids) if self.reconciliation else 0


class AnalysisOrchestrator:
    """Drives one flow's analysis as a sequential, cancelable batch loop."""

    def __init__(
        self,
        *,
        session_factory: SessionFactory,
        llm_client: LLMJsonClient,
        controller: AnalysisController,
        settings: Settings,
        health_check: Callable[[], bool] | None = None,
        max_background_runs: int = 4,
    ) -> None:
        self._session_factory = session_factory
        self._llm_client = llm_client
        self._controller = controller
        self._settings = settings
        self._health_check = health_check or self._default_health_check
        self._max_background_runs = max_background_runs
        self._executor: ThreadPoolExecutor | None = None
        self._executor_lock = threading.Lock()

    def _default_health_check(self) -> bool:
        return check_llm_health(
            self._settings.resolved_models_url(),
            timeout_seconds=self._settings.llm_health_timeout_seconds,
        )

    def prepare(self, flow_id: str, mode: AnalysisMode | str = AnalysisMode.FULL) -> PreparedAnalysis:
        """Check preconditions, partition items, create the run and mark the flow running.

        Raises a `PreconditionError`, `LLMUnavailableError` or
        `AnalysisSetupError` without mutating anything.
        """

        mode = AnalysisMode(mode)
        with session_scope(self._session_factory) as session:
            flow = get_flow_or_raise(session, flow_id)
            if not flow.analysis_status.can_start:
                raise AnalysisAlreadyRunningError(flow_id)

            items = [
                BatchItem(id=item.id, text=item.text, title=item.title)
                for item in session.scalars(
                    select(SourceItem)
                    .where(SourceItem.flow_id == flow_id)
                    .order_by(SourceItem.created_at, SourceItem.id)
                )
            ]
            if not items:
                raise NoItemsToAnalyzeError(flow_id)

            existing_context: list[str] = []
            if mode is AnalysisMode.REFINE:
                rows = session.execute(
                    select(Cluster.label, Cluster.summary)
                    .where(Cluster.flow_id == flow_id)
                    .order_by(Cluster.created_at)
                )
                existing_context = [format_existing_context(row.label, row.summary) for row in rows]

        if not self._health_check():
            raise LLMUnavailableError(
                "LLM is not available. Please ensure it is running on "
                f"{self._settings.llm_base_url}"
            )

        batches = partition_items(items, self._settings.analysis_batch_size)
        if not batches:
            raise AnalysisSetupError(NO_BATCHES_MESSAGE)

        initial_progress = AnalysisProgress(
            batch=0,
            total_batches=len(batches),
            items_processed=0,
            total_items=len(items),
        )
        started_at = time.perf_counter()
        with session_scope(self._session_factory) as session:
            run_id = begin_run(session, flow_id, initial_progress)
        self._controller.mark_running(flow_id)

        logger.info(
            "Started %s analysis run %s for flow %s: %d items in %d batches",
            mode.value,
            run_id,
            flow_id,
            len(items),
            len(batches),
        )
        return PreparedAnalysis(
            flow_id=flow_id,
            run_id=run_id,
            mode=mode,
            batches=batches,
            total_items=len(items),
            existing_context=existing_context,
            started_at=started_at,
        )

    def execute(
        self,
        prepared: PreparedAnalysis,
        progress_callback: ProgressCallback | None = None,
    ) -> AnalysisOutcome:
        """Run the batch loop for a prepared run; the controller entry is always cleared."""

        try:
            return self._run_batches(prepared, progress_callback)
        except Exception as exc:
            logger.exception("Analysis run %s failed unexpectedly", prepared.run_id)
            self._finalize_after_internal_error(prepared, exc)
            details = str(exc) if self._settings.exposes_internal_errors() else None
            raise AnalysisInternalError(INTERNAL_ERROR_MESSAGE, details=details) from exc
        finally:
            self._controller.clear(prepared.flow_id)

    def run(
        self,
        flow_id: str,
        mode: AnalysisMode | str = AnalysisMode.FULL,
        progress_callback: ProgressCallback | None = None,
    ) -> AnalysisOutcome:
        """Prepare and execute one run on the calling thread."""

        prepared = self.prepare(flow_id, mode)
        return self.execute(prepared, progress_callback)

    def submit(
        self,
        flow_id: str,
        mode: AnalysisMode | str = AnalysisMode.FULL,
        progress_callback: ProgressCallback | None = None,
    ) -> Future[AnalysisOutcome]:
        """Check preconditions now and run the batch loop in the background."""

        prepared = self.prepare(flow_id, mode)
        return self._get_executor().submit(self.execute, prepared, progress_callback)

    def shutdown(self, *, wait: bool = True) -> None:
        with self._executor_lock:
            if self._executor is not None:
                self._executor.shutdown(wait=wait)
                self._executor = None

    def _get_executor(self) -> ThreadPoolExecutor:
        with self._executor_lock:
            if self._executor is None:
                self._executor = ThreadPoolExecutor(
                    max_workers=self._max_background_runs,
                    thread_name_prefix="painflow-analysis",
                )
            return self._executor

    def _extract(self, prepared: PreparedAnalysis, batch: list[BatchItem]) -> list[ExtractedCluster]:
        return extract_pain_clusters(
            batch,
            self._llm_client,
            existing_context=prepared.existing_context,
            item_char_limit=self._settings.item_char_limit,
        )

    def _run_batches(
        self,
        prepared: PreparedAnalysis,
        progress_callback: ProgressCallback | None,
    ) -> AnalysisOutcome:
        accumulator = ClusterAccumulator()
        items_processed = 0
        skipped_batches: list[int] = []

        for batch_index, batch in enumerate(prepared.batches):
            if self._controller.is_cancel_requested(prepared.flow_id):
                logger.info(
                    "Run %s canceled before batch %d/%d",
                    prepared.run_id,
                    batch_index + 1,
                    prepared.total_batches,
                )
                return self._finalize(
                    prepared,
                    AnalysisStatus.CANCELED,
                    items_analyzed=items_processed,
                    batches_processed=batch_index,
                    skipped_batches=skipped_batches,
                )

            logger.info(
                "Processing batch %d/%d (%d items)",
                batch_index + 1,
                prepared.total_batches,
                len(batch),
            )
            try:
                clusters = self._extract(prepared, batch)
            except Exception as exc:
                if is_connectivity_error(exc):
                    logger.error("LLM unavailable during batch %d: %s", batch_index + 1, exc)
                    return self._finalize(
                        prepared,
                        AnalysisStatus.FAILED,
                        error_message=str(exc),
                        failure_kind=FailureKind.LLM_UNAVAILABLE,
                        items_analyzed=items_processed,
                        batches_processed=batch_index,
                        skipped_batches=skipped_batches,
                    )
                if batch_index == 0 and len(accumulator) == 0:
                    logger.error("First batch failed, aborting run: %s", exc)
                    return self._finalize(
                        prepared,
                        AnalysisStatus.FAILED,
                        error_message=str(exc),
                        failure_kind=FailureKind.LLM_ERROR,
                        items_analyzed=items_processed,
                        batches_processed=batch_index,
                        skipped_batches=skipped_batches,
                    )
                logger.warning(
                    "Skipping batch %d/%d after error: %s",
                    batch_index + 1,
                    prepared.total_batches,
                    exc,
                    exc_info=True,
                )
                skipped_batches.append(batch_index)
            else:
                accumulator.extend(clusters)

            items_processed += len(batch)
            progress = AnalysisProgress(
                batch=batch_index + 1,
                total_batches=prepared.total_batches,
                items_processed=items_processed,
                total_items=prepared.total_items,
            )
            with session_scope(self._session_factory) as session:
                record_progress(session, prepared.flow_id, prepared.run_id, progress)
            if progress_callback is not None:
                progress_callback(progress)

        if len(accumulator) == 0:
            return self._finalize(
                prepared,
                AnalysisStatus.FAILED,
                error_message=NO_CLUSTERS_MESSAGE,
                failure_kind=FailureKind.NO_CLUSTERS,
                items_analyzed=items_processed,
                batches_processed=prepared.total_batches,
                skipped_batches=skipped_batches,
            )

        with session_scope(self._session_factory) as session:
            reconciliation = write_clusters(
                session,
                prepared.flow_id,
                accumulator.clusters,
                prepared.mode,
            )
            outcome = self._finalize(
                prepared,
                AnalysisStatus.SUCCEEDED,
                items_analyzed=prepared.total_items,
                batches_processed=prepared.total_batches,
                skipped_batches=skipped_batches,
                session=session,
            )
        outcome.reconciliation = reconciliation
        return outcome

    def _finalize(
        self,
        prepared: PreparedAnalysis,
        status: AnalysisStatus,
        *,
        items_analyzed: int,
        batches_processed: int,
        error_message: str | None = None,
        failure_kind: FailureKind | None = None,
        skipped_batches: list[int] | None = None,
        session: Session | None = None,
    ) -> AnalysisOutcome:
        duration_ms = int((time.perf_counter() - prepared.started_at) * 1000)
        values = dict(
            status=status,
            duration_ms=duration_ms,
            error_message=error_message,
            items_analyzed=items_analyzed,
            batches_processed=batches_processed,
            set_last_analyzed_at=status is AnalysisStatus.SUCCEEDED,
        )
        if session is not None:
            finalize_run(session, prepared.flow_id, prepared.run_id, **values)
        else:
            with session_scope(self._session_factory) as own_session:
                finalize_run(own_session, prepared.flow_id, prepared.run_id, **values)

        logger.info(
            "Run %s finished as %s after %d/%d batches (%d ms)",
            prepared.run_id,
            status.value,
            batches_processed,
            prepared.total_batches,
            duration_ms,
        )
        return AnalysisOutcome(
            flow_id=prepared.flow_id,
            run_id=prepared.run_id,
            status=status,
            items_analyzed=items_analyzed,
            batches_processed=batches_processed,
            duration_ms=duration_ms,
            error_message=error_message,
            failure_kind=failure_kind,
            skipped_batches=list(skipped_batches or []),
        )

    def _finalize_after_internal_error(self, prepared: PreparedAnalysis, exc: Exception) -> None:
        """Best effort: leave the flow `failed` rather than stuck in `running`."""

        try:
            with session_scope(self._session_factory) as session:
                finalize_run(
                    session,
                    prepared.flow_id,
                    prepared.run_id,
                    status=AnalysisStatus.FAILED,
                    duration_ms=int((time.perf_counter() - prepared.started_at) * 1000),
                    error_message=f"{INTERNAL_ERROR_MESSAGE}: {exc}",
                )
        except Exception:
            logger.exception("Could not record failure for run %s", prepared.run_id)
