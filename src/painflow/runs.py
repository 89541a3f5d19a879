"""Run records, progress snapshots and the polled analysis status."""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import func, select, update
from sqlalchemy.orm import Session

from painflow.db import AnalysisRun, Flow, SourceItem, utc_now
from painflow.errors import AnalysisAlreadyRunningError, FlowNotFoundError
from painflow.schemas import (
    AnalysisProgress,
    AnalysisStatus,
    AnalysisStatusSnapshot,
    RunHistoryEntry,
)


def get_flow_or_raise(session: Session, flow_id: str) -> Flow:
    flow = session.get(Flow, flow_id)
    if flow is None:
        raise FlowNotFoundError(flow_id)
    return flow


def _progress_payload(progress: AnalysisProgress) -> dict:
    return progress.model_dump(by_alias=True)


def begin_run(session: Session, flow_id: str, progress: AnalysisProgress) -> str:
    """Move the flow to `running` and append a running AnalysisRun.

    The status change is a compare-and-swap on the flow row, so two callers
    racing past an earlier status check cannot both start a run.
    """

    startable = [status for status in AnalysisStatus if status.can_start]
    swapped = session.execute(
        update(Flow)
        .where(Flow.id == flow_id, Flow.analysis_status.in_(startable))
        .values(
            analysis_status=AnalysisStatus.RUNNING,
            analysis_progress=_progress_payload(progress),
            analysis_error=None,
        )
        .execution_options(synchronize_session=False)
    )
    if not swapped.rowcount:
        get_flow_or_raise(session, flow_id)
        raise AnalysisAlreadyRunningError(flow_id)

    run = AnalysisRun(flow_id=flow_id, status=AnalysisStatus.RUNNING, started_at=utc_now())
    session.add(run)
    session.flush()
    return run.id


def record_progress(
    session: Session,
    flow_id: str,
    run_id: str,
    progress: AnalysisProgress,
) -> None:
    """Persist a progress snapshot on both the flow and its current run."""

    session.execute(
        update(Flow)
        .where(Flow.id == flow_id)
        .values(analysis_progress=_progress_payload(progress))
        .execution_options(synchronize_session=False)
    )
    session.execute(
        update(AnalysisRun)
        .where(AnalysisRun.id == run_id)
        .values(
            items_analyzed=progress.items_processed,
            batches_processed=progress.batch,
        )
        .execution_options(synchronize_session=False)
    )


def finalize_run(
    session: Session,
    flow_id: str,
    run_id: str,
    *,
    status: AnalysisStatus,
    duration_ms: int,
    error_message: str | None = None,
    items_analyzed: int | None = None,
    batches_processed: int | None = None,
    set_last_analyzed_at: bool = False,
) -> None:
    """Write terminal fields to the flow and run; progress is cleared."""

    if not status.is_terminal:
        raise ValueError(f"Cannot finalize a run with non-terminal status '{status}'.")

    now = utc_now()
    flow_values: dict = {
        "analysis_status": status,
        "analysis_progress": None,
        "analysis_error": error_message,
        "analysis_duration_ms": duration_ms,
    }
    if set_last_analyzed_at:
        flow_values["last_analyzed_at"] = now
    session.execute(
        update(Flow)
        .where(Flow.id == flow_id)
        .values(**flow_values)
        .execution_options(synchronize_session=False)
    )
    session.execute(
        update(AnalysisRun)
        .where(AnalysisRun.id == run_id)
        .values(
            status=status,
            completed_at=now,
            duration_ms=duration_ms,
            error_message=error_message,
            items_analyzed=items_analyzed,
            batches_processed=batches_processed,
        )
        .execution_options(synchronize_session=False)
    )


def list_run_history(session: Session, flow_id: str, *, limit: int = 5) -> list[RunHistoryEntry]:
    """Return the newest runs first."""

    runs = session.scalars(
        select(AnalysisRun)
        .where(AnalysisRun.flow_id == flow_id)
        .order_by(AnalysisRun.started_at.desc())
        .limit(max(0, limit))
    )
    return [
        RunHistoryEntry(
            id=run.id,
            status=run.status,
            started_at=run.started_at,
            completed_at=run.completed_at,
            duration_ms=run.duration_ms,
            items_analyzed=run.items_analyzed,
            batches_processed=run.batches_processed,
            error_message=run.error_message,
        )
        for run in runs
    ]


def is_new_data_available(latest_item_at: datetime | None, last_analyzed_at: datetime | None) -> bool:
    """True when an item was created after the last successful analysis."""

    if latest_item_at is None:
        return False
    if last_analyzed_at is None:
        return True
    return latest_item_at > last_analyzed_at


def get_analysis_status(
    session: Session,
    flow_id: str,
    *,
    history_limit: int = 5,
) -> AnalysisStatusSnapshot:
    """Build the snapshot status pollers read; progress may be stale or null."""

    flow = get_flow_or_raise(session, flow_id)
    session.refresh(flow)

    latest_item_at = session.scalar(
        select(func.max(SourceItem.created_at)).where(SourceItem.flow_id == flow_id)
    )
    items_count = session.scalar(
        select(func.count()).select_from(SourceItem).where(SourceItem.flow_id == flow_id)
    )

    progress = (
        AnalysisProgress.model_validate(flow.analysis_progress)
        if flow.analysis_progress
        else None
    )
    return AnalysisStatusSnapshot(
        flow_id=flow.id,
        status=flow.analysis_status,
        progress=progress,
        error=flow.analysis_error,
        last_analyzed_at=flow.last_analyzed_at,
        analysis_duration_ms=flow.analysis_duration_ms,
        new_data_available=is_new_data_available(latest_item_at, flow.last_analyzed_at),
        items_count=int(items_count or 0),
        history=list_run_history(session, flow_id, limit=history_limit),
    )
