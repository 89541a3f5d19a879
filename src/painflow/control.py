"""In-process coordination between running analyses and cancel requests.

Cancellation is cooperative: the batch loop polls `is_cancel_requested`
between batches, so an LLM call already in flight always runs to completion.
Nothing here is durable; after a restart every flow reads as "not tracked"
and the Flow's persisted `analysis_status` remains the source of truth.
"""

from __future__ import annotations

import threading
from dataclasses import dataclass
from typing import Protocol


class AnalysisController(Protocol):
    """What the orchestrator needs from a run registry."""

    def mark_running(self, flow_id: str) -> None: ...

    def request_cancel(self, flow_id: str) -> bool: ...

    def is_cancel_requested(self, flow_id: str) -> bool: ...

    def clear(self, flow_id: str) -> None: ...


@dataclass
class _RunEntry:
    cancel_requested: bool = False


class RunController:
    """Thread-safe map from flow id to a cancellation flag."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._entries: dict[str, _RunEntry] = {}

    def mark_running(self, flow_id: str) -> None:
        """Track `flow_id`, replacing any stale entry with a fresh flag."""

        with self._lock:
            self._entries[flow_id] = _RunEntry()

    def request_cancel(self, flow_id: str) -> bool:
        """Flag a tracked run for cancellation; return whether one was tracked."""

        with self._lock:
            entry = self._entries.get(flow_id)
            if entry is None:
                return False
            entry.cancel_requested = True
            return True

    def is_cancel_requested(self, flow_id: str) -> bool:
        with self._lock:
            entry = self._entries.get(flow_id)
            return entry.cancel_requested if entry is not None else False

    def clear(self, flow_id: str) -> None:
        with self._lock:
            self._entries.pop(flow_id, None)

    def is_tracked(self, flow_id: str) -> bool:
        with self._lock:
            return flow_id in self._entries

    def tracked_flow_ids(self) -> list[str]:
        with self._lock:
            return sorted(self._entries)
