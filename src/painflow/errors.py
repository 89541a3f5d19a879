"""Error taxonomy shared by the analysis pipeline and flow commands."""

from __future__ import annotations


class PainflowError(Exception):
    """Base class for all painflow errors."""

    code = "painflow_error"


class PreconditionError(PainflowError):
    """Raised synchronously before any state is mutated."""

    code = "precondition_failed"


class FlowNotFoundError(PreconditionError):
    code = "flow_not_found"

    def __init__(self, flow_id: str) -> None:
        super().__init__(f"Flow '{flow_id}' not found.")
        self.flow_id = flow_id


class ClusterNotFoundError(PreconditionError):
    code = "cluster_not_found"

    def __init__(self, cluster_id: str, *, role: str = "Cluster") -> None:
        super().__init__(f"{role} '{cluster_id}' not found.")
        self.cluster_id = cluster_id


class ClusterMemberNotFoundError(PreconditionError):
    code = "member_not_found"

    def __init__(self, member_id: str) -> None:
        super().__init__(f"Member '{member_id}' not found in this cluster.")
        self.member_id = member_id


class SourceItemNotFoundError(PreconditionError):
    code = "item_not_found"

    def __init__(self, item_id: str) -> None:
        super().__init__(f"Item '{item_id}' not found.")
        self.item_id = item_id


class NoItemsToAnalyzeError(PreconditionError):
    code = "no_items"

    def __init__(self, flow_id: str) -> None:
        super().__init__(f"Flow '{flow_id}' has no items to analyze.")
        self.flow_id = flow_id


class AnalysisAlreadyRunningError(PreconditionError):
    code = "analysis_running"

    def __init__(self, flow_id: str) -> None:
        super().__init__(f"Analysis already running for flow '{flow_id}'.")
        self.flow_id = flow_id


class NoActiveAnalysisError(PreconditionError):
    code = "no_active_analysis"

    def __init__(self, flow_id: str) -> None:
        super().__init__(f"No running analysis to cancel for flow '{flow_id}'.")
        self.flow_id = flow_id


class InvalidMergeError(PreconditionError):
    code = "invalid_merge"


class InvalidInputError(PreconditionError):
    code = "invalid_input"


class LLMUnavailableError(PainflowError):
    """Raised when the LLM endpoint cannot be reached or does not answer in time."""

    code = "llm_unavailable"


class AnalysisSetupError(PainflowError):
    """Raised when items cannot be partitioned into batches."""

    code = "analysis_setup_failed"


class AnalysisInternalError(PainflowError):
    """Generic wrapper for unexpected failures during an analysis invocation."""

    code = "internal_error"

    def __init__(self, message: str, *, details: str | None = None) -> None:
        super().__init__(message)
        self.details = details
