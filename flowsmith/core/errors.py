"""
Pipeline error taxonomy.

Every aborted pipeline surfaces one of these. Each carries the stage that
failed, a short machine-readable kind and a human-readable detail. The
ledger entry written for the aborted run is attached by the pipeline so
callers can show the (always zero) charge.
"""

from typing import Any, Optional


class PipelineError(Exception):
    """Base class for typed, terminal pipeline failures."""

    stage = "pipeline"
    kind = "pipeline_error"

    def __init__(self, detail: str, stage: Optional[str] = None):
        super().__init__(detail)
        self.detail = detail
        if stage is not None:
            self.stage = stage
        self.ledger_entry = None

    def to_dict(self) -> dict:
        """Structured form handed to callers and the CLI."""
        return {"stage": self.stage, "kind": self.kind, "detail": self.detail}


class InsufficientCredits(PipelineError):
    """Balance cannot cover the estimated (or, under the reject policy, actual) cost."""
    stage = "admission"
    kind = "insufficient_credits"

    def __init__(self, detail: str, required: int = 0, available: int = 0,
                 stage: Optional[str] = None):
        super().__init__(detail, stage)
        self.required = required
        self.available = available


class TierNotPermitted(PipelineError):
    """The principal's subscription tier does not include this pipeline."""
    stage = "admission"
    kind = "tier_not_permitted"


class PlanningError(PipelineError):
    stage = "architect"
    kind = "planning_error"


class ModuleError(PipelineError):
    stage = "synthesis"
    kind = "module_error"

    def __init__(self, detail: str, module_name: str = "", attempts: int = 0,
                 stage: Optional[str] = None):
        super().__init__(detail, stage)
        self.module_name = module_name
        self.attempts = attempts


class AssemblyError(PipelineError):
    stage = "assembly"
    kind = "assembly_error"


class SettlementError(PipelineError):
    """Ledger write failed. Retried with the request id as idempotency key.

    When raised after a successful run, the produced graph and its actual
    cost ride along so the caller can settle again with
    ``WorkflowPipeline.settle`` instead of regenerating.
    """
    stage = "settlement"
    kind = "settlement_error"

    def __init__(self, detail: str, stage: Optional[str] = None):
        super().__init__(detail, stage)
        self.request_id: Optional[str] = None
        self.actual_cost: Optional[int] = None
        self.graph: Any = None
        self.usage: Any = None


class AlreadySettled(PipelineError):
    """The request already has a ledger entry; it is not run again."""
    stage = "admission"
    kind = "already_settled"


class PipelineTimeout(PipelineError):
    """The pipeline deadline expired before the run finished."""
    kind = "timeout"
