"""
Workflow synthesis pipeline.

Drives one request through every stage and settles it exactly once:

    pre-check -> exemplars -> blueprint -> modules -> assembly -> settlement

A run either returns a PipelineResult with a charged ledger entry, or
raises the PipelineError of the stage that aborted it, with the zero-cost
failure entry attached as ``ledger_entry``.
"""

import logging
import time
from dataclasses import dataclass
from typing import Callable, Optional, Sequence, Tuple

from flowsmith.config.loader import PipelineConfig
from flowsmith.sdk.inference import InferenceGateway
from flowsmith.storage.models import LedgerEntry, SettlementOutcome

from .admission import AdmissionDecision, pre_check
from .assembly import assemble
from .blueprint import BlueprintArchitect
from .deadline import Deadline
from .errors import AlreadySettled, InsufficientCredits, PipelineError, SettlementError
from .exemplars import CORPUS, Exemplar, select_exemplars
from .instructions import render_setup_instructions
from .ledger import Ledger
from .models import Blueprint, WorkflowGraph
from .pricing import calculate_actual_cost
from .request import GenerationRequest
from .synthesis import ModuleSynthesizer
from .token_counter import TokenUsage, UsageMeter

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PipelineResult:
    """Everything a caller gets back from a successful run."""
    graph: WorkflowGraph
    blueprint: Blueprint
    ledger_entry: LedgerEntry
    estimated_cost: int
    actual_cost: int
    usage: TokenUsage
    setup_instructions: str
    exemplars: Tuple[str, ...] = ()


class WorkflowPipeline:
    """Turns generation requests into validated workflow graphs."""

    def __init__(
        self,
        gateway: InferenceGateway,
        ledger: Ledger,
        config: Optional[PipelineConfig] = None,
        corpus: Sequence[Exemplar] = CORPUS,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.gateway = gateway
        self.ledger = ledger
        self.config = config or PipelineConfig()
        self.corpus = corpus
        self._clock = clock
        self.architect = BlueprintArchitect(gateway, self.config)
        self.synthesizer = ModuleSynthesizer(gateway, self.config)

    def estimate(self, request: GenerationRequest) -> AdmissionDecision:
        """Run the pre-check alone. Writes nothing, not even a failure entry."""
        balance = self.ledger.balance(request.principal_id)
        return pre_check(request, balance, self.config.pricing, self.config.admission)

    def run(self, request: GenerationRequest) -> PipelineResult:
        """Run every stage for one request.

        A request that already has a ledger entry is not run again.

        Raises:
            PipelineError: The typed error of the failing stage
            AlreadySettled: If the request was settled by an earlier run
            ValueError: If the principal has no account
        """
        deadline = Deadline(self.config.pipeline.deadline_seconds, clock=self._clock)
        meter = UsageMeter()
        balance = self.ledger.balance(request.principal_id)

        existing = self.ledger.find_entry(request.request_id)
        if existing is not None:
            raise _already_settled(existing)
        logger.info("Starting request %s for %s", request.request_id, request.principal_id)

        try:
            decision = pre_check(request, balance, self.config.pricing, self.config.admission)

            exemplars = select_exemplars(
                request, self.config.pipeline.exemplar_count, self.corpus, decision.estimate
            )
            logger.info("Selected exemplars: %s", ", ".join(e.name for e in exemplars) or "none")

            blueprint = self.architect.plan(request, exemplars, deadline, meter)
            module_graphs = self.synthesizer.synthesize_all(
                blueprint, exemplars, deadline, meter, request.platform
            )

            deadline.check("assembly")
            graph = assemble(blueprint, module_graphs, request.platform)
            instructions = render_setup_instructions(blueprint, graph)

            deadline.check("settlement")
        except PipelineError as e:
            e.ledger_entry = self._settle_failure(request, e)
            raise

        usage = meter.total
        actual_cost = calculate_actual_cost(usage, self.config.pricing)
        try:
            entry = self.settle(
                request,
                actual_cost,
                detail=f"{meter.call_count} inference calls, {usage.total_tokens} tokens",
            )
        except SettlementError as e:
            e.request_id = request.request_id
            e.actual_cost = actual_cost
            e.graph = graph
            e.usage = usage
            logger.error("Request %s produced a workflow but could not be settled: %s",
                         request.request_id, e.detail)
            raise

        logger.info("Request %s complete: estimated %d, charged %d credits (%s)",
                    request.request_id, decision.estimated_cost, entry.amount, entry.outcome.value)
        return PipelineResult(
            graph=graph,
            blueprint=blueprint,
            ledger_entry=entry,
            estimated_cost=decision.estimated_cost,
            actual_cost=actual_cost,
            usage=usage,
            setup_instructions=instructions,
            exemplars=tuple(e.name for e in exemplars),
        )

    def settle(self, request: GenerationRequest, actual_cost: int, detail: str = "") -> LedgerEntry:
        """Charge a produced workflow.

        ``run`` settles through here. After a ``SettlementError`` the caller
        can call it again with the error's ``actual_cost``; the request id
        keeps the charge to one.

        Raises:
            InsufficientCredits: The overage policy rejected the charge
            AlreadySettled: An aborted run already recorded this request
            SettlementError: Storage kept failing
        """
        entry = self.ledger.settle(
            request.request_id,
            request.principal_id,
            SettlementOutcome.SUCCESS,
            actual_cost,
            detail=detail,
        )
        if entry.outcome is not SettlementOutcome.FAILURE:
            return entry

        # zero-cost failures come from aborted runs, rejections carry the cost
        if entry.requested_amount == 0:
            raise _already_settled(entry)

        available = entry.regular_before + entry.bonus_before
        error = InsufficientCredits(
            f"Actual cost of {entry.requested_amount} credits exceeds the balance of "
            f"{available}; the workflow was withheld.",
            required=entry.requested_amount,
            available=available,
            stage="settlement",
        )
        error.ledger_entry = entry
        logger.error("Request %s withheld at settlement: %s", request.request_id, error.detail)
        raise error

    def _settle_failure(self, request: GenerationRequest, error: PipelineError) -> Optional[LedgerEntry]:
        logger.error("Request %s aborted in %s (%s): %s",
                     request.request_id, error.stage, error.kind, error.detail)
        try:
            return self.ledger.settle(
                request.request_id,
                request.principal_id,
                SettlementOutcome.FAILURE,
                0,
                detail=f"{error.stage}/{error.kind}: {error.detail}",
            )
        except SettlementError as e:
            logger.error("Could not record failure for request %s: %s", request.request_id, e.detail)
            return None


def _already_settled(entry: LedgerEntry) -> AlreadySettled:
    error = AlreadySettled(
        f"Request {entry.request_id} was already settled as {entry.outcome.value} "
        f"({entry.amount} credits charged)"
    )
    error.ledger_entry = entry
    return error
