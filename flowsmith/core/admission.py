"""
Admission control.

Advisory pre-check run before any inference call. It sizes the request,
prices it by tier and compares against a balance snapshot. It never
reserves or deducts credits: the real charge is only known after the
graph exists and is taken by the ledger at settlement.

Check order:
1. Subscription tier - the pipeline is only available on some tiers
2. Balance - regular + bonus must cover the estimated cost
"""

import logging
from dataclasses import dataclass

from flowsmith.config.loader import AdmissionConfig, PricingConfig
from flowsmith.storage.models import CreditBalance

from .complexity import ComplexityEstimate, score_request
from .errors import InsufficientCredits, TierNotPermitted
from .pricing import estimate_cost
from .request import GenerationRequest

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AdmissionDecision:
    """Outcome of a passed pre-check."""
    estimate: ComplexityEstimate
    estimated_cost: int
    balance: CreditBalance


def pre_check(
    request: GenerationRequest,
    balance: CreditBalance,
    pricing: PricingConfig,
    admission: AdmissionConfig,
) -> AdmissionDecision:
    """Decide whether a request may start.

    Args:
        request: The generation request
        balance: Read-only balance snapshot for the requesting principal
        pricing: Tier bands and tier costs
        admission: Tier gating

    Returns:
        AdmissionDecision with the estimate and its advisory cost

    Raises:
        TierNotPermitted: If the principal's tier excludes the pipeline
        InsufficientCredits: If regular + bonus < estimated cost
    """
    if balance.tier.lower() not in admission.allowed_tiers:
        raise TierNotPermitted(
            f"Workflow synthesis is not available on the '{balance.tier}' plan"
        )

    estimate = score_request(request.prompt, request.integrations, pricing.tier_bands)
    cost = estimate_cost(estimate, pricing)

    if balance.total < cost:
        raise InsufficientCredits(
            f"Insufficient credits. You need {cost} credit{'s' if cost != 1 else ''} "
            f"but only have {balance.total} total "
            f"({balance.regular} regular + {balance.bonus} bonus).",
            required=cost,
            available=balance.total,
        )

    logger.info("Admitted request %s: score %d (%s), estimated cost %d, balance %d",
                request.request_id, estimate.score, estimate.tier.value, cost, balance.total)
    return AdmissionDecision(estimate=estimate, estimated_cost=cost, balance=balance)
