"""
Credit pricing.

Maps complexity tiers to advisory pre-check costs and converts measured
token usage into the credits actually charged at settlement.
"""

from decimal import Decimal, ROUND_UP

from flowsmith.config.loader import PricingConfig

from .complexity import ComplexityEstimate
from .token_counter import TokenUsage


def estimate_cost(estimate: ComplexityEstimate, pricing: PricingConfig) -> int:
    """Advisory cost for the pre-check, looked up from the tier table."""
    return pricing.tier_costs[estimate.tier.value]


def calculate_actual_cost(usage: TokenUsage, pricing: PricingConfig) -> int:
    """Calculate credits for measured usage with conservative rounding.

    Args:
        usage: Token usage summed across every inference call of the run
        pricing: Pricing configuration

    Returns:
        Credits rounded UP to a whole credit and clamped to
        [minimum_charge, maximum_charge]
    """
    credits = Decimal(usage.total_tokens) / Decimal(pricing.tokens_per_credit)
    rounded = int(credits.quantize(Decimal("1"), rounding=ROUND_UP))
    return max(pricing.minimum_charge, min(pricing.maximum_charge, rounded))
