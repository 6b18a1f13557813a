"""
Data models for storage layer.

Defines the credit balance and ledger entry records.
"""

from dataclasses import dataclass
from datetime import datetime
from enum import Enum


class SettlementOutcome(Enum):
    """Terminal outcome recorded for one generation request."""
    SUCCESS = "success"
    FAILURE = "failure"
    PARTIAL = "partial"  # charged down to zero, shortfall left uncollected


@dataclass(frozen=True)
class CreditBalance:
    """Snapshot of one principal's two-component balance.

    Only the ledger writes balances; everything else reads snapshots.
    """
    principal_id: str
    regular: int
    bonus: int
    bonus_first: bool = False
    tier: str = "pro"
    period_allocation: int = 0
    rollover_fraction: float = 0.5

    @property
    def total(self) -> int:
        return self.regular + self.bonus


@dataclass(frozen=True)
class LedgerEntry:
    """Immutable record of one settlement.

    Append-only: exactly one entry per generation request, never updated
    or deleted once written.
    """
    entry_id: str
    request_id: str
    principal_id: str
    outcome: SettlementOutcome
    requested_amount: int
    amount: int
    shortfall: int
    regular_before: int
    bonus_before: int
    regular_after: int
    bonus_after: int
    regular_used: int
    bonus_used: int
    created_at: datetime
    detail: str = ""
