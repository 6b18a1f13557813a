"""
Credit ledger and settlement.

The ledger is the only writer of credit balances. Settlement is the single
credit-mutating step of a pipeline run and happens once, after the run
reaches a terminal outcome.

Guarantees:
1. Settlement for one principal is serialized (process lock + SQLite write lock)
2. A request settles at most once; retries return the existing entry
3. Neither balance component ever goes below zero
"""

import logging
import math
import sqlite3
import threading
import time
import uuid
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Dict, List, Optional

from flowsmith.config.loader import LedgerConfig, OveragePolicy
from flowsmith.storage.models import CreditBalance, LedgerEntry, SettlementOutcome
from flowsmith.storage.repository import LedgerRepository

from .errors import SettlementError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Depletion:
    """How a charge splits across the two balance components."""
    regular_used: int
    bonus_used: int
    shortfall: int

    @property
    def charged(self) -> int:
        return self.regular_used + self.bonus_used


def deplete(balance: CreditBalance, amount: int) -> Depletion:
    """Split a charge across regular and bonus credits.

    The preferred source is drained first, the remainder comes from the
    other one. Anything beyond both is returned as ``shortfall`` and is
    never collected.
    """
    if amount < 0:
        raise ValueError("amount must be >= 0")

    if balance.bonus_first:
        bonus_used = min(balance.bonus, amount)
        regular_used = min(balance.regular, amount - bonus_used)
    else:
        regular_used = min(balance.regular, amount)
        bonus_used = min(balance.bonus, amount - regular_used)

    return Depletion(
        regular_used=regular_used,
        bonus_used=bonus_used,
        shortfall=amount - regular_used - bonus_used,
    )


def rollover_regular(leftover: int, allocation: int, rollover_fraction: float) -> int:
    """Regular balance for a new period.

    allocation + min(leftover, floor(allocation * rollover_fraction))
    """
    cap = math.floor(allocation * rollover_fraction)
    return allocation + min(max(leftover, 0), cap)


class Ledger:
    """Per-principal serialized access to credit balances."""

    def __init__(
        self,
        repository: LedgerRepository,
        config: Optional[LedgerConfig] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.repository = repository
        self.config = config or LedgerConfig(db_path=repository.db_path)
        self._sleep = sleep
        self._locks: Dict[str, threading.Lock] = {}
        self._locks_guard = threading.Lock()

    def _principal_lock(self, principal_id: str) -> threading.Lock:
        with self._locks_guard:
            lock = self._locks.get(principal_id)
            if lock is None:
                lock = self._locks[principal_id] = threading.Lock()
            return lock

    def balance(self, principal_id: str) -> CreditBalance:
        """Read-only snapshot. Not locked; suitable for advisory checks only.

        Raises:
            ValueError: If the principal has no account
        """
        balance = self.repository.get_balance(principal_id)
        if balance is None:
            raise ValueError(f"Unknown principal: {principal_id}")
        return balance

    def find_entry(self, request_id: str) -> Optional[LedgerEntry]:
        """The entry already recorded for a request, if any."""
        return self.repository.find_entry(request_id)

    def open_account(
        self,
        principal_id: str,
        allocation: int,
        bonus: int = 0,
        tier: str = "pro",
        rollover_fraction: float = 0.5,
        bonus_first: bool = False,
    ) -> CreditBalance:
        """Create a balance seeded with one period's allocation."""
        if allocation < 0 or bonus < 0:
            raise ValueError("allocation and bonus must be >= 0")
        if not 0 <= rollover_fraction <= 1:
            raise ValueError("rollover_fraction must be in [0, 1]")
        balance = CreditBalance(
            principal_id=principal_id,
            regular=allocation,
            bonus=bonus,
            bonus_first=bonus_first,
            tier=tier.lower(),
            period_allocation=allocation,
            rollover_fraction=rollover_fraction,
        )
        self.repository.create_account(balance)
        logger.info("Opened account %s with %d regular + %d bonus credits",
                    principal_id, allocation, bonus)
        return balance

    def settle(
        self,
        request_id: str,
        principal_id: str,
        outcome: SettlementOutcome,
        amount: int,
        detail: str = "",
    ) -> LedgerEntry:
        """Record the terminal outcome of a request and charge for it.

        Storage errors are retried with ``request_id`` as idempotency key;
        a retry after a commit that was not acknowledged finds the existing
        entry and returns it without charging again.

        Args:
            request_id: Generation request id, the idempotency key
            principal_id: Account to charge
            outcome: SUCCESS to charge ``amount``, FAILURE for a zero-cost audit entry
            amount: Actual cost in credits (ignored for FAILURE)
            detail: Free-text note stored with the entry

        Returns:
            The ledger entry for this request

        Raises:
            SettlementError: If storage keeps failing after all attempts
            ValueError: If the principal has no account
        """
        last_error: Optional[Exception] = None
        for attempt in range(1, self.config.settle_attempts + 1):
            try:
                return self._settle_once(request_id, principal_id, outcome, amount, detail)
            except sqlite3.Error as e:
                last_error = e
                logger.warning("Settlement attempt %d/%d for request %s failed: %s",
                               attempt, self.config.settle_attempts, request_id, e)
                if attempt < self.config.settle_attempts:
                    self._sleep(self.config.retry_backoff_seconds * attempt)

        raise SettlementError(
            f"Ledger write for request {request_id} failed after "
            f"{self.config.settle_attempts} attempts: {last_error}"
        ) from last_error

    def _settle_once(
        self,
        request_id: str,
        principal_id: str,
        outcome: SettlementOutcome,
        amount: int,
        detail: str,
    ) -> LedgerEntry:
        with self._principal_lock(principal_id), \
                self.repository.locked_account(principal_id) as txn:
            existing = txn.find_entry(request_id)
            if existing is not None:
                logger.info("Request %s already settled (%s); not charging again",
                            request_id, existing.outcome.value)
                return existing

            before = txn.balance()
            requested = amount if outcome is not SettlementOutcome.FAILURE else 0
            depletion = deplete(before, requested)

            if depletion.shortfall:
                if self.config.overage_policy is OveragePolicy.REJECT:
                    outcome = SettlementOutcome.FAILURE
                    depletion = Depletion(0, 0, 0)
                    detail = _join(detail, (
                        f"rejected: actual cost {requested} exceeds balance {before.total}"
                    ))
                else:
                    outcome = SettlementOutcome.PARTIAL
                    detail = _join(detail, (
                        f"overage: {depletion.shortfall} credit(s) uncollected"
                    ))

            entry = LedgerEntry(
                entry_id=str(uuid.uuid4()),
                request_id=request_id,
                principal_id=principal_id,
                outcome=outcome,
                requested_amount=requested,
                amount=depletion.charged,
                shortfall=depletion.shortfall,
                regular_before=before.regular,
                bonus_before=before.bonus,
                regular_after=before.regular - depletion.regular_used,
                bonus_after=before.bonus - depletion.bonus_used,
                regular_used=depletion.regular_used,
                bonus_used=depletion.bonus_used,
                created_at=datetime.now(),
                detail=detail,
            )
            if depletion.charged:
                txn.write_balance(entry.regular_after, entry.bonus_after)
            txn.insert_entry(entry)

        logger.info(
            "Settled request %s for %s: %s, charged %d (%d regular + %d bonus), shortfall %d",
            request_id, principal_id, entry.outcome.value, entry.amount,
            entry.regular_used, entry.bonus_used, entry.shortfall,
        )
        return entry

    def rollover(self, principal_id: str) -> CreditBalance:
        """Start a new billing period for one principal.

        Regular credits reset to the allocation plus the capped leftover;
        bonus credits are untouched.
        """
        with self._principal_lock(principal_id), \
                self.repository.locked_account(principal_id) as txn:
            before = txn.balance()
            regular = rollover_regular(before.regular, before.period_allocation,
                                       before.rollover_fraction)
            txn.write_balance(regular, before.bonus)

        logger.info("Rolled over %s: regular %d -> %d (allocation %d)",
                    principal_id, before.regular, regular, before.period_allocation)
        return self.balance(principal_id)

    def grant_bonus(self, principal_id: str, amount: int) -> CreditBalance:
        """Add a one-time grant to the non-expiring bonus balance."""
        if amount <= 0:
            raise ValueError("bonus grant must be > 0")
        with self._principal_lock(principal_id), \
                self.repository.locked_account(principal_id) as txn:
            before = txn.balance()
            txn.write_balance(before.regular, before.bonus + amount)

        logger.info("Granted %d bonus credits to %s", amount, principal_id)
        return self.balance(principal_id)

    def set_preference(self, principal_id: str, bonus_first: bool) -> CreditBalance:
        """Set the depletion order consulted at settlement time."""
        with self._principal_lock(principal_id), \
                self.repository.locked_account(principal_id) as txn:
            txn.balance()
            txn.write_preference(bonus_first)
        return self.balance(principal_id)

    def entries(self, principal_id: Optional[str] = None, limit: int = 100) -> List[LedgerEntry]:
        return self.repository.list_entries(principal_id, limit)


def _join(detail: str, note: str) -> str:
    return f"{detail}; {note}" if detail else note


def low_balance_warning(balance: CreditBalance) -> Optional[str]:
    """Warning text for nearly exhausted balances, or None."""
    if balance.total == 0:
        return "You're out of credits. Add credits to keep generating workflows."
    if balance.total < 3:
        return f"Only {balance.total} credit{'s' if balance.total > 1 else ''} remaining."
    if balance.total < 5:
        return f"You have {balance.total} credits remaining."
    return None
