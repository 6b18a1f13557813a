"""
Repository pattern for data access.

Credit balances and the append-only settlement ledger. Balance writes
only happen inside ``locked_account``, which holds the SQLite write lock
for the whole read-modify-write.
"""

from contextlib import contextmanager
from datetime import datetime
from typing import Iterator, List, Optional

import sqlite3

from .db import get_connection
from .models import CreditBalance, LedgerEntry, SettlementOutcome


_ENTRY_COLUMNS = """
    entry_id, request_id, principal_id, outcome, requested_amount, amount,
    shortfall, regular_before, bonus_before, regular_after, bonus_after,
    regular_used, bonus_used, created_at, detail
"""


def _row_to_balance(row: sqlite3.Row) -> CreditBalance:
    return CreditBalance(
        principal_id=row["principal_id"],
        regular=row["regular"],
        bonus=row["bonus"],
        bonus_first=bool(row["bonus_first"]),
        tier=row["tier"],
        period_allocation=row["period_allocation"],
        rollover_fraction=row["rollover_fraction"],
    )


def _row_to_entry(row: sqlite3.Row) -> LedgerEntry:
    return LedgerEntry(
        entry_id=row["entry_id"],
        request_id=row["request_id"],
        principal_id=row["principal_id"],
        outcome=SettlementOutcome(row["outcome"]),
        requested_amount=row["requested_amount"],
        amount=row["amount"],
        shortfall=row["shortfall"],
        regular_before=row["regular_before"],
        bonus_before=row["bonus_before"],
        regular_after=row["regular_after"],
        bonus_after=row["bonus_after"],
        regular_used=row["regular_used"],
        bonus_used=row["bonus_used"],
        created_at=datetime.fromisoformat(row["created_at"]),
        detail=row["detail"],
    )


class AccountTransaction:
    """Read-modify-write access to one principal's balance.

    Only handed out by ``LedgerRepository.locked_account`` while the
    transaction holds the database write lock.
    """

    def __init__(self, conn: sqlite3.Connection, principal_id: str):
        self._conn = conn
        self.principal_id = principal_id

    def balance(self) -> CreditBalance:
        """Current balance.

        Raises:
            ValueError: If the principal has no account
        """
        row = self._conn.execute(
            "SELECT * FROM credit_balance WHERE principal_id = ?",
            (self.principal_id,)
        ).fetchone()
        if row is None:
            raise ValueError(f"Unknown principal: {self.principal_id}")
        return _row_to_balance(row)

    def find_entry(self, request_id: str) -> Optional[LedgerEntry]:
        row = self._conn.execute(
            f"SELECT {_ENTRY_COLUMNS} FROM ledger_entry WHERE request_id = ?",
            (request_id,)
        ).fetchone()
        return _row_to_entry(row) if row else None

    def write_balance(self, regular: int, bonus: int) -> None:
        if regular < 0 or bonus < 0:
            raise ValueError("Balances cannot go below zero")
        self._conn.execute("""
            UPDATE credit_balance
            SET regular = ?, bonus = ?, updated_at = ?
            WHERE principal_id = ?
        """, (regular, bonus, datetime.now().isoformat(), self.principal_id))

    def write_preference(self, bonus_first: bool) -> None:
        self._conn.execute("""
            UPDATE credit_balance
            SET bonus_first = ?, updated_at = ?
            WHERE principal_id = ?
        """, (int(bonus_first), datetime.now().isoformat(), self.principal_id))

    def insert_entry(self, entry: LedgerEntry) -> None:
        """Append a settlement record. Entries are never updated or deleted."""
        self._conn.execute(f"""
            INSERT INTO ledger_entry ({_ENTRY_COLUMNS})
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
        """, (
            entry.entry_id,
            entry.request_id,
            entry.principal_id,
            entry.outcome.value,
            entry.requested_amount,
            entry.amount,
            entry.shortfall,
            entry.regular_before,
            entry.bonus_before,
            entry.regular_after,
            entry.bonus_after,
            entry.regular_used,
            entry.bonus_used,
            entry.created_at.isoformat(),
            entry.detail,
        ))


class LedgerRepository:
    """Repository for credit balances and ledger entries."""

    def __init__(self, db_path: str = "flowsmith.db"):
        """Initialize the repository with a database path.

        Args:
            db_path: Path to SQLite database file
        """
        self.db_path = db_path

    def initialize_schema(self) -> None:
        """Create the balance and ledger tables if they don't exist.

        ``ledger_entry.request_id`` is UNIQUE: a request settles once.
        """
        conn = get_connection(self.db_path)
        try:
            conn.executescript("""
                CREATE TABLE IF NOT EXISTS credit_balance (
                    principal_id TEXT PRIMARY KEY,
                    regular INTEGER NOT NULL CHECK (regular >= 0),
                    bonus INTEGER NOT NULL CHECK (bonus >= 0),
                    bonus_first INTEGER NOT NULL DEFAULT 0,
                    tier TEXT NOT NULL,
                    period_allocation INTEGER NOT NULL DEFAULT 0,
                    rollover_fraction REAL NOT NULL DEFAULT 0.5,
                    updated_at TEXT NOT NULL
                );

                CREATE TABLE IF NOT EXISTS ledger_entry (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    entry_id TEXT NOT NULL UNIQUE,
                    request_id TEXT NOT NULL UNIQUE,
                    principal_id TEXT NOT NULL REFERENCES credit_balance(principal_id),
                    outcome TEXT NOT NULL,
                    requested_amount INTEGER NOT NULL,
                    amount INTEGER NOT NULL,
                    shortfall INTEGER NOT NULL DEFAULT 0,
                    regular_before INTEGER NOT NULL,
                    bonus_before INTEGER NOT NULL,
                    regular_after INTEGER NOT NULL,
                    bonus_after INTEGER NOT NULL,
                    regular_used INTEGER NOT NULL,
                    bonus_used INTEGER NOT NULL,
                    created_at TEXT NOT NULL,
                    detail TEXT NOT NULL DEFAULT ''
                );

                CREATE INDEX IF NOT EXISTS idx_ledger_entry_principal
                    ON ledger_entry(principal_id, created_at);
            """)
        finally:
            conn.close()

    def create_account(self, balance: CreditBalance) -> None:
        """Insert a new balance row.

        Raises:
            ValueError: If the principal already has an account
        """
        conn = get_connection(self.db_path)
        try:
            conn.execute("""
                INSERT INTO credit_balance
                (principal_id, regular, bonus, bonus_first, tier,
                 period_allocation, rollover_fraction, updated_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?)
            """, (
                balance.principal_id,
                balance.regular,
                balance.bonus,
                int(balance.bonus_first),
                balance.tier,
                balance.period_allocation,
                balance.rollover_fraction,
                datetime.now().isoformat(),
            ))
        except sqlite3.IntegrityError:
            raise ValueError(f"Account already exists: {balance.principal_id}")
        finally:
            conn.close()

    def get_balance(self, principal_id: str) -> Optional[CreditBalance]:
        """Read-only snapshot of a balance, or None for unknown principals."""
        conn = get_connection(self.db_path)
        try:
            row = conn.execute(
                "SELECT * FROM credit_balance WHERE principal_id = ?",
                (principal_id,)
            ).fetchone()
            return _row_to_balance(row) if row else None
        finally:
            conn.close()

    def find_entry(self, request_id: str) -> Optional[LedgerEntry]:
        conn = get_connection(self.db_path)
        try:
            return AccountTransaction(conn, "").find_entry(request_id)
        finally:
            conn.close()

    def list_entries(self, principal_id: Optional[str] = None, limit: int = 100) -> List[LedgerEntry]:
        """Ledger entries, newest first.

        Args:
            principal_id: Optional filter for one principal
            limit: Maximum number of entries to return
        """
        conn = get_connection(self.db_path)
        try:
            query = f"SELECT {_ENTRY_COLUMNS} FROM ledger_entry"
            params: list = []
            if principal_id:
                query += " WHERE principal_id = ?"
                params.append(principal_id)
            query += " ORDER BY id DESC LIMIT ?"
            params.append(limit)
            return [_row_to_entry(row) for row in conn.execute(query, params).fetchall()]
        finally:
            conn.close()

    @contextmanager
    def locked_account(self, principal_id: str) -> Iterator[AccountTransaction]:
        """Exclusive read-modify-write scope for one principal's balance.

        ``BEGIN IMMEDIATE`` takes the database write lock up front, so two
        writers can never both read the same stale balance. Commits when
        the block exits normally, rolls back on any exception.
        """
        conn = get_connection(self.db_path)
        try:
            conn.execute("BEGIN IMMEDIATE")
            try:
                yield AccountTransaction(conn, principal_id)
            except BaseException:
                conn.execute("ROLLBACK")
                raise
            conn.execute("COMMIT")
        finally:
            conn.close()
