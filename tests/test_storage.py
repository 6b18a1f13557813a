"""
Unit tests for storage layer.

Tests schema creation, account rows, ledger entries and the locked
read-modify-write scope.
"""

import os
import sqlite3
import tempfile
from datetime import datetime

import pytest

from flowsmith.storage.db import get_connection
from flowsmith.storage.models import CreditBalance, LedgerEntry, SettlementOutcome
from flowsmith.storage.repository import LedgerRepository


def _entry(request_id="req-1", entry_id="e-1", amount=4):
    return LedgerEntry(
        entry_id=entry_id,
        request_id=request_id,
        principal_id="p1",
        outcome=SettlementOutcome.SUCCESS,
        requested_amount=amount,
        amount=amount,
        shortfall=0,
        regular_before=10,
        bonus_before=0,
        regular_after=10 - amount,
        bonus_after=0,
        regular_used=amount,
        bonus_used=0,
        created_at=datetime(2025, 1, 1, 12, 0, 0),
        detail="test",
    )


class TestStorageSchema:
    """Test database schema creation and structure."""

    def test_schema_creation(self):
        """Verify tables are created correctly."""
        with tempfile.TemporaryDirectory() as temp_dir:
            db_path = os.path.join(temp_dir, "test.db")
            LedgerRepository(db_path).initialize_schema()

            conn = get_connection(db_path)
            try:
                cursor = conn.execute("""
                    SELECT name FROM sqlite_master
                    WHERE type='table' AND name IN ('credit_balance', 'ledger_entry')
                    ORDER BY name
                """)
                assert [row[0] for row in cursor.fetchall()] == ["credit_balance", "ledger_entry"]

                cursor = conn.execute("PRAGMA table_info(credit_balance)")
                column_names = [col[1] for col in cursor.fetchall()]
                assert column_names == [
                    'principal_id', 'regular', 'bonus', 'bonus_first', 'tier',
                    'period_allocation', 'rollover_fraction', 'updated_at'
                ]
            finally:
                conn.close()

    def test_schema_creation_is_repeatable(self):
        with tempfile.TemporaryDirectory() as temp_dir:
            repository = LedgerRepository(os.path.join(temp_dir, "test.db"))
            repository.initialize_schema()
            repository.initialize_schema()


class TestRepository:
    """Test account and entry persistence."""

    def setup_method(self):
        self.temp_dir = tempfile.mkdtemp()
        self.repository = LedgerRepository(os.path.join(self.temp_dir, "test.db"))
        self.repository.initialize_schema()
        self.repository.create_account(CreditBalance(
            principal_id="p1", regular=10, bonus=2, tier="agency",
            period_allocation=10, rollover_fraction=0.25,
        ))

    def teardown_method(self):
        import shutil
        shutil.rmtree(self.temp_dir, ignore_errors=True)

    def test_balance_round_trip(self):
        balance = self.repository.get_balance("p1")
        assert balance.regular == 10
        assert balance.bonus == 2
        assert balance.tier == "agency"
        assert balance.bonus_first is False
        assert balance.rollover_fraction == 0.25

    def test_unknown_principal_returns_none(self):
        assert self.repository.get_balance("nobody") is None

    def test_duplicate_account_rejected(self):
        with pytest.raises(ValueError):
            self.repository.create_account(CreditBalance(principal_id="p1", regular=0, bonus=0))

    def test_locked_account_commits(self):
        with self.repository.locked_account("p1") as txn:
            txn.write_balance(6, 2)
            txn.insert_entry(_entry())

        assert self.repository.get_balance("p1").regular == 6
        stored = self.repository.find_entry("req-1")
        assert stored.amount == 4
        assert stored.outcome == SettlementOutcome.SUCCESS
        assert stored.created_at == datetime(2025, 1, 1, 12, 0, 0)

    def test_locked_account_rolls_back_on_error(self):
        with pytest.raises(RuntimeError):
            with self.repository.locked_account("p1") as txn:
                txn.write_balance(0, 0)
                raise RuntimeError("abort")

        assert self.repository.get_balance("p1").regular == 10

    def test_negative_balance_rejected(self):
        with pytest.raises(ValueError):
            with self.repository.locked_account("p1") as txn:
                txn.write_balance(-1, 0)

    def test_request_settles_once(self):
        with self.repository.locked_account("p1") as txn:
            txn.insert_entry(_entry())

        with pytest.raises(sqlite3.IntegrityError):
            with self.repository.locked_account("p1") as txn:
                txn.insert_entry(_entry(entry_id="e-2"))

    def test_preference_written(self):
        with self.repository.locked_account("p1") as txn:
            txn.write_preference(True)
        assert self.repository.get_balance("p1").bonus_first is True

    def test_list_entries_filter_and_limit(self):
        with self.repository.locked_account("p1") as txn:
            for i in range(5):
                txn.insert_entry(_entry(request_id=f"req-{i}", entry_id=f"e-{i}", amount=1))

        entries = self.repository.list_entries("p1", limit=3)
        assert [entry.request_id for entry in entries] == ["req-4", "req-3", "req-2"]
        assert self.repository.list_entries("someone-else") == []
