# flowsmith/demo/seed_demo_data.py

from flowsmith.core.ledger import Ledger
from flowsmith.storage.repository import LedgerRepository

repository = LedgerRepository("flowsmith.db")
repository.initialize_schema()
ledger = Ledger(repository)

accounts = [
    # principal, allocation, bonus, tier
    ("demo-pro", 100, 10, "pro"),
    ("demo-agency", 500, 0, "agency"),
    ("demo-starter", 25, 5, "starter"),  # refused by admission: tier not allowed
    ("demo-low", 3, 1, "growth"),
]

for principal, allocation, bonus, tier in accounts:
    if repository.get_balance(principal) is None:
        ledger.open_account(principal, allocation, bonus=bonus, tier=tier)

ledger.set_preference("demo-pro", bonus_first=True)

print("Demo accounts created")
