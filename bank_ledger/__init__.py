"""
Bank Ledger

Customers, accounts and an atomic transaction ledger: deposits, withdrawals
and transfers that never leave a negative balance or a half-applied transfer.
All money is Decimal.
"""

__version__ = "1.0.0"
