"""
Account Service

Monetary accounts with deposits, withdrawals and fee-bearing transfers,
daily limits that reset per calendar day, an append-only activity ledger
and optimistic concurrency control with bounded retries.
"""

__version__ = "1.0.0"
