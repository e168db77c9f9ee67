"""
Ledger subsystem.

Components:
- ledger_models.py: Transaction, Breakdown, summaries
- ledger_store.py: append-only SQLite transaction log, balances and reports
"""
