"""
Warden Update Ledger

Event-sourced bookkeeping for applying and rolling back local updates:
an append-only event log, a cached record per update, the lifecycle state
machine and crash recovery.
"""

__version__ = "0.1.0"
