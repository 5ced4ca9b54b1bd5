"""
Warden CLI - Update ledger operations

Commands:
- warden apply/rollback - Run an update through its lifecycle
- warden show/list - Inspect update records
- warden log tail/inspect - Event log operations
- warden recover - Repair records left by a crash
- warden replay - Rebuild projections and verify the record cache
"""

__version__ = "0.1.0"
