"""
Test suite for the update ledger.

Focus areas:
- Event log ordering and atomicity
- Pending uniqueness and compare-and-swap in the record store
- State machine scenarios and failure handling
- Recovery after simulated crashes
- Projection determinism
"""
