"""
Test Suite for the Phase Approval Pipeline

This package contains all tests for the control plane components:
- Phase sequencer and phase chain rules
- Verification gate, report store and consistency auditor
- Known Incomplete ledger
- HITL manager, pipeline facade and HTTP API
"""
