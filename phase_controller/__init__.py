"""
Phase Controller Module

Control plane for a human-approved, multi-phase delivery pipeline.
A fixed chain of phases advances one approval at a time, gated by an external
verifier and accompanied by an append-only record of what is still broken.

Components:
- Phase Sequencer: records approved outputs, assembles the next phase's input
  from predecessor outputs, starts the next phase, converts start failures
  into blocked phases
- Verification Gate: blocks approval while the latest verifier report is
  missing or not clean (exit_code != 0)
- Known Incomplete Ledger: append-only defects; RESOLVED only with evidence
- Consistency Auditor: flags a DISCREPANCY when the verifier fails but no
  unresolved item is disclosed
- HITL Manager: approval queue; auto-rejects when the gate is blocked
- Approval Pipeline: explicitly constructed instance wiring all of the above
- HTTP API: FastAPI surface over one pipeline instance

Persistence is best-effort through a key-value PersistenceBackend (file or
memory). Storage failures are logged and never interrupt the pipeline.
"""

__version__ = "1.0.0"
