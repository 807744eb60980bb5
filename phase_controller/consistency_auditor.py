"""
Consistency Auditor

Cross-checks the verifier signal against the Known Incomplete ledger.

    discrepancy = (exit_code != 0) AND (no unresolved ledger items)

The exit code is either supplied explicitly by the caller or taken from the
latest stored report. A discrepancy is a standing alert for a human reviewer;
it is never auto-remediated. Without any report there is no exit code to
compare, so no discrepancy is raised.
"""

import logging
from dataclasses import dataclass
from typing import Optional, Dict, Any

from .known_incomplete import KnownIncompleteLedger
from .verification_gate import ReadLatestReport

logger = logging.getLogger("consistency_auditor")


@dataclass(frozen=True)
class ConsistencyAudit:
    """Result of one audit. Transient."""
    exit_code: Optional[int]
    unresolved_count: int
    discrepancy: bool

    def to_dict(self) -> Dict[str, Any]:
        return {
            "exit_code": self.exit_code,
            "unresolved_count": self.unresolved_count,
            "discrepancy": self.discrepancy,
        }


class ConsistencyAuditor:
    """Derived check over the ledger and the latest verification report."""

    def __init__(self, ledger: KnownIncompleteLedger, read_latest_report: ReadLatestReport):
        self._ledger = ledger
        self._read_latest_report = read_latest_report

    def audit(self, exit_code: Optional[int] = None) -> ConsistencyAudit:
        if exit_code is None:
            report = self._read_latest_report()
            exit_code = report.exit_code if report is not None else None

        unresolved_count = len(self._ledger.get_unresolved())
        discrepancy = False
        if exit_code is not None:
            discrepancy = not self._ledger.validate_consistency(exit_code)

        return ConsistencyAudit(
            exit_code=exit_code,
            unresolved_count=unresolved_count,
            discrepancy=discrepancy,
        )

    def has_discrepancy(self, exit_code: Optional[int] = None) -> bool:
        return self.audit(exit_code).discrepancy
