"""
Verification Gate

Pre-approval gate over the latest verifier report.

PRINCIPLE: A phase cannot be declared complete, and approval cannot be
offered, while the verifier reports a non-clean state.

    exit_code = 0  → blocked: False → approval may be offered
    exit_code ≠ 0  → blocked: True  → approval stays closed until remediated
    no report      → blocked: True  → the verifier must run first

The gate is a pure read. It caches nothing: every check re-reads the latest
snapshot through the supplied reader.
"""

from dataclasses import dataclass
from typing import Callable, Optional, Dict, Any

from .verification_model import VeritasReport, VeritasExitCode

ReadLatestReport = Callable[[], Optional[VeritasReport]]


@dataclass(frozen=True)
class GateResult:
    """Outcome of a gate check. Transient, never persisted."""
    blocked: bool
    reason: Optional[str] = None
    details: Optional[VeritasReport] = None
    wired: Optional[str] = None
    not_wired: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "blocked": self.blocked,
            "reason": self.reason,
            "details": self.details.to_dict() if self.details else None,
            "wired": self.wired,
            "not_wired": self.not_wired,
        }


class VerificationGate:
    """Stateless predicate over the latest verification report."""

    def __init__(self, read_latest_report: ReadLatestReport):
        self._read_latest_report = read_latest_report

    def check(self, phase: str) -> GateResult:
        """
        Decide whether approval may be offered for a phase.

        The phase is used only in the failure message.
        """
        report = self._read_latest_report()

        if report is None:
            return GateResult(
                blocked=True,
                reason=f"Veritas report missing for Phase {phase}. Run the verifier first.",
            )

        if report.exit_code != 0:
            reason = f"{len(report.critical_missing)} CRITICAL module(s) NOT_WIRED"
            if report.exit_code == VeritasExitCode.VERIFIER_FAILED:
                reason = f"Verifier failed to produce a trustworthy result; {reason}"
            return GateResult(
                blocked=True,
                reason=reason,
                details=report,
            )

        return GateResult(
            blocked=False,
            wired=report.wired_ratio,
            not_wired=report.not_wired,
        )
