"""
Verification Report Store

Holds the LATEST verifier snapshot under a single namespaced key.

- save_report() replaces the previous snapshot (no history is kept)
- load_report() returns None when no report exists or the stored one is corrupt
- Storage failures are logged, never raised
"""

import logging
from datetime import datetime
from typing import Optional

from .errors import ValidationError
from .persistence import PersistenceBackend, VERITAS_REPORT_KEY, load_json, save_json
from .verification_model import VeritasReport

logger = logging.getLogger("verification_store")


class VerificationReportStore:
    """Latest-snapshot store for verifier reports."""

    def __init__(self, backend: PersistenceBackend):
        self._backend = backend

    def save_report(self, report: VeritasReport) -> VeritasReport:
        """
        Persist a report as the latest snapshot.

        Stamps the current time when the verifier did not supply one.
        Returns the stored report.
        """
        if not report.timestamp:
            report = report.with_timestamp(datetime.utcnow().isoformat())

        if not save_json(self._backend, VERITAS_REPORT_KEY, report.to_dict()):
            logger.warning("Verification report not persisted, gate will see the previous snapshot")
        else:
            logger.info(
                f"Verification report saved: exit_code={report.exit_code}, "
                f"wired={report.wired_ratio}, critical_missing={len(report.critical_missing)}"
            )
        return report

    def load_report(self) -> Optional[VeritasReport]:
        """Read the latest snapshot, or None if there is none."""
        data = load_json(self._backend, VERITAS_REPORT_KEY)
        if data is None:
            return None
        if not isinstance(data, dict):
            logger.warning("Stored verification report is not an object, ignoring")
            return None
        try:
            return VeritasReport.from_dict(data)
        except ValidationError as e:
            logger.warning(f"Stored verification report is invalid, ignoring: {e}")
            return None

    def clear(self) -> None:
        if not self._backend.delete(VERITAS_REPORT_KEY):
            logger.warning("Could not clear stored verification report")
