"""
Verification Report Model

Immutable snapshot of the last external verifier run ("Veritas").

Exit codes:
    0 = all critical modules WIRED, clean
    1 = one or more critical modules NOT_WIRED
    2 = verifier failed to produce a trustworthy result

The pipeline never computes a report. It only consumes the latest one.
"""

from dataclasses import dataclass, field
from enum import IntEnum
from typing import Optional, Dict, Any, Tuple

from .errors import ValidationError


class VeritasExitCode(IntEnum):
    """
    Verifier exit code.

    This enum is LOCKED - EXACTLY 3 values.
    """
    CLEAN = 0
    CRITICAL_NOT_WIRED = 1
    VERIFIER_FAILED = 2


@dataclass(frozen=True)
class VeritasReport:
    """Latest verifier snapshot. Read-only."""
    total: int
    wired: int
    not_wired: int
    critical_missing: Tuple[str, ...]
    exit_code: int
    test_modules: Tuple[str, ...] = field(default_factory=tuple)
    config_modules: Tuple[str, ...] = field(default_factory=tuple)
    timestamp: Optional[str] = None

    def __post_init__(self):
        if self.exit_code not in [c.value for c in VeritasExitCode]:
            raise ValidationError(f"Invalid exit_code: {self.exit_code}")
        for name in ("total", "wired", "not_wired"):
            if getattr(self, name) < 0:
                raise ValidationError(f"{name} cannot be negative: {getattr(self, name)}")

    @property
    def is_clean(self) -> bool:
        return self.exit_code == VeritasExitCode.CLEAN

    @property
    def wired_ratio(self) -> str:
        return f"{self.wired}/{self.total}"

    def with_timestamp(self, timestamp: str) -> "VeritasReport":
        return VeritasReport(
            total=self.total,
            wired=self.wired,
            not_wired=self.not_wired,
            critical_missing=self.critical_missing,
            exit_code=self.exit_code,
            test_modules=self.test_modules,
            config_modules=self.config_modules,
            timestamp=timestamp,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "total": self.total,
            "wired": self.wired,
            "not_wired": self.not_wired,
            "critical_missing": list(self.critical_missing),
            "exit_code": self.exit_code,
            "test_modules": list(self.test_modules),
            "config_modules": list(self.config_modules),
            "timestamp": self.timestamp,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "VeritasReport":
        """Parse verifier output. Raises ValidationError on malformed data."""
        try:
            return cls(
                total=int(data["total"]),
                wired=int(data["wired"]),
                not_wired=int(data["not_wired"]),
                critical_missing=tuple(str(m) for m in data.get("critical_missing") or ()),
                exit_code=int(data["exit_code"]),
                test_modules=tuple(str(m) for m in data.get("test_modules") or ()),
                config_modules=tuple(str(m) for m in data.get("config_modules") or ()),
                timestamp=data.get("timestamp"),
            )
        except (KeyError, TypeError, ValueError) as e:
            if isinstance(e, ValidationError):
                raise
            raise ValidationError(f"Malformed verification report: {e}") from e
