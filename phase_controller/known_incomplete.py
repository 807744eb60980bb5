"""
Known Incomplete Ledger

Append-only record of everything the pipeline admits is still broken.

RULES (NON-NEGOTIABLE):
- APPEND-ONLY: Items are NEVER deleted
- ONE-WAY: An item may move to RESOLVED exactly once and never back
- EVIDENCE: Resolution without non-empty evidence is rejected
- CONSISTENCY: A verifier failure (exit_code != 0) with an empty unresolved
  list is a DISCREPANCY - progress is being reported without documenting
  what is broken

Persistence is best-effort: the collection is loaded once at construction
and rewritten after every mutation. Unreadable or corrupt storage is treated
as an empty ledger. Single unreadable records are skipped on load and written
back untouched, so nothing stored is ever dropped.
"""

import logging
import uuid
from dataclasses import dataclass, replace
from datetime import datetime
from enum import Enum
from typing import Optional, Dict, Any, List

from .errors import ValidationError
from .persistence import PersistenceBackend, KNOWN_INCOMPLETE_KEY, load_json, save_json

logger = logging.getLogger("known_incomplete")


class IncompleteState(str, Enum):
    """
    Lifecycle state of a Known Incomplete item.

    This enum is LOCKED - EXACTLY 5 values.
    """
    DISABLED = "DISABLED"
    BUGGY = "BUGGY"
    UNVERIFIED = "UNVERIFIED"
    PARTIAL = "PARTIAL"
    RESOLVED = "RESOLVED"


@dataclass(frozen=True)
class KnownIncompleteItem:
    """
    A disclosed, tracked defect or gap.

    resolved_at and resolution_evidence are set if and only if the state
    is RESOLVED.
    """
    id: str
    item: str
    state: IncompleteState
    impact: str
    phase: str
    added_at: str  # ISO format
    affected_function: Optional[str] = None  # e.g. "F-003"
    resolved_at: Optional[str] = None
    resolution_evidence: Optional[str] = None

    def __post_init__(self):
        if not isinstance(self.state, IncompleteState):
            raise ValidationError(f"Invalid state: {self.state}")
        resolved = self.state == IncompleteState.RESOLVED
        has_resolution = self.resolved_at is not None or self.resolution_evidence is not None
        if resolved != has_resolution:
            raise ValidationError(
                f"Item {self.id}: resolution fields must be set exactly when state is RESOLVED"
            )
        if resolved and (not self.resolved_at or not (self.resolution_evidence or "").strip()):
            raise ValidationError(f"Item {self.id}: RESOLVED requires timestamp and evidence")

    @property
    def is_resolved(self) -> bool:
        return self.state == IncompleteState.RESOLVED

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "item": self.item,
            "state": self.state.value,
            "impact": self.impact,
            "phase": self.phase,
            "affected_function": self.affected_function,
            "added_at": self.added_at,
            "resolved_at": self.resolved_at,
            "resolution_evidence": self.resolution_evidence,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "KnownIncompleteItem":
        """Parse a stored item. Legacy camelCase keys are accepted."""
        try:
            state = IncompleteState(data["state"])
        except ValueError as e:
            raise ValidationError(f"Invalid state: {data.get('state')}") from e
        return cls(
            id=data["id"],
            item=data["item"],
            state=state,
            impact=data.get("impact", ""),
            phase=data.get("phase", ""),
            added_at=data["added_at"] if "added_at" in data else data["addedAt"],
            affected_function=data.get("affected_function", data.get("affectedFunction")),
            resolved_at=data.get("resolved_at", data.get("resolvedAt")),
            resolution_evidence=data.get("resolution_evidence", data.get("resolutionEvidence")),
        )


class KnownIncompleteLedger:
    """Append-only ledger of Known Incomplete items for one pipeline instance."""

    def __init__(self, backend: PersistenceBackend):
        self._backend = backend
        # Stored records that could not be parsed; written back untouched
        self._unreadable: List[Any] = []
        self._items: List[KnownIncompleteItem] = self._load()

    # -------------------------------------------------------------------------
    # Write Operations
    # -------------------------------------------------------------------------

    def append(
        self,
        item: str,
        state: IncompleteState,
        impact: str,
        phase: str,
        affected_function: Optional[str] = None,
    ) -> KnownIncompleteItem:
        """
        Append a new item. This is the ONLY way items enter the ledger.

        New items must be in an open state; RESOLVED is reached via resolve().
        """
        try:
            state = IncompleteState(state)
        except ValueError as e:
            raise ValidationError(f"Invalid state: {state}") from e
        if state == IncompleteState.RESOLVED:
            raise ValidationError("New items cannot be RESOLVED. Append open, then resolve with evidence.")
        if not item or not item.strip():
            raise ValidationError("Item description is mandatory")

        entry = KnownIncompleteItem(
            id=f"KI-{uuid.uuid4().hex[:12]}",
            item=item,
            state=state,
            impact=impact,
            phase=phase,
            added_at=datetime.utcnow().isoformat(),
            affected_function=affected_function,
        )
        self._items.append(entry)
        self._persist()
        logger.info(f"Item appended: {entry.id} [{entry.state.value}] {entry.item}")
        return entry

    def resolve(self, item_id: str, evidence: str) -> Optional[KnownIncompleteItem]:
        """
        Mark an item RESOLVED with mandatory evidence.

        Raises ValidationError for empty or whitespace-only evidence, leaving
        the ledger untouched. Unknown ids are a silent no-op (returns None).
        """
        if not evidence or not evidence.strip():
            logger.error("Resolution rejected: evidence is mandatory")
            raise ValidationError("Resolution evidence is mandatory. Cannot resolve without proof.")

        for i, existing in enumerate(self._items):
            if existing.id != item_id:
                continue
            if existing.is_resolved:
                logger.info(f"Item {item_id} already resolved, keeping original resolution")
                return existing
            resolved = replace(
                existing,
                state=IncompleteState.RESOLVED,
                resolved_at=datetime.utcnow().isoformat(),
                resolution_evidence=evidence,
            )
            self._items[i] = resolved
            self._persist()
            logger.info(f"Item resolved: {item_id}")
            return resolved

        logger.debug(f"Resolve ignored: no item with id {item_id}")
        return None

    # -------------------------------------------------------------------------
    # Read Operations
    # -------------------------------------------------------------------------

    def get_all(self) -> List[KnownIncompleteItem]:
        """Full history including resolved items, in insertion order."""
        return list(self._items)

    def get(self, item_id: str) -> Optional[KnownIncompleteItem]:
        for entry in self._items:
            if entry.id == item_id:
                return entry
        return None

    def get_unresolved(self) -> List[KnownIncompleteItem]:
        return [i for i in self._items if not i.is_resolved]

    def validate_consistency(self, exit_code: int) -> bool:
        """
        Check the ledger against a verifier exit code.

        Returns False (DISCREPANCY) exactly when exit_code != 0 and no item is
        unresolved. exit_code == 0 is always consistent.
        """
        if exit_code != 0 and not self.get_unresolved():
            logger.error(
                "DISCREPANCY: Veritas exit_code != 0 but Known Incomplete is empty. "
                "Progress is being reported without documenting what is broken."
            )
            return False
        return True

    def get_summary(self) -> Dict[str, int]:
        """Count of items per state, including RESOLVED."""
        summary = {state.value: 0 for state in IncompleteState}
        for entry in self._items:
            summary[entry.state.value] += 1
        return summary

    # -------------------------------------------------------------------------
    # Persistence (best-effort)
    # -------------------------------------------------------------------------

    def _persist(self) -> None:
        # Failure is non-fatal: the in-memory ledger stays authoritative
        records = self._unreadable + [i.to_dict() for i in self._items]
        if not save_json(self._backend, KNOWN_INCOMPLETE_KEY, records):
            logger.warning("Known Incomplete ledger not persisted, continuing in memory")

    def _load(self) -> List[KnownIncompleteItem]:
        data = load_json(self._backend, KNOWN_INCOMPLETE_KEY)
        if data is None:
            return []
        if not isinstance(data, list):
            logger.warning("Stored Known Incomplete ledger is not a list, starting empty")
            return []
        items = []
        for record in data:
            try:
                items.append(KnownIncompleteItem.from_dict(record))
            except (KeyError, TypeError, ValidationError) as e:
                logger.warning(f"Skipping unreadable Known Incomplete record, kept in storage: {e}")
                self._unreadable.append(record)
        logger.info(f"Restored {len(items)} Known Incomplete items from storage")
        return items
