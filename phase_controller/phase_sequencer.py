"""
Phase Sequencer

Automatic phase-to-phase advance engine.

After a human approves Phase N, the sequencer records the approved output and
starts Phase N+1 with an input assembled from the accumulated outputs:

    approve(N, output) → record(N) → build_next_input(N+1) → start_phase(N+1, input)

Key guarantees:
- An approved output is recorded BEFORE the next phase is started
- A failed start NEVER rolls back the recorded output
- A failed start is converted into block_phase(N+1, reason), never raised
- build_next_input is a pure function of the recorded outputs
- Readers get copies, never the live store

The sequencer performs NO gating. The verification gate is consulted by the
caller before approval is offered. It also performs NO locking: callers must
serialize on_approved per pipeline instance.
"""

import logging
from dataclasses import dataclass, asdict
from datetime import datetime
from typing import Awaitable, Callable, Dict, Optional

from .config import ReapprovalPolicy
from .errors import ReapprovalError
from .persistence import PersistenceBackend, PHASE_OUTPUTS_KEY, load_json, save_json
from .phase_rules import PhaseChainConfig, GENERIC_START_INSTRUCTION, default_phase_chain_config

logger = logging.getLogger("phase_sequencer")

StartPhase = Callable[[str, str], Awaitable[None]]
BlockPhase = Callable[[str, str], None]


@dataclass(frozen=True)
class PhaseOutput:
    """Approved output of a single phase."""
    phase: str
    content: str
    approved_at: str  # ISO format

    def to_dict(self) -> Dict[str, str]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, str]) -> "PhaseOutput":
        return cls(
            phase=str(data["phase"]),
            content=str(data["content"]),
            approved_at=str(data.get("approved_at") or data.get("approvedAt") or ""),
        )


def wrap_section(label: str, content: str) -> str:
    """Labeled input section. Empty content produces no section."""
    if not content:
        return ""
    return f"\n\n---\n## {label}\n\n{content}"


class PhaseSequencer:
    """
    Approval-driven state machine over a fixed phase chain.

    States are the phase identifiers plus an implicit terminal "complete"
    state, reached when the last phase is approved.
    """

    def __init__(
        self,
        start_phase: StartPhase,
        block_phase: BlockPhase,
        backend: PersistenceBackend,
        phase_chain: Optional[PhaseChainConfig] = None,
        reapproval_policy: ReapprovalPolicy = ReapprovalPolicy.LAST_WRITE_WINS,
    ):
        self._start_phase = start_phase
        self._block_phase = block_phase
        self._backend = backend
        self._phase_chain = phase_chain or default_phase_chain_config()
        self._reapproval_policy = reapproval_policy
        self._outputs: Dict[str, PhaseOutput] = {}
        self._load_outputs()

    @property
    def phase_chain(self) -> PhaseChainConfig:
        return self._phase_chain

    @property
    def reapproval_policy(self) -> ReapprovalPolicy:
        return self._reapproval_policy

    # -------------------------------------------------------------------------
    # Recording
    # -------------------------------------------------------------------------

    def record_phase_output(self, phase: str, content: str) -> PhaseOutput:
        """
        Store the approved output for a phase.

        Overwrites an earlier output under LAST_WRITE_WINS.
        Raises ReapprovalError under REJECT if the phase already has one.
        """
        if phase in self._outputs:
            if self._reapproval_policy == ReapprovalPolicy.REJECT:
                logger.error(f"Re-approval of Phase {phase} rejected: output already recorded")
                raise ReapprovalError(phase)
            logger.warning(f"Phase {phase} approved again, overwriting previous output")

        record = PhaseOutput(
            phase=phase,
            content=content,
            approved_at=datetime.utcnow().isoformat(),
        )
        self._outputs[phase] = record
        self._persist_outputs()
        logger.info(f"Output recorded for Phase {phase} ({len(content)} chars)")
        return record

    # -------------------------------------------------------------------------
    # Transitions
    # -------------------------------------------------------------------------

    async def on_approved(self, approved_phase: str, content: str) -> Optional[str]:
        """
        Record an approved output and start the next phase.

        Returns the phase that was started (or blocked), or None when the
        pipeline is complete.
        """
        self.record_phase_output(approved_phase, content)

        next_phase = self.get_next_phase(approved_phase)
        if next_phase is None:
            logger.info(f"Phase {approved_phase} is the final phase. Pipeline complete.")
            return None

        next_input = self.build_next_input(next_phase)
        logger.info(f"Phase {approved_phase} approved → starting Phase {next_phase}")

        try:
            await self._start_phase(next_phase, next_input)
        except Exception as e:
            reason = str(e) or "Unknown error"
            logger.error(f"Failed to start Phase {next_phase}: {reason}")
            self._block_phase(next_phase, reason)

        return next_phase

    def get_next_phase(self, phase: str) -> Optional[str]:
        """Chain successor, or None for the last or an unknown phase."""
        chain = self._phase_chain.chain
        idx = self._phase_chain.index_of(phase)
        if idx == -1 or idx == len(chain) - 1:
            return None
        return chain[idx + 1]

    def is_complete(self) -> bool:
        """True once the last phase in the chain has an approved output."""
        return self._phase_chain.chain[-1] in self._outputs

    # -------------------------------------------------------------------------
    # Input Assembly
    # -------------------------------------------------------------------------

    def build_next_input(self, phase: str) -> str:
        """
        Assemble the input for a phase from recorded predecessor outputs.

        Sections follow the rule's predecessor order; missing outputs are
        skipped. Without a rule, the preceding phase's output is used.
        """
        rule = self._phase_chain.rule_for(phase)
        if rule is not None:
            sections = "".join(
                wrap_section(label, self._content_of(predecessor))
                for predecessor, label in rule.predecessors
            )
            return f"{sections}\n\n{rule.instruction}"

        idx = self._phase_chain.index_of(phase)
        if idx <= 0:
            return GENERIC_START_INSTRUCTION
        return self._content_of(self._phase_chain.chain[idx - 1])

    def _content_of(self, phase: str) -> str:
        record = self._outputs.get(phase)
        return record.content if record else ""

    # -------------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------------

    def get_phase_outputs(self) -> Dict[str, PhaseOutput]:
        """Snapshot of all recorded outputs."""
        return dict(self._outputs)

    def get_phase_output(self, phase: str) -> Optional[PhaseOutput]:
        return self._outputs.get(phase)

    def reset(self) -> None:
        """Clear all outputs and their durable copy (new pipeline run)."""
        self._outputs.clear()
        if not self._backend.delete(PHASE_OUTPUTS_KEY):
            logger.warning("Could not clear persisted phase outputs, continuing in memory")
        logger.info("Phase sequencer reset")

    # -------------------------------------------------------------------------
    # Persistence (best-effort)
    # -------------------------------------------------------------------------

    def _persist_outputs(self) -> None:
        # Failure is non-fatal: the in-memory store stays authoritative
        payload = {phase: record.to_dict() for phase, record in self._outputs.items()}
        if not save_json(self._backend, PHASE_OUTPUTS_KEY, payload):
            logger.warning("Phase outputs not persisted, continuing without persistence")

    def _load_outputs(self) -> None:
        data = load_json(self._backend, PHASE_OUTPUTS_KEY)
        if not isinstance(data, dict):
            return
        for phase, raw in data.items():
            try:
                self._outputs[phase] = PhaseOutput.from_dict(raw)
            except (KeyError, TypeError) as e:
                logger.warning(f"Skipping malformed persisted output for Phase {phase}: {e}")
        logger.info(f"Restored {len(self._outputs)} phase outputs from storage")
