"""
Approval Pipeline

Wires the control plane for ONE pipeline instance:

    request_approval(phase) → gate.check(phase) → HITL queue
    approve(request)        → sequencer.on_approved(phase, content) → start/block next phase
    complete_phase(phase)   → gate.check(phase) → auto-approved → sequencer.on_approved(...)

Phases listed in approval_required go through the HITL queue; the others
advance through complete_phase without a human checkpoint.

There is no module-level instance. Construct an ApprovalPipeline when a
pipeline run is created, pass it to whoever needs it, and close() it at
teardown. Approvals are serialized per instance so exactly one phase
transition is in flight at a time.
"""

import asyncio
import logging
from typing import Any, Dict, Optional

from .config import PipelineConfig, ReapprovalPolicy
from .consistency_auditor import ConsistencyAuditor
from .errors import PipelineError, ReapprovalError
from .hitl import ApprovalRequest, ApprovalStatus, HITLManager
from .known_incomplete import KnownIncompleteLedger
from .persistence import PersistenceBackend, create_backend
from .phase_sequencer import BlockPhase, PhaseSequencer, StartPhase
from .verification_gate import GateResult, VerificationGate
from .verification_store import VerificationReportStore

logger = logging.getLogger("approval_pipeline")


class ApprovalPipeline:
    """Explicitly constructed control plane for one pipeline run."""

    def __init__(
        self,
        config: PipelineConfig,
        start_phase: StartPhase,
        block_phase: BlockPhase,
        backend: Optional[PersistenceBackend] = None,
    ):
        self.config = config
        self.backend = backend or create_backend(config)
        self.reports = VerificationReportStore(self.backend)
        self.ledger = KnownIncompleteLedger(self.backend)
        self.gate = VerificationGate(self.reports.load_report)
        self.auditor = ConsistencyAuditor(self.ledger, self.reports.load_report)
        self.hitl = HITLManager(self.ledger, self.auditor)
        self.sequencer = PhaseSequencer(
            start_phase=start_phase,
            block_phase=self._on_block_phase,
            backend=self.backend,
            phase_chain=config.phase_chain,
            reapproval_policy=config.reapproval_policy,
        )
        self._block_phase = block_phase
        self._blocked: Dict[str, str] = {}
        self._lock = asyncio.Lock()
        self._closed = False
        logger.info(f"Pipeline created with {len(config.phase_chain.chain)} phases")

    # -------------------------------------------------------------------------
    # Approval Flow
    # -------------------------------------------------------------------------

    def request_approval(
        self,
        phase: str,
        summary: str,
        agent_role: str = "agent",
        details: Optional[Dict[str, Any]] = None,
        blocked_by_review: bool = False,
    ) -> ApprovalRequest:
        """
        Run the gate once and open (or auto-reject) an approval request.

        Raises PipelineError for phases outside the chain and for phases that
        advance without a human checkpoint (use complete_phase).
        """
        self._ensure_open()
        self._check_phase(phase)
        if not self.config.phase_chain.requires_approval(phase):
            raise PipelineError(f"Phase {phase} does not require human approval; complete it directly")
        gate_result = self.gate.check(phase)
        return self.hitl.request_approval(
            phase=phase,
            agent_role=agent_role,
            summary=summary,
            details=details,
            gate_result=gate_result,
            blocked_by_review=blocked_by_review,
        )

    async def approve(
        self,
        request_id: str,
        content: str,
        comments: Optional[str] = None,
    ) -> Optional[str]:
        """
        Approve a pending request and advance the chain.

        Returns the next phase that was started or blocked, or None when the
        pipeline is complete. Raises PipelineError for unknown requests.
        """
        self._ensure_open()
        async with self._lock:
            request = self.hitl.get_request(request_id)
            if request is None or request.status != ApprovalStatus.PENDING:
                raise PipelineError(f"Approval request {request_id} is not pending")

            self._check_reapproval(request.phase)

            if not self.hitl.resolve(request_id, ApprovalStatus.APPROVED, comments):
                raise PipelineError(f"Approval request {request_id} is not pending")

            return await self._advance(request.phase, content)

    async def complete_phase(
        self,
        phase: str,
        content: str,
        summary: str = "",
        agent_role: str = "agent",
        details: Optional[Dict[str, Any]] = None,
    ) -> Optional[str]:
        """
        Advance a phase that has no human checkpoint.

        The gate still applies. The checkpoint is recorded as auto-approved
        and the chain advances exactly as after a human approval. Raises
        PipelineError when the phase requires approval or the gate blocks.
        """
        self._ensure_open()
        self._check_phase(phase)
        if self.config.phase_chain.requires_approval(phase):
            raise PipelineError(f"Phase {phase} requires human approval")

        async with self._lock:
            self._check_reapproval(phase)
            gate_result = self.gate.check(phase)
            request = self.hitl.record_auto_approval(
                phase=phase,
                agent_role=agent_role,
                summary=summary,
                details=details,
                gate_result=gate_result,
            )
            if request.status != ApprovalStatus.APPROVED:
                raise PipelineError(f"Phase {phase} blocked: {gate_result.reason}")

            return await self._advance(phase, content)

    async def _advance(self, phase: str, content: str) -> Optional[str]:
        # A re-driven approval clears the stale block on its successor
        self._blocked.pop(phase, None)
        successor = self.sequencer.get_next_phase(phase)
        if successor is not None:
            self._blocked.pop(successor, None)
        return await self.sequencer.on_approved(phase, content)

    def reject(self, request_id: str, comments: Optional[str] = None) -> bool:
        self._ensure_open()
        return self.hitl.resolve(request_id, ApprovalStatus.REJECTED, comments)

    # -------------------------------------------------------------------------
    # Status
    # -------------------------------------------------------------------------

    def next_phase(self) -> Optional[str]:
        """First phase in the chain without an approved output."""
        outputs = self.sequencer.get_phase_outputs()
        for phase in self.config.phase_chain.chain:
            if phase not in outputs:
                return phase
        return None

    def get_blocked_phases(self) -> Dict[str, str]:
        return dict(self._blocked)

    def status(self) -> Dict[str, Any]:
        next_phase = self.next_phase()
        gate: Optional[GateResult] = self.gate.check(next_phase) if next_phase else None
        audit = self.auditor.audit()
        return {
            "chain": list(self.config.phase_chain.chain),
            "approved_phases": list(self.sequencer.get_phase_outputs().keys()),
            "next_phase": next_phase,
            "next_phase_requires_approval": (
                self.config.phase_chain.requires_approval(next_phase) if next_phase else None
            ),
            "complete": self.sequencer.is_complete(),
            "blocked_phases": self.get_blocked_phases(),
            "gate": gate.to_dict() if gate else None,
            "known_incomplete_summary": self.ledger.get_summary(),
            "consistency": audit.to_dict(),
            "pending_approvals": len(self.hitl.get_pending()),
        }

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    def reset(self) -> None:
        """Start a new run from scratch. The ledger is append-only and kept."""
        self._ensure_open()
        self.sequencer.reset()
        self._blocked.clear()

    def close(self) -> None:
        if self._closed:
            return
        self.hitl.clear_listeners()
        self.backend.close()
        self._closed = True
        logger.info("Pipeline closed")

    @property
    def closed(self) -> bool:
        return self._closed

    def _ensure_open(self) -> None:
        if self._closed:
            raise PipelineError("Pipeline is closed")

    def _check_phase(self, phase: str) -> None:
        if self.config.phase_chain.index_of(phase) == -1:
            raise PipelineError(f"Unknown phase: {phase}")

    def _check_reapproval(self, phase: str) -> None:
        if (
            self.config.reapproval_policy == ReapprovalPolicy.REJECT
            and self.sequencer.get_phase_output(phase) is not None
        ):
            raise ReapprovalError(phase)

    def _on_block_phase(self, phase: str, reason: str) -> None:
        self._blocked[phase] = reason
        self._block_phase(phase, reason)


def create_pipeline(
    start_phase: StartPhase,
    block_phase: BlockPhase,
    config: Optional[PipelineConfig] = None,
    backend: Optional[PersistenceBackend] = None,
) -> ApprovalPipeline:
    """Build a pipeline from config (environment by default)."""
    return ApprovalPipeline(
        config=config or PipelineConfig.from_env(),
        start_phase=start_phase,
        block_phase=block_phase,
        backend=backend,
    )
