"""
Human-in-the-Loop Approval Manager

Queues approval requests for human decision.

Rules:
- The verification gate runs BEFORE a request is created; its result is passed
  in, never recomputed here
- Gate blocked → request is auto-rejected, no human is asked
- Critical review block → request is auto-rejected
- Every request carries the unresolved Known Incomplete items as its first
  visible section, plus the discrepancy flag
- Phases without a human checkpoint are recorded as APPROVED by "auto"
- This manager never advances the pipeline; the caller does that on APPROVED
"""

import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Callable, Dict, Any, List, Optional

from .consistency_auditor import ConsistencyAuditor
from .known_incomplete import KnownIncompleteLedger
from .verification_gate import GateResult

logger = logging.getLogger("hitl")


class ApprovalStatus(str, Enum):
    """Status of an approval request."""
    PENDING = "PENDING"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"


@dataclass
class ApprovalRequest:
    """A single approval checkpoint for one phase."""
    id: str
    phase: str
    agent_role: str
    summary: str
    details: Dict[str, Any]
    veritas_exit_code: int
    blocked_by_review: bool
    status: ApprovalStatus
    created_at: str
    known_incomplete: List[Dict[str, Any]] = field(default_factory=list)
    discrepancy: bool = False
    resolved_at: Optional[str] = None
    resolved_by: Optional[str] = None  # "user" or "auto"
    comments: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "phase": self.phase,
            "agent_role": self.agent_role,
            "summary": self.summary,
            "details": self.details,
            "veritas_exit_code": self.veritas_exit_code,
            "blocked_by_review": self.blocked_by_review,
            "status": self.status.value,
            "created_at": self.created_at,
            "known_incomplete": self.known_incomplete,
            "discrepancy": self.discrepancy,
            "resolved_at": self.resolved_at,
            "resolved_by": self.resolved_by,
            "comments": self.comments,
        }


class HITLManager:
    """Approval queue and history for one pipeline instance."""

    def __init__(self, ledger: KnownIncompleteLedger, auditor: ConsistencyAuditor):
        self._ledger = ledger
        self._auditor = auditor
        self._pending: Dict[str, ApprovalRequest] = {}
        self._history: List[ApprovalRequest] = []
        self._listeners: List[Callable[[ApprovalRequest], None]] = []

    def _new_request(
        self,
        phase: str,
        agent_role: str,
        summary: str,
        details: Optional[Dict[str, Any]],
        gate_result: GateResult,
        blocked_by_review: bool,
    ) -> ApprovalRequest:
        if gate_result.details is not None:
            exit_code = gate_result.details.exit_code
            audited_exit_code = exit_code
        elif gate_result.blocked:
            # No report yet: shown as failing, but there is no claim to audit
            exit_code = 1
            audited_exit_code = None
        else:
            exit_code = 0
            audited_exit_code = 0

        return ApprovalRequest(
            id=f"hitl-{phase}-{uuid.uuid4().hex[:8]}",
            phase=phase,
            agent_role=agent_role,
            summary=summary,
            details=dict(details or {}),
            veritas_exit_code=exit_code,
            blocked_by_review=blocked_by_review,
            status=ApprovalStatus.PENDING,
            created_at=datetime.utcnow().isoformat(),
            known_incomplete=[i.to_dict() for i in self._ledger.get_unresolved()],
            discrepancy=self._auditor.has_discrepancy(audited_exit_code),
        )

    def request_approval(
        self,
        phase: str,
        agent_role: str,
        summary: str,
        details: Optional[Dict[str, Any]],
        gate_result: GateResult,
        blocked_by_review: bool = False,
    ) -> ApprovalRequest:
        """
        Create an approval request.

        Auto-rejects when the gate is blocked or a critical review issue was
        found. Otherwise the request is queued and listeners are notified.
        """
        request = self._new_request(phase, agent_role, summary, details, gate_result, blocked_by_review)

        if gate_result.blocked:
            self._auto_reject(request, f"Auto-rejected - verification gate blocked: {gate_result.reason}")
            logger.error(f"Auto-rejected Phase {phase} (verification gate): {gate_result.reason}")
            return request

        if blocked_by_review:
            self._auto_reject(
                request,
                "Auto-rejected - critical review issues found. Remediate before continuing.",
            )
            logger.error(f"Auto-rejected Phase {phase} (critical review block)")
            return request

        self._pending[request.id] = request
        logger.info(f"Approval request queued: {request.id} for Phase {phase}")
        self._notify_listeners(request)
        return request

    def record_auto_approval(
        self,
        phase: str,
        agent_role: str,
        summary: str,
        details: Optional[Dict[str, Any]],
        gate_result: GateResult,
    ) -> ApprovalRequest:
        """
        Record the checkpoint of a phase that needs no human decision.

        The gate still applies: a blocked gate auto-rejects. Otherwise the
        request goes straight to history as APPROVED by "auto". Listeners are
        not notified since nobody has to act.
        """
        request = self._new_request(phase, agent_role, summary, details, gate_result, False)

        if gate_result.blocked:
            self._auto_reject(request, f"Auto-rejected - verification gate blocked: {gate_result.reason}")
            logger.error(f"Auto-rejected Phase {phase} (verification gate): {gate_result.reason}")
            return request

        request.status = ApprovalStatus.APPROVED
        request.resolved_at = datetime.utcnow().isoformat()
        request.resolved_by = "auto"
        request.comments = f"Auto-approved - Phase {phase} does not require human approval"
        self._history.append(request)
        logger.info(f"Phase {phase} auto-approved: {request.id}")
        return request

    def resolve(self, request_id: str, status: ApprovalStatus, comments: Optional[str] = None) -> bool:
        """
        Record a human decision on a pending request.

        Returns False if the request is not pending.
        """
        status = ApprovalStatus(status)
        if status == ApprovalStatus.PENDING:
            raise ValueError("A decision must be APPROVED or REJECTED")

        request = self._pending.pop(request_id, None)
        if request is None:
            logger.error(f"Request {request_id} not found in pending queue")
            return False

        request.status = status
        request.resolved_at = datetime.utcnow().isoformat()
        request.resolved_by = "user"
        request.comments = comments
        self._history.append(request)
        logger.info(f"Request {request_id} resolved: {status.value}")
        return True

    def update_summary(self, request_id: str, summary: str) -> bool:
        """Replace the summary of a pending request. False if not pending."""
        request = self._pending.get(request_id)
        if request is None:
            logger.error(f"Request {request_id} not found for summary update")
            return False
        request.summary = summary
        return True

    def get_request(self, request_id: str) -> Optional[ApprovalRequest]:
        if request_id in self._pending:
            return self._pending[request_id]
        for request in self._history:
            if request.id == request_id:
                return request
        return None

    def get_pending(self) -> List[ApprovalRequest]:
        return list(self._pending.values())

    def get_history(self) -> List[ApprovalRequest]:
        return list(self._history)

    def on_request(self, listener: Callable[[ApprovalRequest], None]) -> None:
        self._listeners.append(listener)

    def clear_listeners(self) -> None:
        self._listeners.clear()

    def _auto_reject(self, request: ApprovalRequest, comments: str) -> None:
        request.status = ApprovalStatus.REJECTED
        request.resolved_at = datetime.utcnow().isoformat()
        request.resolved_by = "auto"
        request.comments = comments
        self._history.append(request)

    def _notify_listeners(self, request: ApprovalRequest) -> None:
        for listener in list(self._listeners):
            listener(request)
