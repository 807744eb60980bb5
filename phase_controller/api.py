"""
HTTP API for the Phase Approval Pipeline

Thin FastAPI surface over an ApprovalPipeline instance:
- Pipeline status and gate checks
- Verifier report ingestion
- Known Incomplete ledger (append, resolve with evidence, summary)
- Consistency audit
- Approval requests and decisions
- Completion of phases that have no human checkpoint

The pipeline instance is injected by the caller; this module holds no state.
"""

import logging
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, FastAPI, HTTPException, Request
from pydantic import BaseModel, Field

from . import __version__
from .errors import PipelineError, ValidationError
from .known_incomplete import IncompleteState
from .pipeline import ApprovalPipeline
from .verification_model import VeritasReport

logger = logging.getLogger("pipeline_api")


# -----------------------------------------------------------------------------
# Request/Response Models
# -----------------------------------------------------------------------------
class VeritasReportRequest(BaseModel):
    total: int = Field(..., ge=0)
    wired: int = Field(..., ge=0)
    not_wired: int = Field(..., ge=0)
    critical_missing: List[str] = Field(default_factory=list)
    exit_code: int = Field(..., ge=0, le=2)
    test_modules: List[str] = Field(default_factory=list)
    config_modules: List[str] = Field(default_factory=list)
    timestamp: Optional[str] = None


class KnownIncompleteRequest(BaseModel):
    item: str = Field(..., min_length=1)
    state: IncompleteState
    impact: str = ""
    phase: str
    affected_function: Optional[str] = None


class ResolveRequest(BaseModel):
    evidence: str = ""


class ApprovalCreateRequest(BaseModel):
    phase: str
    summary: str
    agent_role: str = "agent"
    details: Dict[str, Any] = Field(default_factory=dict)
    blocked_by_review: bool = False


class ApproveRequest(BaseModel):
    content: str
    comments: Optional[str] = None


class CompletePhaseRequest(BaseModel):
    content: str
    summary: str = ""
    agent_role: str = "agent"
    details: Dict[str, Any] = Field(default_factory=dict)


class RejectRequest(BaseModel):
    comments: Optional[str] = None


class ApproveResponse(BaseModel):
    request_id: str
    phase: str
    next_phase: Optional[str]
    pipeline_complete: bool
    blocked_reason: Optional[str] = None


# -----------------------------------------------------------------------------
# Routes
# -----------------------------------------------------------------------------
router = APIRouter()


def _pipeline(request: Request) -> ApprovalPipeline:
    return request.app.state.pipeline


@router.get("/health")
async def health(request: Request):
    pipeline = _pipeline(request)
    return {"status": "ok", "version": __version__, "closed": pipeline.closed}


@router.get("/pipeline/status")
async def pipeline_status(request: Request):
    return _pipeline(request).status()


@router.get("/gate/{phase}")
async def gate_check(phase: str, request: Request):
    return _pipeline(request).gate.check(phase).to_dict()


@router.post("/veritas/report")
async def submit_report(body: VeritasReportRequest, request: Request):
    pipeline = _pipeline(request)
    try:
        report = VeritasReport.from_dict(body.model_dump())
    except ValidationError as e:
        raise HTTPException(status_code=422, detail=str(e))
    stored = pipeline.reports.save_report(report)
    return {
        "report": stored.to_dict(),
        "consistency": pipeline.auditor.audit().to_dict(),
    }


@router.get("/known-incomplete")
async def list_known_incomplete(request: Request, unresolved: bool = False):
    ledger = _pipeline(request).ledger
    items = ledger.get_unresolved() if unresolved else ledger.get_all()
    return {"items": [i.to_dict() for i in items], "count": len(items)}


@router.get("/known-incomplete/summary")
async def known_incomplete_summary(request: Request):
    return _pipeline(request).ledger.get_summary()


@router.post("/known-incomplete", status_code=201)
async def append_known_incomplete(body: KnownIncompleteRequest, request: Request):
    try:
        entry = _pipeline(request).ledger.append(
            item=body.item,
            state=body.state,
            impact=body.impact,
            phase=body.phase,
            affected_function=body.affected_function,
        )
    except ValidationError as e:
        raise HTTPException(status_code=422, detail=str(e))
    return entry.to_dict()


@router.post("/known-incomplete/{item_id}/resolve")
async def resolve_known_incomplete(item_id: str, body: ResolveRequest, request: Request):
    ledger = _pipeline(request).ledger
    if ledger.get(item_id) is None:
        raise HTTPException(status_code=404, detail=f"Known Incomplete item '{item_id}' not found")
    try:
        entry = ledger.resolve(item_id, body.evidence)
    except ValidationError as e:
        raise HTTPException(status_code=422, detail=str(e))
    return entry.to_dict()


@router.get("/consistency")
async def consistency(request: Request, exit_code: Optional[int] = None):
    return _pipeline(request).auditor.audit(exit_code).to_dict()


@router.post("/approvals", status_code=201)
async def create_approval(body: ApprovalCreateRequest, request: Request):
    try:
        approval = _pipeline(request).request_approval(
            phase=body.phase,
            summary=body.summary,
            agent_role=body.agent_role,
            details=body.details,
            blocked_by_review=body.blocked_by_review,
        )
    except PipelineError as e:
        raise HTTPException(status_code=409, detail=str(e))
    return approval.to_dict()


@router.get("/approvals/pending")
async def pending_approvals(request: Request):
    return [r.to_dict() for r in _pipeline(request).hitl.get_pending()]


@router.post("/approvals/{request_id}/approve", response_model=ApproveResponse)
async def approve(request_id: str, body: ApproveRequest, request: Request):
    pipeline = _pipeline(request)
    approval = pipeline.hitl.get_request(request_id)
    if approval is None:
        raise HTTPException(status_code=404, detail=f"Approval request '{request_id}' not found")

    try:
        next_phase = await pipeline.approve(request_id, body.content, body.comments)
    except PipelineError as e:
        raise HTTPException(status_code=409, detail=str(e))

    return ApproveResponse(
        request_id=request_id,
        phase=approval.phase,
        next_phase=next_phase,
        pipeline_complete=next_phase is None,
        blocked_reason=pipeline.get_blocked_phases().get(next_phase) if next_phase else None,
    )


@router.post("/phases/{phase}/complete", response_model=ApproveResponse)
async def complete_phase(phase: str, body: CompletePhaseRequest, request: Request):
    """Advance a phase that has no human checkpoint."""
    pipeline = _pipeline(request)
    try:
        next_phase = await pipeline.complete_phase(
            phase=phase,
            content=body.content,
            summary=body.summary,
            agent_role=body.agent_role,
            details=body.details,
        )
    except PipelineError as e:
        raise HTTPException(status_code=409, detail=str(e))

    checkpoint = pipeline.hitl.get_history()[-1]
    return ApproveResponse(
        request_id=checkpoint.id,
        phase=phase,
        next_phase=next_phase,
        pipeline_complete=next_phase is None,
        blocked_reason=pipeline.get_blocked_phases().get(next_phase) if next_phase else None,
    )


@router.post("/approvals/{request_id}/reject")
async def reject(request_id: str, body: RejectRequest, request: Request):
    pipeline = _pipeline(request)
    try:
        rejected = pipeline.reject(request_id, body.comments)
    except PipelineError as e:
        raise HTTPException(status_code=409, detail=str(e))
    if not rejected:
        raise HTTPException(status_code=404, detail=f"Approval request '{request_id}' is not pending")
    return pipeline.hitl.get_request(request_id).to_dict()


def create_app(pipeline: ApprovalPipeline) -> FastAPI:
    """Build the HTTP app around an existing pipeline instance."""
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    )
    app = FastAPI(
        title="Phase Approval Pipeline",
        version=__version__,
    )
    app.state.pipeline = pipeline
    app.include_router(router)
    logger.info("Pipeline API created")
    return app
