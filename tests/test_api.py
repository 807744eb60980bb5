"""
HTTP API Tests for the Phase Approval Pipeline

Test coverage for:
- Health and status endpoints
- Verifier report ingestion and gate checks
- Known Incomplete append, resolve (evidence required) and summary
- Approval request, approve and reject flow
- Completion of phases without a human checkpoint
- Logging configured by the app factory, not on import
"""

import importlib
from unittest.mock import patch

import pytest
from fastapi.testclient import TestClient

from phase_controller import api
from phase_controller.api import create_app
from phase_controller.config import PipelineConfig
from phase_controller.persistence import MemoryBackend
from phase_controller.phase_rules import PhaseChainConfig
from phase_controller.pipeline import ApprovalPipeline


CLEAN_REPORT = {
    "total": 17,
    "wired": 17,
    "not_wired": 0,
    "critical_missing": [],
    "exit_code": 0,
}

FAILING_REPORT = {
    "total": 17,
    "wired": 15,
    "not_wired": 2,
    "critical_missing": ["auth/session.ts", "billing/webhook.ts"],
    "exit_code": 1,
}


# -----------------------------------------------------------------------------
# Test Client Setup
# -----------------------------------------------------------------------------
@pytest.fixture
def pipeline(memory_config, start_phase, block_phase):
    p = ApprovalPipeline(memory_config, start_phase, block_phase, backend=MemoryBackend())
    yield p
    p.close()


@pytest.fixture
def client(pipeline):
    """Create test client around a fresh pipeline."""
    with TestClient(create_app(pipeline)) as test_client:
        yield test_client


def add_gap(client, item="Webhook handler not wired", state="BUGGY"):
    response = client.post("/known-incomplete", json={
        "item": item,
        "state": state,
        "impact": "Orders stay unconfirmed",
        "phase": "B",
    })
    assert response.status_code == 201
    return response.json()


# -----------------------------------------------------------------------------
# Test 1: Health and Status
# -----------------------------------------------------------------------------
class TestStatusEndpoints:

    def test_health(self, client):
        response = client.get("/health")

        assert response.status_code == 200
        assert response.json()["status"] == "ok"
        assert response.json()["closed"] is False

    def test_status_of_fresh_pipeline(self, client):
        data = client.get("/pipeline/status").json()

        assert data["chain"] == ["A", "B", "C"]
        assert data["next_phase"] == "A"
        assert data["approved_phases"] == []
        assert data["gate"]["blocked"] is True
        assert data["pending_approvals"] == 0


# -----------------------------------------------------------------------------
# Test 2: Verifier Reports and Gate
# -----------------------------------------------------------------------------
class TestVeritasEndpoints:

    def test_gate_blocks_without_report(self, client):
        data = client.get("/gate/A").json()

        assert data["blocked"] is True
        assert "Phase A" in data["reason"]

    def test_submit_clean_report_opens_gate(self, client):
        response = client.post("/veritas/report", json=CLEAN_REPORT)

        assert response.status_code == 200
        assert response.json()["report"]["timestamp"]
        assert response.json()["consistency"]["discrepancy"] is False
        gate = client.get("/gate/A").json()
        assert gate["blocked"] is False
        assert gate["wired"] == "17/17"

    def test_failing_report_reports_discrepancy(self, client):
        data = client.post("/veritas/report", json=FAILING_REPORT).json()

        assert data["consistency"]["discrepancy"] is True
        assert client.get("/gate/A").json()["details"]["critical_missing"] == FAILING_REPORT["critical_missing"]

    def test_invalid_exit_code_rejected(self, client):
        response = client.post("/veritas/report", json={**CLEAN_REPORT, "exit_code": 5})
        assert response.status_code == 422


# -----------------------------------------------------------------------------
# Test 3: Known Incomplete
# -----------------------------------------------------------------------------
class TestKnownIncompleteEndpoints:

    def test_append_and_list(self, client):
        entry = add_gap(client)

        data = client.get("/known-incomplete").json()

        assert data["count"] == 1
        assert data["items"][0]["id"] == entry["id"]
        assert data["items"][0]["state"] == "BUGGY"

    def test_append_resolved_rejected(self, client):
        response = client.post("/known-incomplete", json={
            "item": "x", "state": "RESOLVED", "impact": "", "phase": "A",
        })
        assert response.status_code == 422

    def test_resolve_without_evidence_is_422(self, client):
        entry = add_gap(client)

        response = client.post(f"/known-incomplete/{entry['id']}/resolve", json={"evidence": "  "})

        assert response.status_code == 422
        assert client.get("/known-incomplete?unresolved=true").json()["count"] == 1

    def test_resolve_with_evidence(self, client):
        entry = add_gap(client)

        response = client.post(
            f"/known-incomplete/{entry['id']}/resolve",
            json={"evidence": "E2E run 118 green"},
        )

        assert response.status_code == 200
        assert response.json()["state"] == "RESOLVED"
        assert response.json()["resolution_evidence"] == "E2E run 118 green"
        assert client.get("/known-incomplete?unresolved=true").json()["count"] == 0
        assert client.get("/known-incomplete").json()["count"] == 1

    def test_resolve_unknown_item(self, client):
        response = client.post("/known-incomplete/KI-missing/resolve", json={"evidence": "x"})
        assert response.status_code == 404

    def test_summary(self, client):
        add_gap(client, state="DISABLED")
        add_gap(client, state="DISABLED")

        data = client.get("/known-incomplete/summary").json()

        assert data["DISABLED"] == 2
        assert data["BUGGY"] == 0

    def test_consistency_with_explicit_exit_code(self, client):
        assert client.get("/consistency?exit_code=1").json()["discrepancy"] is True
        add_gap(client)
        assert client.get("/consistency?exit_code=1").json()["discrepancy"] is False


# -----------------------------------------------------------------------------
# Test 4: Approvals
# -----------------------------------------------------------------------------
class TestApprovalEndpoints:

    def test_request_auto_rejected_without_report(self, client):
        response = client.post("/approvals", json={"phase": "A", "summary": "FAS ready"})

        assert response.status_code == 201
        assert response.json()["status"] == "REJECTED"
        assert response.json()["resolved_by"] == "auto"
        assert client.get("/approvals/pending").json() == []

    def test_approve_flow(self, client, start_phase):
        client.post("/veritas/report", json=CLEAN_REPORT)
        request_id = client.post("/approvals", json={"phase": "A", "summary": "FAS ready"}).json()["id"]

        assert [r["id"] for r in client.get("/approvals/pending").json()] == [request_id]

        response = client.post(f"/approvals/{request_id}/approve", json={"content": "FAS body"})

        assert response.status_code == 200
        assert response.json() == {
            "request_id": request_id,
            "phase": "A",
            "next_phase": "B",
            "pipeline_complete": False,
            "blocked_reason": None,
        }
        start_phase.assert_awaited_once()
        assert client.get("/pipeline/status").json()["approved_phases"] == ["A"]

    def test_approve_reports_blocked_successor(self, client, start_phase):
        start_phase.side_effect = RuntimeError("model quota exceeded")
        client.post("/veritas/report", json=CLEAN_REPORT)
        request_id = client.post("/approvals", json={"phase": "A", "summary": "FAS ready"}).json()["id"]

        data = client.post(f"/approvals/{request_id}/approve", json={"content": "FAS body"}).json()

        assert data["next_phase"] == "B"
        assert data["blocked_reason"] == "model quota exceeded"

    def test_approve_unknown_request(self, client):
        response = client.post("/approvals/hitl-nope/approve", json={"content": "x"})
        assert response.status_code == 404

    def test_approve_auto_rejected_request_conflicts(self, client):
        request_id = client.post("/approvals", json={"phase": "A", "summary": "FAS ready"}).json()["id"]

        response = client.post(f"/approvals/{request_id}/approve", json={"content": "x"})

        assert response.status_code == 409

    def test_reject(self, client):
        client.post("/veritas/report", json=CLEAN_REPORT)
        request_id = client.post("/approvals", json={"phase": "A", "summary": "FAS ready"}).json()["id"]

        response = client.post(f"/approvals/{request_id}/reject", json={"comments": "missing NFRs"})

        assert response.status_code == 200
        assert response.json()["status"] == "REJECTED"
        assert response.json()["comments"] == "missing NFRs"
        assert client.post(f"/approvals/{request_id}/reject", json={}).status_code == 404


# -----------------------------------------------------------------------------
# Test 5: Phases Without a Human Checkpoint
# -----------------------------------------------------------------------------
@pytest.fixture
def unattended_client(abc_chain, start_phase, block_phase):
    """Client over A → B → C where B needs no human approval."""
    chain = PhaseChainConfig(
        chain=abc_chain.chain,
        rules=abc_chain.rules,
        approval_required=frozenset({"A", "C"}),
    ).validate()
    config = PipelineConfig(storage_backend="memory", phase_chain=chain)
    pipeline = ApprovalPipeline(config, start_phase, block_phase, backend=MemoryBackend())
    with TestClient(create_app(pipeline)) as test_client:
        yield test_client
    pipeline.close()


class TestCompletePhaseEndpoint:

    def test_complete_unattended_phase(self, unattended_client):
        unattended_client.post("/veritas/report", json=CLEAN_REPORT)

        response = unattended_client.post("/phases/B/complete", json={"content": "asset bundle"})

        assert response.status_code == 200
        assert response.json()["phase"] == "B"
        assert response.json()["next_phase"] == "C"
        assert response.json()["request_id"].startswith("hitl-B-")
        assert unattended_client.get("/pipeline/status").json()["approved_phases"] == ["B"]

    def test_approval_request_for_unattended_phase_conflicts(self, unattended_client):
        unattended_client.post("/veritas/report", json=CLEAN_REPORT)

        response = unattended_client.post("/approvals", json={"phase": "B", "summary": "assets"})

        assert response.status_code == 409

    def test_complete_gated_phase_conflicts(self, unattended_client):
        unattended_client.post("/veritas/report", json=CLEAN_REPORT)

        response = unattended_client.post("/phases/A/complete", json={"content": "FAS body"})

        assert response.status_code == 409
        assert unattended_client.get("/pipeline/status").json()["approved_phases"] == []

    def test_complete_blocked_by_gate(self, unattended_client):
        response = unattended_client.post("/phases/B/complete", json={"content": "asset bundle"})

        assert response.status_code == 409
        assert "blocked" in response.json()["detail"]


# -----------------------------------------------------------------------------
# Test 6: Logging Setup
# -----------------------------------------------------------------------------
class TestLoggingSetup:

    def test_import_leaves_root_logger_alone(self):
        with patch("logging.basicConfig") as basic_config:
            importlib.reload(api)

        basic_config.assert_not_called()

    def test_create_app_configures_logging(self, pipeline):
        with patch("logging.basicConfig") as basic_config:
            api.create_app(pipeline)

        basic_config.assert_called_once()
