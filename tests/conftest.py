"""
Pytest configuration for Phase Approval Pipeline tests.

This module provides:
1. Async test support without pytest-asyncio
2. Common fixtures for all tests
3. Test session configuration
"""

import asyncio
import functools
from unittest.mock import AsyncMock, MagicMock

import pytest

from phase_controller.config import PipelineConfig
from phase_controller.persistence import MemoryBackend
from phase_controller.phase_rules import PhaseChainConfig, PhaseInputRule
from phase_controller.verification_model import VeritasReport


# -----------------------------------------------------------------------------
# Async Test Support
# -----------------------------------------------------------------------------
def async_test(func):
    """
    Decorator to run async tests without pytest-asyncio.

    Usage:
        @async_test
        async def test_something(self):
            result = await some_async_function()
            assert result is not None
    """
    @functools.wraps(func)
    def wrapper(*args, **kwargs):
        return asyncio.run(func(*args, **kwargs))
    return wrapper


# -----------------------------------------------------------------------------
# Test Constants
# -----------------------------------------------------------------------------
ABC_INSTRUCTION_B = "Build B from A."
ABC_INSTRUCTION_C = "Build C from A and B."


def make_report(
    exit_code: int = 0,
    wired: int = 14,
    total: int = 17,
    critical_missing=(),
) -> VeritasReport:
    """Helper to create verifier reports."""
    return VeritasReport(
        total=total,
        wired=wired,
        not_wired=total - wired,
        critical_missing=tuple(critical_missing),
        exit_code=exit_code,
    )


# -----------------------------------------------------------------------------
# Common Fixtures
# -----------------------------------------------------------------------------
@pytest.fixture
def backend():
    """Fresh in-memory persistence backend."""
    return MemoryBackend()


@pytest.fixture
def abc_chain():
    """Three-phase chain A → B → C with explicit rules for B and C."""
    return PhaseChainConfig(
        chain=("A", "B", "C"),
        rules={
            "B": PhaseInputRule(predecessors=(("A", "Phase A"),), instruction=ABC_INSTRUCTION_B),
            "C": PhaseInputRule(
                predecessors=(("A", "Phase A"), ("B", "Phase B")),
                instruction=ABC_INSTRUCTION_C,
            ),
        },
        approval_required=frozenset({"A", "B", "C"}),
    ).validate()


@pytest.fixture
def start_phase():
    """Mock external start-phase operation that succeeds."""
    return AsyncMock(return_value=None)


@pytest.fixture
def failing_start_phase():
    """Mock external start-phase operation that fails."""
    return AsyncMock(side_effect=RuntimeError("LLM endpoint unavailable"))


@pytest.fixture
def block_phase():
    """Mock external block-phase notification."""
    return MagicMock()


@pytest.fixture
def memory_config(abc_chain):
    """Pipeline config using the memory backend and the A → B → C chain."""
    return PipelineConfig(storage_backend="memory", phase_chain=abc_chain)


# -----------------------------------------------------------------------------
# Session Configuration
# -----------------------------------------------------------------------------
def pytest_configure(config):
    """Configure pytest session."""
    config.addinivalue_line(
        "markers", "asyncio: mark test as async (custom implementation)"
    )
