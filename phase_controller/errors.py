"""
Pipeline Errors

Exception hierarchy for the phase approval pipeline.

Only conditions the caller must act on are raised:
- ValidationError: rejected input, nothing was mutated
- ReapprovalError: a completed phase was approved again under the REJECT policy
- ConfigurationError: invalid phase chain or settings at startup

Failed phase transitions and degraded persistence are NOT raised.
They are converted into block notifications and logged failures.
"""


class PipelineError(Exception):
    """Base class for all pipeline errors."""


class ValidationError(PipelineError, ValueError):
    """Input was rejected. No state was mutated."""


class ReapprovalError(PipelineError):
    """A phase that already has a recorded output was approved again."""

    def __init__(self, phase: str):
        self.phase = phase
        super().__init__(f"Phase {phase} already has an approved output")


class ConfigurationError(PipelineError):
    """Invalid pipeline configuration detected at startup."""
