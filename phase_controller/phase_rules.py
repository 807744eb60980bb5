"""
Phase Chain and Input Rules

Defines the ordered phase chain and, per phase, which approved predecessor
outputs are assembled into its input.

Default chain:
    1A → 1B → 2 → 3A → 3B → 4 → 5 → 6A → 6B → 7 → 8 → 9 → 10 → 11

Data piping (default rules):
    1A (FAS)        → feeds 1B, 2, 3A, 3B, 4, 5, 6B, 10
    1B (PRD)        → feeds 2, 3A, 3B
    3A (ADR)        → feeds 4, 6A, 10
    4  (TechSpec)   → feeds 5, 6A, 7, 8, 10, 11
    5  (WBS)        → feeds 6A
    6A (Code)       → feeds 7, 9, 11
    7  (Review)     → feeds 8, 9, 10

Phases without a rule receive the immediately preceding phase's output.
The configuration is validated once at startup.
"""

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Optional, Tuple, FrozenSet

import yaml

from .errors import ConfigurationError

logger = logging.getLogger("phase_rules")

# -----------------------------------------------------------------------------
# Defaults
# -----------------------------------------------------------------------------
DEFAULT_PHASE_CHAIN: Tuple[str, ...] = (
    "1A", "1B", "2", "3A", "3B", "4", "5", "6A", "6B", "7", "8", "9", "10", "11",
)

# Asset generation (6B) advances without a human checkpoint
DEFAULT_APPROVAL_REQUIRED: FrozenSet[str] = frozenset(
    p for p in DEFAULT_PHASE_CHAIN if p != "6B"
)

GENERIC_START_INSTRUCTION = "Begin this phase."


@dataclass(frozen=True)
class PhaseInputRule:
    """Ordered (predecessor phase, section label) pairs plus an instruction."""
    predecessors: Tuple[Tuple[str, str], ...]
    instruction: str

    def to_dict(self) -> Dict:
        return {
            "predecessors": [{"phase": p, "label": label} for p, label in self.predecessors],
            "instruction": self.instruction,
        }

    @classmethod
    def from_dict(cls, data: Dict) -> "PhaseInputRule":
        predecessors = []
        for entry in data.get("predecessors", []):
            if isinstance(entry, dict):
                predecessors.append((str(entry["phase"]), str(entry["label"])))
            else:
                phase, label = entry
                predecessors.append((str(phase), str(label)))
        return cls(
            predecessors=tuple(predecessors),
            instruction=str(data.get("instruction", "")),
        )


DEFAULT_INPUT_RULES: Dict[str, PhaseInputRule] = {
    "1B": PhaseInputRule(
        predecessors=(("1A", "FAS (Phase 1A)"),),
        instruction="Based on the FAS above, generate the full PRD and User Stories.",
    ),
    "2": PhaseInputRule(
        predecessors=(("1A", "FAS (Phase 1A)"), ("1B", "PRD (Phase 1B)")),
        instruction="Based on the FAS and PRD above, define the optimal team configuration and agent assignments.",
    ),
    "3A": PhaseInputRule(
        predecessors=(
            ("1A", "FAS (Phase 1A)"),
            ("1B", "PRD (Phase 1B)"),
            ("2", "Team Assembly (Phase 2)"),
        ),
        instruction="Generate the Architecture Decision Record (ADR) and system component specs. Validate all OPEN/CLOSE pairs from the FAS.",
    ),
    "3B": PhaseInputRule(
        predecessors=(("1A", "FAS (Phase 1A)"), ("1B", "PRD (Phase 1B)")),
        instruction="Generate the Brand Identity Guidelines and Design System tokens.",
    ),
    "4": PhaseInputRule(
        predecessors=(("3A", "ADR (Phase 3A)"), ("1A", "FAS (Phase 1A)")),
        instruction="Generate the full Technical Specification. Document every threshold with its calibration_basis. No magic constants.",
    ),
    "5": PhaseInputRule(
        predecessors=(("1A", "FAS (Phase 1A)"), ("4", "Technical Spec (Phase 4)")),
        instruction="Generate the Work Breakdown Structure. One task per FAS function (T-XXX maps to F-XXX).",
    ),
    "6A": PhaseInputRule(
        predecessors=(
            ("4", "Technical Spec (Phase 4)"),
            ("5", "WBS (Phase 5)"),
            ("3A", "ADR (Phase 3A)"),
        ),
        instruction="Implement the backend and frontend code per the technical spec. Follow all architectural decisions.",
    ),
    "6B": PhaseInputRule(
        predecessors=(("3B", "Design System (Phase 3B)"), ("1A", "FAS (Phase 1A)")),
        instruction="Generate all required assets (icons, images) per the design system tokens.",
    ),
    "7": PhaseInputRule(
        predecessors=(("6A", "Implementation (Phase 6A)"), ("4", "Technical Spec (Phase 4)")),
        instruction="Perform a full code review. Check for: silent drops, unclosed states, missing error handling, architectural violations.",
    ),
    "8": PhaseInputRule(
        predecessors=(("7", "Code Review (Phase 7)"), ("4", "Technical Spec (Phase 4)")),
        instruction="Generate the QA test plan and test cases. Verify each FAS function has a corresponding test.",
    ),
    "9": PhaseInputRule(
        predecessors=(("6A", "Implementation (Phase 6A)"), ("7", "Code Review (Phase 7)")),
        instruction="Conduct a full OWASP security audit. Check authentication, authorization, input validation, data exposure.",
    ),
    "10": PhaseInputRule(
        predecessors=(
            ("1A", "FAS (Phase 1A)"),
            ("3A", "ADR (Phase 3A)"),
            ("4", "Technical Spec (Phase 4)"),
            ("7", "Code Review (Phase 7)"),
        ),
        instruction="Generate the complete technical documentation: API reference, architecture overview, developer guide.",
    ),
    "11": PhaseInputRule(
        predecessors=(
            ("4", "Technical Spec (Phase 4)"),
            ("6A", "Implementation (Phase 6A)"),
            ("9", "Security Audit (Phase 9)"),
        ),
        instruction="Generate the CI/CD pipeline configuration, infrastructure-as-code, and deployment runbook.",
    ),
}


# -----------------------------------------------------------------------------
# Chain Configuration
# -----------------------------------------------------------------------------
@dataclass(frozen=True)
class PhaseChainConfig:
    """
    Static chain definition for one pipeline instance.

    Call validate() before use; build via default_phase_chain_config() or
    load_phase_chain_config() which validate for you.
    """
    chain: Tuple[str, ...]
    rules: Dict[str, PhaseInputRule] = field(default_factory=dict)
    approval_required: FrozenSet[str] = field(default_factory=frozenset)

    def validate(self) -> "PhaseChainConfig":
        if not self.chain:
            raise ConfigurationError("Phase chain cannot be empty")

        seen = set()
        for phase in self.chain:
            if not phase:
                raise ConfigurationError("Phase identifiers must be non-empty strings")
            if phase in seen:
                raise ConfigurationError(f"Duplicate phase in chain: {phase}")
            seen.add(phase)

        position = {phase: i for i, phase in enumerate(self.chain)}
        for phase, rule in self.rules.items():
            if phase not in position:
                raise ConfigurationError(f"Input rule defined for unknown phase: {phase}")
            for predecessor, label in rule.predecessors:
                if predecessor not in position:
                    raise ConfigurationError(
                        f"Phase {phase} depends on unknown phase: {predecessor}"
                    )
                if position[predecessor] >= position[phase]:
                    raise ConfigurationError(
                        f"Phase {phase} depends on {predecessor}, which does not precede it"
                    )
                if not label:
                    raise ConfigurationError(
                        f"Phase {phase} has an empty label for predecessor {predecessor}"
                    )

        unknown_gated = set(self.approval_required) - seen
        if unknown_gated:
            raise ConfigurationError(
                f"Approval required for unknown phases: {sorted(unknown_gated)}"
            )

        return self

    def index_of(self, phase: str) -> int:
        """Position of a phase in the chain, or -1 when unknown."""
        try:
            return self.chain.index(phase)
        except ValueError:
            return -1

    def rule_for(self, phase: str) -> Optional[PhaseInputRule]:
        return self.rules.get(phase)

    def requires_approval(self, phase: str) -> bool:
        return phase in self.approval_required

    def to_dict(self) -> Dict:
        return {
            "chain": list(self.chain),
            "approval_required": [p for p in self.chain if p in self.approval_required],
            "rules": {phase: rule.to_dict() for phase, rule in self.rules.items()},
        }


def default_phase_chain_config() -> PhaseChainConfig:
    """The built-in 14-phase chain."""
    return PhaseChainConfig(
        chain=DEFAULT_PHASE_CHAIN,
        rules=dict(DEFAULT_INPUT_RULES),
        approval_required=DEFAULT_APPROVAL_REQUIRED,
    ).validate()


def phase_chain_config_from_dict(data: Dict) -> PhaseChainConfig:
    """
    Build a validated chain config from a mapping.

    Expected shape:
        chain: [A, B, C]
        approval_required: [A, B]      # optional, defaults to every phase
        rules:
          B:
            predecessors:
              - {phase: A, label: "Phase A"}
            instruction: "..."
    """
    if not isinstance(data, dict):
        raise ConfigurationError("Phase chain config must be a mapping")

    chain = tuple(str(p) for p in data.get("chain") or ())
    try:
        rules = {
            str(phase): PhaseInputRule.from_dict(rule or {})
            for phase, rule in (data.get("rules") or {}).items()
        }
    except (KeyError, TypeError, ValueError) as e:
        raise ConfigurationError(f"Malformed input rule: {e}") from e

    approval = data.get("approval_required")
    approval_required = frozenset(str(p) for p in approval) if approval is not None else frozenset(chain)

    return PhaseChainConfig(
        chain=chain,
        rules=rules,
        approval_required=approval_required,
    ).validate()


def load_phase_chain_config(path: Path) -> PhaseChainConfig:
    """Load and validate a chain config from a YAML file."""
    try:
        with open(path, "r") as f:
            data = yaml.safe_load(f) or {}
    except (OSError, yaml.YAMLError) as e:
        raise ConfigurationError(f"Could not load phase chain config {path}: {e}") from e

    config = phase_chain_config_from_dict(data)
    logger.info(f"Loaded phase chain from {path}: {len(config.chain)} phases, {len(config.rules)} rules")
    return config
