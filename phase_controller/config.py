"""
Pipeline Configuration

Environment-driven settings for a pipeline instance.

Variables:
- PIPELINE_STORAGE_DIR: directory for the file backend (default: data/pipeline)
- PIPELINE_STORAGE_BACKEND: "file" or "memory" (default: file)
- PIPELINE_PHASE_CONFIG: optional YAML file overriding the phase chain
- PIPELINE_REAPPROVAL_POLICY: "last_write_wins" or "reject" (default: last_write_wins)
"""

import logging
import os
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Optional, Mapping

from .errors import ConfigurationError
from .phase_rules import (
    PhaseChainConfig,
    default_phase_chain_config,
    load_phase_chain_config,
)

logger = logging.getLogger("pipeline_config")

# -----------------------------------------------------------------------------
# Defaults
# -----------------------------------------------------------------------------
DEFAULT_STORAGE_DIR = Path("data/pipeline")
STORAGE_BACKENDS = ("file", "memory")


class ReapprovalPolicy(str, Enum):
    """
    What happens when a phase with a recorded output is approved again.

    LAST_WRITE_WINS: overwrite and re-attempt the transition (idempotent replay)
    REJECT: refuse the approval with ReapprovalError
    """
    LAST_WRITE_WINS = "last_write_wins"
    REJECT = "reject"


@dataclass
class PipelineConfig:
    """Settings for one pipeline instance."""
    storage_dir: Path = DEFAULT_STORAGE_DIR
    storage_backend: str = "file"
    reapproval_policy: ReapprovalPolicy = ReapprovalPolicy.LAST_WRITE_WINS
    phase_chain: PhaseChainConfig = field(default_factory=default_phase_chain_config)
    phase_config_path: Optional[Path] = None

    def __post_init__(self):
        if self.storage_backend not in STORAGE_BACKENDS:
            raise ConfigurationError(
                f"Unknown storage backend: {self.storage_backend}. Valid: {list(STORAGE_BACKENDS)}"
            )
        self.storage_dir = Path(self.storage_dir)

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "PipelineConfig":
        """Build a config from environment variables."""
        env = os.environ if environ is None else environ

        policy_value = env.get("PIPELINE_REAPPROVAL_POLICY", ReapprovalPolicy.LAST_WRITE_WINS.value)
        try:
            policy = ReapprovalPolicy(policy_value.strip().lower())
        except ValueError as e:
            raise ConfigurationError(
                f"Unknown re-approval policy: {policy_value}. Valid: {[p.value for p in ReapprovalPolicy]}"
            ) from e

        phase_config_path = env.get("PIPELINE_PHASE_CONFIG")
        if phase_config_path:
            phase_chain = load_phase_chain_config(Path(phase_config_path))
        else:
            phase_chain = default_phase_chain_config()

        config = cls(
            storage_dir=Path(env.get("PIPELINE_STORAGE_DIR", str(DEFAULT_STORAGE_DIR))),
            storage_backend=env.get("PIPELINE_STORAGE_BACKEND", "file").strip().lower(),
            reapproval_policy=policy,
            phase_chain=phase_chain,
            phase_config_path=Path(phase_config_path) if phase_config_path else None,
        )
        logger.info(
            f"Pipeline config: backend={config.storage_backend}, dir={config.storage_dir}, "
            f"policy={config.reapproval_policy.value}, phases={len(config.phase_chain.chain)}"
        )
        return config
