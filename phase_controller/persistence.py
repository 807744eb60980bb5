"""
Persistence Backends

Key-value persistence for pipeline state.

POLICY (NON-NEGOTIABLE):
- BEST-EFFORT: Storage failures NEVER propagate to callers
- EXPLICIT: get() returns None and set()/delete() return False on failure
- LOGGED: Every failure is logged with the key involved
- NAMESPACED: Each component owns exactly one key

Components treat a None read as "no persisted state" and a False write as
"continue with in-memory state only". In-memory state stays authoritative.
"""

import json
import logging
import os
import re
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Optional, Dict

logger = logging.getLogger("persistence")

# -----------------------------------------------------------------------------
# Namespaced Keys
# -----------------------------------------------------------------------------
PHASE_OUTPUTS_KEY = "phase-outputs"
KNOWN_INCOMPLETE_KEY = "known-incomplete"
VERITAS_REPORT_KEY = "veritas-report"

_SAFE_KEY = re.compile(r"^[A-Za-z0-9._-]+$")


# -----------------------------------------------------------------------------
# Backend Contract
# -----------------------------------------------------------------------------
class PersistenceBackend(ABC):
    """
    Durable key-value contract.

    Implementations MUST NOT raise for storage failures.
    """

    @abstractmethod
    def get(self, key: str) -> Optional[str]:
        """Return the stored value, or None if absent or unreadable."""

    @abstractmethod
    def set(self, key: str, value: str) -> bool:
        """Store a value. Returns False if the write failed."""

    @abstractmethod
    def delete(self, key: str) -> bool:
        """Remove a value. Returns False if the removal failed."""

    def close(self) -> None:
        """Release backend resources."""


# -----------------------------------------------------------------------------
# In-Memory Backend
# -----------------------------------------------------------------------------
class MemoryBackend(PersistenceBackend):
    """
    Dict-backed backend.

    Used for tests and for pipeline runs that do not need cross-session
    continuity. Set fail_writes to simulate full or unavailable storage.
    """

    def __init__(self, initial: Optional[Dict[str, str]] = None):
        self._data: Dict[str, str] = dict(initial or {})
        self.fail_writes = False

    def get(self, key: str) -> Optional[str]:
        return self._data.get(key)

    def set(self, key: str, value: str) -> bool:
        if self.fail_writes:
            logger.warning(f"Write rejected for key {key}: storage unavailable")
            return False
        self._data[key] = value
        return True

    def delete(self, key: str) -> bool:
        if self.fail_writes:
            logger.warning(f"Delete rejected for key {key}: storage unavailable")
            return False
        self._data.pop(key, None)
        return True


# -----------------------------------------------------------------------------
# File Backend
# -----------------------------------------------------------------------------
class FileBackend(PersistenceBackend):
    """
    One JSON document per key inside a directory.

    Writes go to a temp file which is then atomically renamed over the target.
    """

    def __init__(self, directory: Path):
        self._directory = Path(directory)
        self._ensure_dirs()

    def _ensure_dirs(self) -> None:
        try:
            self._directory.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            logger.warning(f"Could not create storage directory {self._directory}: {e}")

    def _path_for(self, key: str) -> Path:
        if not _SAFE_KEY.match(key):
            raise ValueError(f"Invalid storage key: {key!r}")
        return self._directory / f"{key}.json"

    @property
    def directory(self) -> Path:
        return self._directory

    def get(self, key: str) -> Optional[str]:
        path = self._path_for(key)
        if not path.exists():
            return None
        try:
            return path.read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as e:
            logger.warning(f"Failed to read key {key} from {path}: {e}")
            return None

    def set(self, key: str, value: str) -> bool:
        path = self._path_for(key)
        temp_file = path.with_suffix(".tmp")
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            with open(temp_file, "w", encoding="utf-8") as f:
                f.write(value)
                f.flush()
                os.fsync(f.fileno())
            temp_file.replace(path)
            return True
        except OSError as e:
            logger.warning(f"Failed to write key {key} to {path}: {e}")
            if temp_file.exists():
                try:
                    temp_file.unlink()
                except OSError:
                    pass
            return False

    def delete(self, key: str) -> bool:
        path = self._path_for(key)
        try:
            if path.exists():
                path.unlink()
            return True
        except OSError as e:
            logger.warning(f"Failed to delete key {key} at {path}: {e}")
            return False


# -----------------------------------------------------------------------------
# JSON Helpers
# -----------------------------------------------------------------------------
def load_json(backend: PersistenceBackend, key: str):
    """
    Read and decode a JSON value.

    Returns None when the key is absent, unreadable, or corrupt.
    """
    raw = backend.get(key)
    if not raw:
        return None
    try:
        return json.loads(raw)
    except json.JSONDecodeError as e:
        logger.warning(f"Corrupt JSON under key {key}, treating as empty: {e}")
        return None


def save_json(backend: PersistenceBackend, key: str, value) -> bool:
    """Encode and write a JSON value. Returns False if the write failed."""
    try:
        encoded = json.dumps(value, default=str)
    except (TypeError, ValueError) as e:
        logger.warning(f"Could not encode value for key {key}: {e}")
        return False
    return backend.set(key, encoded)


def create_backend(config) -> PersistenceBackend:
    """Build the backend selected by a PipelineConfig."""
    if config.storage_backend == "memory":
        return MemoryBackend()
    return FileBackend(config.storage_dir)
