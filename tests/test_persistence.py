"""
Tests for the persistence backends.

Failures must be reported as return values, never raised.
"""

import os

import pytest

from phase_controller.config import PipelineConfig
from phase_controller.persistence import (
    FileBackend,
    MemoryBackend,
    create_backend,
    load_json,
    save_json,
)


class TestMemoryBackend:

    def test_get_set_delete(self):
        backend = MemoryBackend()

        assert backend.get("k") is None
        assert backend.set("k", "v") is True
        assert backend.get("k") == "v"
        assert backend.delete("k") is True
        assert backend.get("k") is None

    def test_failing_writes(self):
        backend = MemoryBackend({"k": "old"})
        backend.fail_writes = True

        assert backend.set("k", "new") is False
        assert backend.delete("k") is False
        assert backend.get("k") == "old"


class TestFileBackend:

    def test_roundtrip(self, tmp_path):
        backend = FileBackend(tmp_path / "store")

        assert backend.set("phase-outputs", '{"a": 1}') is True
        assert backend.get("phase-outputs") == '{"a": 1}'
        assert (tmp_path / "store" / "phase-outputs.json").exists()

    def test_missing_key(self, tmp_path):
        assert FileBackend(tmp_path).get("absent") is None

    def test_no_temp_file_left_behind(self, tmp_path):
        backend = FileBackend(tmp_path)
        backend.set("k", "v")

        assert [p.name for p in tmp_path.iterdir()] == ["k.json"]

    def test_delete_missing_key_succeeds(self, tmp_path):
        assert FileBackend(tmp_path).delete("absent") is True

    def test_rejects_path_traversal_keys(self, tmp_path):
        with pytest.raises(ValueError):
            FileBackend(tmp_path).get("../escape")

    @pytest.mark.skipif(hasattr(os, "geteuid") and os.geteuid() == 0, reason="root ignores permissions")
    def test_unwritable_directory_reports_failure(self, tmp_path):
        directory = tmp_path / "readonly"
        directory.mkdir()
        backend = FileBackend(directory)
        directory.chmod(0o500)
        try:
            assert backend.set("k", "v") is False
        finally:
            directory.chmod(0o700)

    def test_write_into_file_path_reports_failure(self, tmp_path):
        blocker = tmp_path / "blocker"
        blocker.write_text("not a directory")

        backend = FileBackend(blocker / "nested")

        assert backend.set("k", "v") is False
        assert backend.get("k") is None


class TestJsonHelpers:

    def test_roundtrip(self):
        backend = MemoryBackend()
        assert save_json(backend, "k", {"x": [1, 2]}) is True
        assert load_json(backend, "k") == {"x": [1, 2]}

    def test_corrupt_json_is_none(self):
        assert load_json(MemoryBackend({"k": "{broken"}), "k") is None

    def test_empty_value_is_none(self):
        assert load_json(MemoryBackend({"k": ""}), "k") is None


class TestCreateBackend:

    def test_memory(self):
        assert isinstance(create_backend(PipelineConfig(storage_backend="memory")), MemoryBackend)

    def test_file(self, tmp_path):
        backend = create_backend(PipelineConfig(storage_backend="file", storage_dir=tmp_path))
        assert isinstance(backend, FileBackend)
        assert backend.directory == tmp_path
