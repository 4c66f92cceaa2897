"""Tests for the snapshot stores."""

from __future__ import annotations

import json
from pathlib import Path
from unittest.mock import patch

import pytest

from fixpilot.adapters.storage import JsonStateStore, MemoryStateStore


class TestJsonStateStore:
    def test_missing_file_loads_nothing(self, tmp_path: Path) -> None:
        assert JsonStateStore(tmp_path / "state.json").load() is None

    def test_save_and_load(self, tmp_path: Path) -> None:
        store = JsonStateStore(tmp_path / "nested" / "state.json")
        store.save({"stats": {"healthScore": 90}})
        assert store.load() == {"stats": {"healthScore": 90}}

    def test_namespaces_are_preserved(self, tmp_path: Path) -> None:
        path = tmp_path / "state.json"
        path.write_text(json.dumps({"other-app": {"theme": "dark"}}))

        store = JsonStateStore(path, namespace="fixpilot")
        store.save({"errors": []})

        document = json.loads(path.read_text())
        assert document == {"other-app": {"theme": "dark"}, "fixpilot": {"errors": []}}

    @pytest.mark.parametrize("content", ["{not json", "[1, 2, 3]", ""])
    def test_corrupt_file_loads_nothing(self, tmp_path: Path, content: str) -> None:
        path = tmp_path / "state.json"
        path.write_text(content)
        assert JsonStateStore(path).load() is None

    def test_non_object_namespace(self, tmp_path: Path) -> None:
        path = tmp_path / "state.json"
        path.write_text(json.dumps({"fixpilot": "oops"}))
        assert JsonStateStore(path).load() is None

    def test_clear_removes_only_namespace(self, tmp_path: Path) -> None:
        path = tmp_path / "state.json"
        path.write_text(json.dumps({"other": 1}))
        store = JsonStateStore(path)
        store.save({"errors": []})

        store.clear()

        assert store.load() is None
        assert json.loads(path.read_text()) == {"other": 1}

    def test_failed_write_keeps_previous_snapshot(self, tmp_path: Path) -> None:
        path = tmp_path / "state.json"
        store = JsonStateStore(path)
        store.save({"version": 1})

        with (
            patch.object(Path, "replace", side_effect=OSError("disk full")),
            pytest.raises(OSError),
        ):
            store.save({"version": 2})

        assert store.load() == {"version": 1}
        assert sorted(p.name for p in tmp_path.iterdir()) == ["state.json"]


class TestMemoryStateStore:
    def test_round_trip_is_a_copy(self) -> None:
        store = MemoryStateStore()
        state = {"errors": [{"id": "err-1"}]}
        store.save(state)
        state["errors"].clear()

        loaded = store.load()
        assert loaded == {"errors": [{"id": "err-1"}]}
        assert store.saves == 1

    def test_clear(self) -> None:
        store = MemoryStateStore({"stats": {}})
        store.clear()
        assert store.load() is None
