"""Tests for savings_watcher.store."""

from __future__ import annotations

import json
from pathlib import Path
from unittest.mock import patch

import pytest

from savings_watcher.store import JsonFileStore, PersistentAggregate, resolve_save_path


class TestResolveSavePath:
    @pytest.mark.parametrize("name", ["saveFile", "saveFile.json"])
    def test_json_suffix_optional(self, name: str, tmp_path: Path):
        assert resolve_save_path(name, tmp_path) == tmp_path / "saveFile.json"

    def test_absolute_path_kept(self, tmp_path: Path):
        target = tmp_path / "data" / "totals"
        assert resolve_save_path(str(target)) == tmp_path / "data" / "totals.json"

    def test_relative_to_working_directory(self, tmp_path: Path, monkeypatch):
        monkeypatch.chdir(tmp_path)
        assert resolve_save_path("totals") == tmp_path / "totals.json"


class TestJsonFileStore:
    def test_missing_file_loads_none(self, tmp_path: Path):
        assert JsonFileStore(tmp_path / "missing.json").load() is None

    def test_invalid_json_warns(self, tmp_path: Path):
        path = tmp_path / "broken.json"
        path.write_text("{not json")
        with patch("savings_watcher.store.logger") as mock_logger:
            assert JsonFileStore(path).load() is None
        mock_logger.warning.assert_called_once()

    @pytest.mark.asyncio
    async def test_save_overwrites(self, tmp_path: Path):
        store = JsonFileStore(tmp_path / "saveFile.json")
        await store.save({"total": 1})
        await store.save({"total": 2.5, "count": 2})
        assert json.loads(store.path.read_text()) == {"total": 2.5, "count": 2}
        assert store.load() == {"total": 2.5, "count": 2}

    @pytest.mark.asyncio
    async def test_save_rejects_unserializable(self, tmp_path: Path):
        store = JsonFileStore(tmp_path / "saveFile.json")
        with pytest.raises(TypeError):
            await store.save({"when": object()})
        assert not store.path.exists()


class TestPersistentAggregate:
    def test_defaults_to_empty_dict(self):
        assert PersistentAggregate().data == {}

    def test_load_existing(self, tmp_path: Path):
        path = tmp_path / "saveFile.json"
        path.write_text('{"total": 3}')
        assert PersistentAggregate.load(JsonFileStore(path)).data == {"total": 3}

    def test_load_missing_warns_and_starts_empty(self, tmp_path: Path):
        with patch("savings_watcher.store.logger") as mock_logger:
            aggregate = PersistentAggregate.load(JsonFileStore(tmp_path / "none.json"))
        assert aggregate.data == {}
        mock_logger.warning.assert_called_once()

    def test_non_dict_data_allowed(self, tmp_path: Path):
        path = tmp_path / "saveFile.json"
        path.write_text("[1, 2]")
        assert PersistentAggregate.load(JsonFileStore(path)).data == [1, 2]
