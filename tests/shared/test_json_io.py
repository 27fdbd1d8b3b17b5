"""
Tests for the JSON file helpers.
"""
import json
from unittest.mock import patch

import pytest

from llamactl.shared.json_io import atomic_write_json, load_json


class TestJsonIO:

    def test_write_then_load(self, temp_dir):
        path = temp_dir / "nested" / "state.json"
        atomic_write_json(path, {"servers": [], "version": "1.0"})
        assert load_json(path) == {"servers": [], "version": "1.0"}

    def test_no_temporary_file_left_behind(self, temp_dir):
        path = temp_dir / "state.json"
        atomic_write_json(path, {"a": 1})
        assert [p.name for p in temp_dir.iterdir()] == ["state.json"]

    def test_failed_replace_keeps_previous_document(self, temp_dir):
        """A failed rename leaves the old file intact and removes the temporary file."""
        path = temp_dir / "state.json"
        atomic_write_json(path, {"generation": 1})

        with patch("llamactl.shared.json_io.os.replace", side_effect=OSError("disk full")):
            with pytest.raises(OSError):
                atomic_write_json(path, {"generation": 2})

        assert json.loads(path.read_text()) == {"generation": 1}
        assert [p.name for p in temp_dir.iterdir()] == ["state.json"]

    def test_load_missing(self, temp_dir):
        with pytest.raises(FileNotFoundError):
            load_json(temp_dir / "missing.json")
