"""Tests for file_handler module: encoding-aware reads and atomic writes."""

import json
from unittest.mock import patch

import pytest

from taskmaster_sync.file_handler import read_file_with_encoding, write_json_atomic

# ---------------------------------------------------------------------------
# read_file_with_encoding
# ---------------------------------------------------------------------------


class TestReadFileWithEncoding:
    """Tests for read_file_with_encoding."""

    def test_utf8_file(self, tmp_path):
        f = tmp_path / "tasks.json"
        f.write_text('{"tasks": [{"title": "café"}]}', encoding="utf-8")

        content, encoding = read_file_with_encoding(f)
        assert "café" in content
        assert encoding == "utf-8"

    def test_utf8_bom_stripped(self, tmp_path):
        f = tmp_path / "tasks.json"
        f.write_bytes(b"\xef\xbb\xbf" + b'{"tasks": []}')

        content, encoding = read_file_with_encoding(f)
        assert content == '{"tasks": []}'
        assert encoding == "utf-8"

    def test_empty_file(self, tmp_path):
        f = tmp_path / "empty.json"
        f.write_bytes(b"")

        assert read_file_with_encoding(f) == ("", "utf-8")

    def test_non_utf8_file(self, tmp_path):
        f = tmp_path / "latin.json"
        text = '{"title": "Réunion à Genève avec l\'équipe de développement"}'
        f.write_bytes(text.encode("latin-1"))

        content, encoding = read_file_with_encoding(f)
        assert "Gen" in content
        assert isinstance(encoding, str)


# ---------------------------------------------------------------------------
# write_json_atomic
# ---------------------------------------------------------------------------


class TestWriteJsonAtomic:
    """Tests for write_json_atomic."""

    def test_write_basic(self, tmp_path):
        target = tmp_path / "state.json"
        write_json_atomic(target, {"entries": [1, 2]})

        text = target.read_text(encoding="utf-8")
        assert json.loads(text) == {"entries": [1, 2]}
        assert text.endswith("\n")

    def test_creates_parent_directories(self, tmp_path):
        target = tmp_path / "a" / "b" / "tasks.json"
        write_json_atomic(target, {"tasks": []})
        assert target.exists()

    def test_non_ascii_written_verbatim(self, tmp_path):
        target = tmp_path / "tasks.json"
        write_json_atomic(target, {"title": "naïve"})
        assert "naïve" in target.read_text(encoding="utf-8")

    def test_replaces_existing_file(self, tmp_path):
        target = tmp_path / "tasks.json"
        target.write_text("old", encoding="utf-8")
        write_json_atomic(target, {"new": True})
        assert json.loads(target.read_text(encoding="utf-8")) == {"new": True}

    def test_failure_leaves_target_and_no_temp_file(self, tmp_path):
        target = tmp_path / "tasks.json"
        target.write_text('{"tasks": []}', encoding="utf-8")

        with patch(
            "taskmaster_sync.file_handler.os.replace",
            side_effect=OSError("disk full"),
        ):
            with pytest.raises(OSError, match="disk full"):
                write_json_atomic(target, {"tasks": [1]})

        assert target.read_text(encoding="utf-8") == '{"tasks": []}'
        assert [p.name for p in tmp_path.iterdir()] == ["tasks.json"]

    def test_unserialisable_data_raises(self, tmp_path):
        target = tmp_path / "tasks.json"
        with pytest.raises(TypeError):
            write_json_atomic(target, {"bad": object()})
        assert not target.exists()
