"""Tests for sync.local_store -- TaskMaster tasks.json access."""

import json

import pytest

from taskmaster_sync.errors import LocalStoreError


class TestReadAll:
    def test_missing_file_is_empty(self, local_store):
        assert local_store.read_all() == []

    def test_envelope_layout(self, local_store, write_tasks):
        write_tasks([{"id": 1, "title": "A"}], metadata={"version": "1"})
        assert local_store.read_all() == [{"id": 1, "title": "A"}]

    def test_bare_list_layout(self, local_store, tasks_path):
        tasks_path.parent.mkdir(parents=True)
        tasks_path.write_text('[{"id": 1, "title": "A"}]', encoding="utf-8")
        assert local_store.read_all() == [{"id": 1, "title": "A"}]

    def test_empty_file_is_empty(self, local_store, tasks_path):
        tasks_path.parent.mkdir(parents=True)
        tasks_path.write_text("  \n", encoding="utf-8")
        assert local_store.read_all() == []

    def test_invalid_json_raises(self, local_store, tasks_path):
        tasks_path.parent.mkdir(parents=True)
        tasks_path.write_text("{oops", encoding="utf-8")
        with pytest.raises(LocalStoreError, match="not valid JSON"):
            local_store.read_all()

    @pytest.mark.parametrize("root", ['{"items": []}', '"text"', "[1, 2]"])
    def test_unexpected_shape_raises(self, local_store, tasks_path, root):
        tasks_path.parent.mkdir(parents=True)
        tasks_path.write_text(root, encoding="utf-8")
        with pytest.raises(LocalStoreError):
            local_store.read_all()


class TestWriteAll:
    def test_keeps_envelope_keys(self, local_store, write_tasks, tasks_path):
        write_tasks([{"id": 1, "title": "A"}], metadata={"projectName": "demo"})
        local_store.write_all([{"id": 2, "title": "B"}])

        data = json.loads(tasks_path.read_text(encoding="utf-8"))
        assert data == {
            "tasks": [{"id": 2, "title": "B"}],
            "metadata": {"projectName": "demo"},
        }

    def test_keeps_bare_list_layout(self, local_store, tasks_path):
        tasks_path.parent.mkdir(parents=True)
        tasks_path.write_text("[]", encoding="utf-8")
        local_store.write_all([{"id": 1}])
        assert json.loads(tasks_path.read_text(encoding="utf-8")) == [{"id": 1}]

    def test_new_file_written_as_list(self, local_store, tasks_path):
        local_store.write_all([{"id": 1, "title": "A"}])
        assert json.loads(tasks_path.read_text(encoding="utf-8")) == [
            {"id": 1, "title": "A"}
        ]

    def test_unknown_task_fields_survive(self, local_store, write_tasks):
        task = {"id": 1, "title": "A", "subtasks": [{"id": 1}], "custom": {"x": 1}}
        write_tasks([task])
        local_store.write_all(local_store.read_all())
        assert local_store.read_all() == [task]

    def test_lock_released_after_write(self, local_store, tasks_path):
        local_store.write_all([])
        assert not tasks_path.with_name("tasks.json.lock").exists()
