"""Tests for sync.records -- id handling and fingerprints."""

from taskmaster_sync.sync.records import (
    coerce_id,
    fingerprint,
    local_id,
    records_differ,
    remote_id_of,
    sync_fields,
)


class TestIds:
    def test_local_id_from_int(self):
        assert local_id({"id": 42}) == "42"

    def test_local_id_missing_or_blank(self):
        assert local_id({}) is None
        assert local_id({"id": "  "}) is None

    def test_coerce_id(self):
        assert coerce_id("42") == 42
        assert coerce_id("42.1") == "42.1"

    def test_remote_id_of(self):
        assert remote_id_of({"monday_item_id": 9001}) == "9001"
        assert remote_id_of({"monday_item_id": ""}) is None
        assert remote_id_of({}) is None


class TestSyncFields:
    def test_missing_and_none_normalise_to_empty(self):
        fields = sync_fields({"title": "T", "description": None})
        assert fields["description"] == ""
        assert fields["details"] == ""
        assert fields["dependencies"] == ()

    def test_dependency_order_ignored(self):
        a = {"title": "T", "dependencies": [3, 1, "2"]}
        b = {"title": "T", "dependencies": ["1", "2", 3]}
        assert not records_differ(a, b)

    def test_whitespace_ignored(self):
        assert not records_differ({"title": "Login "}, {"title": "Login"})

    def test_unsynced_fields_ignored(self):
        a = {"id": 1, "title": "T", "subtasks": [{"id": 1}], "monday_item_id": "5"}
        b = {"id": 1, "title": "T"}
        assert not records_differ(a, b)

    def test_title_change_detected(self):
        assert records_differ({"title": "A"}, {"title": "B"})


class TestFingerprint:
    def test_stable_for_equal_records(self):
        a = {"id": 1, "title": "T", "status": "done", "dependencies": [2, 1]}
        b = {"title": "T", "status": "done", "dependencies": ["1", "2"], "extra": 1}
        assert fingerprint(a) == fingerprint(b)

    def test_changes_with_synced_field(self):
        base = {"title": "T", "status": "pending"}
        assert fingerprint(base) != fingerprint({**base, "status": "done"})

    def test_is_hex_sha256(self):
        digest = fingerprint({"title": "T"})
        assert len(digest) == 64
        int(digest, 16)
