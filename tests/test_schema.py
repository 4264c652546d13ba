"""Tests for the snapshot schema guard (aihistory/core/schema.py)."""

import pytest

from aihistory.core.schema import CURRENT_VERSION, SchemaVersionError, migrate_snapshot, validate_version


class TestValidateVersion:
    def test_current_version_ok(self):
        validate_version({"aihistory": CURRENT_VERSION})

    def test_missing_version_treated_as_minimum(self):
        validate_version({})

    def test_too_new(self):
        with pytest.raises(SchemaVersionError, match="newer than supported"):
            validate_version({"aihistory": "9.0"})

    def test_too_old(self):
        with pytest.raises(SchemaVersionError, match="too old"):
            validate_version({"aihistory": "0.5"})

    def test_invalid(self):
        with pytest.raises(SchemaVersionError, match="Invalid schema version"):
            validate_version({"aihistory": "not-a-version"})

    def test_error_carries_versions(self):
        with pytest.raises(SchemaVersionError) as exc_info:
            validate_version({"aihistory": "9.0"})
        assert exc_info.value.found_version == "9.0"
        assert exc_info.value.required_version == CURRENT_VERSION


class TestMigrateSnapshot:
    def test_1_0_snapshot_gains_empty_lists(self):
        migrated = migrate_snapshot({"aihistory": "1.0", "interactions": []})
        assert migrated["aihistory"] == CURRENT_VERSION
        assert migrated["call_details"] == []
        assert migrated["transformations"] == []

    def test_unversioned_snapshot_is_migrated(self):
        assert migrate_snapshot({"interactions": []})["aihistory"] == CURRENT_VERSION

    def test_input_not_mutated(self):
        data = {"aihistory": "1.0", "interactions": []}
        migrate_snapshot(data)
        assert data == {"aihistory": "1.0", "interactions": []}

    def test_current_version_untouched(self):
        data = {"aihistory": CURRENT_VERSION, "call_details": [{"call_id": "c"}]}
        assert migrate_snapshot(data) is data
