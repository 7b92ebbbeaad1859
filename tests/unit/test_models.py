"""
Tests for synchub.models dataclasses and helpers.
"""
from datetime import datetime

from synchub.models import (
    AckResult,
    ConflictRecord,
    EntityMapping,
    InboundEvent,
    MatchType,
    Platform,
    PollJobState,
    Resolution,
    parse_timestamp,
    to_field_value,
)


class TestPlatform:

    def test_key_prefixes(self):
        assert Platform.HUBSPOT.key_prefix == "hs"
        assert Platform.PROCORE.key_prefix == "pc"
        assert Platform.COMPANYCAM.key_prefix == "cc"

    def test_from_string(self):
        assert Platform("procore") is Platform.PROCORE


class TestToFieldValue:

    def test_none(self):
        assert to_field_value(None) is None

    def test_booleans_are_lowercase(self):
        assert to_field_value(True) == "true"
        assert to_field_value(False) == "false"

    def test_numbers_are_stringified(self):
        assert to_field_value(1500.5) == "1500.5"
        assert to_field_value(7) == "7"

    def test_nested_structures_are_dropped(self):
        assert to_field_value({"a": 1}) is None
        assert to_field_value([1, 2]) is None


class TestParseTimestamp:

    def test_iso_with_z(self):
        assert parse_timestamp("2026-03-01T12:00:00Z") == datetime(2026, 3, 1, 12, 0, 0)

    def test_iso_with_offset_is_converted_to_utc(self):
        assert parse_timestamp("2026-03-01T14:00:00+02:00") == datetime(2026, 3, 1, 12, 0, 0)

    def test_epoch_milliseconds(self):
        assert parse_timestamp(1772366400000) == datetime(2026, 3, 1, 12, 0, 0)
        assert parse_timestamp("1772366400000") == datetime(2026, 3, 1, 12, 0, 0)

    def test_unparseable(self):
        assert parse_timestamp("yesterday") is None
        assert parse_timestamp(None) is None
        assert parse_timestamp("") is None


class TestConflictRecord:

    def test_dict_round_trip_keeps_failure(self):
        conflict = ConflictRecord(
            field="dealname",
            master_value="Tower",
            secondary_value="Old",
            resolution=Resolution.MASTER_WINS,
            resolved=False,
            error="HTTP 500",
            platform="hubspot",
        )

        restored = ConflictRecord.from_dict(conflict.to_dict())

        assert restored == conflict


class TestEntityMapping:

    def test_links_requires_both_ids(self):
        mapping = EntityMapping(
            ids_by_platform={"procore": "P1", "hubspot": None},
            match_type=MatchType.EXACT,
        )
        assert not mapping.links("procore", "hubspot")

        mapping.ids_by_platform["hubspot"] = "D1"
        assert mapping.links("procore", "hubspot")

    def test_unresolved_conflicts(self):
        mapping = EntityMapping(
            ids_by_platform={"procore": "P1", "hubspot": "D1"},
            match_type=MatchType.MANUAL,
            conflicts=[
                ConflictRecord("dealname", "a", "b", Resolution.MASTER_WINS, resolved=True),
                ConflictRecord("dealstage", "x", "y", Resolution.MASTER_WINS, resolved=False),
            ],
        )

        assert [c.field for c in mapping.unresolved_conflicts] == ["dealstage"]
        assert mapping.metadata["conflicts"][1]["resolved"] is False


class TestInboundEvent:

    def test_deletion_detection(self):
        deleted = InboundEvent(Platform.HUBSPOT, "deal.deletion", "deals", "1")
        destroyed = InboundEvent(Platform.PROCORE, "destroy", "projects", "1")
        updated = InboundEvent(Platform.PROCORE, "update", "projects", "1")

        assert deleted.is_deletion
        assert destroyed.is_deletion
        assert not updated.is_deletion


class TestAckResult:

    def test_status(self):
        assert AckResult(accepted=1).status == "accepted"
        assert AckResult(duplicates=2).status == "already_handled"
        assert AckResult(rejected=1).status == "ignored"


class TestPollJobState:

    def test_defaults(self):
        state = PollJobState(job_name="procore_sync")
        assert state.enabled is False
        assert state.is_running is False
        assert state.error_count == 0
        assert state.to_dict()["last_run_at"] is None
