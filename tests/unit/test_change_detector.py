"""
Tests for synchub.change_detector module.
"""
from synchub.change_detector import detect, stringify
from synchub.models import ChangeType

TRACKED = ["name", "status", "address"]


class TestStringify:

    def test_none_is_empty(self):
        assert stringify(None) == ""

    def test_values_are_stringified(self):
        assert stringify("active") == "active"
        assert stringify(42) == "42"


class TestDetect:
    """Tests for create-vs-update classification."""

    def test_first_sighting_is_created(self, make_entity):
        """No prior mirror row produces exactly one created record with a full snapshot."""
        incoming = make_entity("procore", "projects", "P123", name="Tower", status="bidding")

        changes = detect(None, incoming, TRACKED)

        assert len(changes) == 1
        record = changes[0]
        assert record.change_type == ChangeType.CREATED
        assert record.entity_type == "procore.projects"
        assert record.native_id == "P123"
        assert record.full_snapshot == {"name": "Tower", "status": "bidding"}
        assert record.field_name is None

    def test_identical_entity_has_no_changes(self, make_entity):
        existing = make_entity("procore", "projects", "P123", name="Tower", status="bidding")
        incoming = make_entity("procore", "projects", "P123", name="Tower", status="bidding")

        assert detect(existing, incoming, TRACKED) == []

    def test_one_record_per_changed_field(self, make_entity):
        existing = make_entity("procore", "projects", "P123", name="Tower", status="bidding")
        incoming = make_entity("procore", "projects", "P123", name="Tower", status="active")

        changes = detect(existing, incoming, TRACKED)

        assert len(changes) == 1
        assert changes[0].change_type == ChangeType.FIELD_CHANGED
        assert changes[0].field_name == "status"
        assert changes[0].old_value == "bidding"
        assert changes[0].new_value == "active"
        assert changes[0].full_snapshot is None

    def test_null_and_empty_string_are_equal(self, make_entity):
        """None and "" normalize to the same value; absent keys too."""
        existing = make_entity("procore", "projects", "P1", name="Tower", address=None)
        incoming = make_entity("procore", "projects", "P1", name="Tower", address="")

        assert detect(existing, incoming, TRACKED) == []

    def test_null_to_value_is_a_change(self, make_entity):
        existing = make_entity("procore", "projects", "P1", name="Tower")
        incoming = make_entity("procore", "projects", "P1", name="Tower", address="1 Main St")

        changes = detect(existing, incoming, TRACKED)

        assert [(c.field_name, c.old_value, c.new_value) for c in changes] == [
            ("address", "", "1 Main St"),
        ]

    def test_untracked_fields_are_ignored(self, make_entity):
        existing = make_entity("procore", "projects", "P1", name="Tower", phone="111")
        incoming = make_entity("procore", "projects", "P1", name="Tower", phone="222")

        assert detect(existing, incoming, TRACKED) == []

    def test_does_not_mutate_inputs(self, make_entity):
        existing = make_entity("procore", "projects", "P1", name="A")
        incoming = make_entity("procore", "projects", "P1", name="B")

        detect(existing, incoming, TRACKED)

        assert existing.fields == {"name": "A"}
        assert incoming.fields == {"name": "B"}
