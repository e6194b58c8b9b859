"""
Tests for Row ingestion and dirty tracking.
"""

from datetime import datetime

import pytest

from sqlalchemy_bulk_upsert import EntityDescriptor, Row, RowState
from sqlalchemy_bulk_upsert.exceptions import ColumnShapeMismatchError, ImmutableUniqueKeyError


@pytest.fixture
def schema():
    return EntityDescriptor(
        table_name="users",
        columns=frozenset({"id", "email", "name", "age", "updated_at"}),
    )


def matched_row(attributes, original, compared=("name",)):
    row = Row(attributes, ["email"])
    row.attach(original, original["id"], compared)
    row.dirty = {name for name in compared if attributes.get(name) != original.get(name)}
    row.refresh_state()
    return row


class TestIngest:
    """Test suite for Row.ingest."""

    def test_valid_row(self, schema):
        """A row with declared attributes is wrapped as-is."""
        row = Row.ingest({"email": "a@x.com", "name": "A"}, schema, ["email"], 3)

        assert row.position == 3
        assert row.to_dict() == {"email": "a@x.com", "name": "A"}
        assert row.unique_values == ("a@x.com",)
        assert row.state is None

    def test_unknown_attribute(self, schema):
        """Undeclared attributes are rejected at ingestion."""
        with pytest.raises(ColumnShapeMismatchError) as excinfo:
            Row.ingest({"email": "a@x.com", "nickname": "x"}, schema, ["email"], 0)

        assert excinfo.value.columns == ["nickname"]
        assert excinfo.value.stage == "validation"

    def test_missing_unique_attribute(self, schema):
        """Every unique attribute must be present, even as None."""
        with pytest.raises(ColumnShapeMismatchError):
            Row.ingest({"name": "A"}, schema, ["email"], 0)

        row = Row.ingest({"email": None, "name": "A"}, schema, ["email"], 0)
        assert row.unique_values == (None,)

    def test_not_a_mapping(self, schema):
        """Non-mapping input is a programming error."""
        with pytest.raises(TypeError):
            Row.ingest(["a@x.com"], schema, ["email"], 0)

    def test_schema_less_descriptor_accepts_anything(self):
        """An empty column set disables validation."""
        descriptor = EntityDescriptor(table_name="events")
        row = Row.ingest({"key": 1, "whatever": 2}, descriptor, ["key"], 0)
        assert row["whatever"] == 2


class TestRowTracking:
    """Test suite for unique-key locking and dirty tracking."""

    def test_unique_attribute_is_locked(self):
        """Unique attributes cannot change once ingested."""
        row = Row({"email": "a@x.com", "name": "A"}, ["email"])

        row["email"] = "a@x.com"
        with pytest.raises(ImmutableUniqueKeyError):
            row["email"] = "b@x.com"
        with pytest.raises(ImmutableUniqueKeyError):
            del row["email"]

    def test_new_row_state(self):
        """A row without a stored counterpart is new."""
        row = Row({"email": "a@x.com"}, ["email"])
        assert row.refresh_state() is RowState.NEW
        assert row.is_new

    def test_writes_follow_stored_value(self):
        """Writing a compared attribute keeps the dirty set in sync."""
        row = matched_row({"email": "a@x.com", "name": "A"}, {"id": 1, "email": "a@x.com", "name": "OLD"})
        assert row.state is RowState.CHANGED
        assert row.dirty == {"name"}
        assert row.identity == 1

        row["name"] = "OLD"
        assert row.dirty == set()
        assert row.refresh_state() is RowState.UNCHANGED

        row["name"] = "NEW"
        assert row.refresh_state() is RowState.CHANGED

    def test_uncompared_attribute_is_not_tracked(self):
        """Attributes outside the compared set never become dirty."""
        row = matched_row({"email": "a@x.com", "name": "A"}, {"id": 1, "email": "a@x.com", "name": "A"})
        row["age"] = 40
        assert row.dirty == set()

    def test_added_attribute_joins_compared_set(self):
        """On an extendable row a new attribute is tracked like the others."""
        row = Row({"email": "a@x.com", "name": "A"}, ["email"])
        row.attach(
            {"id": 1, "email": "a@x.com", "name": "A"}, 1, ["name"], extendable=True, locked={"email", "id"}
        )
        row.refresh_state()

        row["age"] = 40
        assert "age" in row.compared
        assert row.dirty == {"age"}
        assert row.refresh_state() is RowState.CHANGED

        row["id"] = 2
        assert "id" not in row.dirty

    def test_added_attribute_equal_to_stored_value(self):
        """A selected column set to its stored value stays clean."""
        row = Row({"email": "a@x.com"}, ["email"])
        row.attach({"id": 1, "email": "a@x.com", "updated_at": None}, 1, [], extendable=True)

        row["updated_at"] = None
        assert row.dirty == set()

    def test_touch_alone_keeps_row_unchanged(self):
        """An automatic timestamp does not make a row changed."""
        row = matched_row({"email": "a@x.com", "name": "A"}, {"id": 1, "email": "a@x.com", "name": "A"})
        row.touch("updated_at", datetime(2024, 1, 1))

        assert "updated_at" in row.dirty
        assert row.refresh_state() is RowState.UNCHANGED

    def test_stamp_counts_as_change(self):
        """A stamped value is written whatever the stored value is."""
        row = matched_row({"email": "a@x.com", "name": "A"}, {"id": 1, "email": "a@x.com", "name": "A"})
        row.stamp("deleted_at", None)
        assert row.refresh_state() is RowState.CHANGED

    def test_exclude(self):
        """Excluding a row only flags it."""
        row = Row({"email": "a@x.com"}, ["email"])
        row.exclude()
        assert row.excluded is True
