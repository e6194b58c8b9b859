"""
Tests for StatementBatchBuilder.
"""

from datetime import datetime

import pytest

from sqlalchemy_bulk_upsert import EntityDescriptor, Row, RowState
from sqlalchemy_bulk_upsert.core.statements import StatementBatchBuilder, StatementKind, group_by_columns
from sqlalchemy_bulk_upsert.exceptions import ColumnShapeMismatchError


def new_row(attributes, position=0):
    row = Row(attributes, ["email"], position)
    row.refresh_state()
    return row


def changed_row(attributes, identity, position=0):
    row = Row(attributes, ["email"], position)
    original = {"id": identity, "email": attributes["email"]}
    row.attach(original, identity, [name for name in attributes if name != "email"])
    row.dirty = {name for name in attributes if name != "email"}
    row.refresh_state()
    return row


class TestStatementBatchBuilder:
    """Test suite for StatementBatchBuilder."""

    def test_empty_input(self, descriptor):
        """No rows, no statements."""
        assert len(StatementBatchBuilder(descriptor).build([])) == 0

    def test_unchanged_rows_are_dropped(self, descriptor):
        """Rows without changes never reach a statement."""
        row = Row({"email": "a@x.com", "name": "A"}, ["email"])
        row.attach({"id": 1, "email": "a@x.com", "name": "A"}, 1, ["name"])
        assert row.refresh_state() is RowState.UNCHANGED

        plan = StatementBatchBuilder(descriptor).build([row], ["email"])

        assert not plan

    def test_one_insert_per_shape(self, descriptor):
        """N rows of one shape produce a single multi-row insert."""
        rows = [new_row({"email": f"u{i}@x.com", "name": f"U{i}"}, i) for i in range(10)]

        plan = StatementBatchBuilder(descriptor).build(rows, ["email"])

        assert len(plan) == 1
        statement = plan.statements[0]
        assert statement.kind is StatementKind.INSERT
        assert len(statement.rows) == 10
        assert statement.compile().startswith("INSERT INTO users")

    def test_shapes_are_grouped(self, descriptor):
        """Different attribute sets go to different statements."""
        rows = [
            new_row({"email": "a@x.com", "name": "A"}, 0),
            new_row({"email": "b@x.com", "age": 3}, 1),
            new_row({"name": "C", "email": "c@x.com"}, 2),
        ]

        plan = StatementBatchBuilder(descriptor).build(rows, ["email"])

        assert [statement.columns for statement in plan] == [("email", "name"), ("age", "email")]
        assert [len(statement.rows) for statement in plan] == [2, 1]

    def test_inserts_are_chunked(self, descriptor):
        """Groups larger than the chunk size are split."""
        rows = [new_row({"email": f"u{i}@x.com"}, i) for i in range(5)]

        plan = StatementBatchBuilder(descriptor, chunk_size=2).build(rows, ["email"])

        assert [len(statement.rows) for statement in plan] == [2, 2, 1]

    def test_identity_is_not_inserted(self, descriptor):
        """The primary key is left to the store unless it is the unique key."""
        row = new_row({"id": 7, "email": "a@x.com"})

        plan = StatementBatchBuilder(descriptor).build([row], ["email"])
        assert plan.statements[0].columns == ("email",)

        plan = StatementBatchBuilder(descriptor).build([row], ["id"])
        assert plan.statements[0].columns == ("email", "id")

    def test_update_uses_case_per_column(self, descriptor):
        """Several changed rows are written by one CASE-based update."""
        rows = [
            changed_row({"email": "a@x.com", "name": "A", "updated_at": datetime(2024, 1, 1)}, 1, 0),
            changed_row({"email": "b@x.com", "name": "B", "updated_at": datetime(2024, 1, 1)}, 2, 1),
        ]

        plan = StatementBatchBuilder(descriptor).build(rows, ["email"])

        assert len(plan) == 1
        statement = plan.statements[0]
        assert statement.kind is StatementKind.UPDATE
        assert statement.columns == ("name", "updated_at")
        sql = statement.compile()
        assert sql.startswith("UPDATE users SET")
        assert "CASE users.id" in sql
        assert "WHERE users.id IN" in sql

    def test_single_update_has_no_case(self, descriptor):
        """A lone changed row is a plain keyed update."""
        plan = StatementBatchBuilder(descriptor).build([changed_row({"email": "a@x.com", "name": "A"}, 1)], ["email"])

        sql = plan.statements[0].compile()
        assert "CASE" not in sql
        assert "WHERE users.id = " in sql

    def test_inserts_before_updates(self, descriptor):
        """A plan never mixes kinds in one statement and lists inserts first."""
        rows = [
            changed_row({"email": "a@x.com", "name": "A"}, 1, 0),
            new_row({"email": "b@x.com", "name": "B"}, 1),
        ]

        plan = StatementBatchBuilder(descriptor).build(rows, ["email"])

        assert [statement.kind for statement in plan] == [StatementKind.INSERT, StatementKind.UPDATE]
        assert [row["email"] for row in plan.rows_of_kind(StatementKind.UPDATE)] == ["a@x.com"]

    def test_excluded_rows_are_skipped(self, descriptor):
        """Vetoed rows are not written."""
        row = new_row({"email": "a@x.com"})
        row.exclude()

        assert not StatementBatchBuilder(descriptor).build([row], ["email"])

    def test_undeclared_column(self, descriptor):
        """The builder validates shapes against the schema."""
        row = new_row({"email": "a@x.com", "nickname": "x"})

        with pytest.raises(ColumnShapeMismatchError) as excinfo:
            StatementBatchBuilder(descriptor).build([row], ["email"])

        assert excinfo.value.columns == ["nickname"]

    def test_lightweight_table(self):
        """Descriptors without a bound Table still render SQL."""
        descriptor = EntityDescriptor(table_name="tags", primary_key="tag_id")
        row = new_row({"email": "a@x.com", "label": "x"})

        sql = StatementBatchBuilder(descriptor).build([row], ["email"]).compile()[0]

        assert sql.startswith("INSERT INTO tags (email, label)")


def test_group_order_is_stable():
    """Groups appear in the order their first row does."""
    rows = [new_row({"email": "a", "b": 1}), new_row({"email": "b"}), new_row({"b": 2, "email": "c"})]
    groups = group_by_columns(rows, lambda row: list(row))

    assert [group.columns for group in groups] == [("b", "email"), ("email",)]
