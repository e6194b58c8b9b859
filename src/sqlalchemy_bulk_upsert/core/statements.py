"""
Turning resolved rows into a short list of batched INSERT/UPDATE statements.
"""

import logging
from enum import Enum
from typing import Any, Dict, Iterator, List, Optional, Sequence, Tuple

from sqlalchemy import case, insert, update

from sqlalchemy_bulk_upsert.core.descriptor import EntityDescriptor
from sqlalchemy_bulk_upsert.core.rows import Row, RowState
from sqlalchemy_bulk_upsert.exceptions import ColumnShapeMismatchError

logger = logging.getLogger(__name__)


class StatementKind(str, Enum):
    INSERT = "insert"
    UPDATE = "update"


class ColumnSetGroup:
    """Rows writing exactly the same columns."""

    def __init__(self, columns: Tuple[str, ...], rows: Optional[List[Row]] = None):
        self.columns = columns
        self.rows: List[Row] = rows if rows is not None else []

    def __repr__(self) -> str:
        return f"<ColumnSetGroup(columns={self.columns}, rows={len(self.rows)})>"


class Statement:
    """One executable statement of a plan together with the rows it writes."""

    def __init__(self, kind: StatementKind, columns: Tuple[str, ...], rows: List[Row], sql: Any):
        self.kind = kind
        self.columns = columns
        self.rows = rows
        self.sql = sql

    def __repr__(self) -> str:
        return f"<Statement({self.kind.value}, columns={self.columns}, rows={len(self.rows)})>"

    def compile(self, dialect: Any = None) -> str:
        return str(self.sql.compile(dialect=dialect))


class StatementPlan:
    """Ordered statements of one batch. Inserts come first, then updates."""

    def __init__(self, statements: Optional[List[Statement]] = None):
        self.statements: List[Statement] = statements or []

    def __iter__(self) -> Iterator[Statement]:
        return iter(self.statements)

    def __len__(self) -> int:
        return len(self.statements)

    def __bool__(self) -> bool:
        return bool(self.statements)

    def of_kind(self, kind: StatementKind) -> List[Statement]:
        return [statement for statement in self.statements if statement.kind is kind]

    def rows_of_kind(self, kind: StatementKind) -> List[Row]:
        return [row for statement in self.of_kind(kind) for row in statement.rows]

    def compile(self, dialect: Any = None) -> List[str]:
        return [statement.compile(dialect) for statement in self.statements]


def group_by_columns(rows: Sequence[Row], columns_of) -> List[ColumnSetGroup]:
    """Group rows by their sorted column tuple, keeping first-seen group order."""
    groups: Dict[Tuple[str, ...], ColumnSetGroup] = {}
    for row in rows:
        columns = tuple(sorted(columns_of(row)))
        if not columns:
            continue
        groups.setdefault(columns, ColumnSetGroup(columns)).rows.append(row)
    return list(groups.values())


class StatementBatchBuilder:
    """
    Builds a StatementPlan from tagged rows.

    New rows become multi-row INSERTs, one per column shape. Changed rows
    become UPDATEs that set each column through ``CASE <pk> WHEN ...`` so a
    whole group is written by one statement. Groups larger than
    ``chunk_size`` are split.
    """

    def __init__(self, descriptor: EntityDescriptor, chunk_size: int = 500):
        self.descriptor = descriptor
        self.chunk_size = max(1, chunk_size)

    def insert_columns(self, row: Row, unique_attributes: Sequence[str]) -> List[str]:
        pk = self.descriptor.primary_key
        keep_pk = pk in unique_attributes
        return [name for name in row if keep_pk or name != pk]

    def update_columns(self, row: Row, unique_attributes: Sequence[str]) -> List[str]:
        skip = set(unique_attributes) | {self.descriptor.primary_key}
        return [name for name in row.dirty if name not in skip]

    def build(self, rows: Sequence[Row], unique_attributes: Sequence[str] = ()) -> StatementPlan:
        active = [row for row in rows if not row.excluded]
        new_rows = [row for row in active if row.state is RowState.NEW]
        changed_rows = [row for row in active if row.state is RowState.CHANGED]

        plan = StatementPlan()
        for group in group_by_columns(new_rows, lambda r: self.insert_columns(r, unique_attributes)):
            self._validate(group)
            for chunk in self._chunks(group.rows):
                plan.statements.append(
                    Statement(StatementKind.INSERT, group.columns, chunk,
                              self._insert_sql(group.columns, chunk))
                )

        for group in group_by_columns(changed_rows, lambda r: self.update_columns(r, unique_attributes)):
            self._validate(group)
            for chunk in self._chunks(group.rows):
                plan.statements.append(
                    Statement(StatementKind.UPDATE, group.columns, chunk,
                              self._update_sql(group.columns, chunk))
                )

        logger.debug(
            f"Planned {len(plan.of_kind(StatementKind.INSERT))} insert(s) and "
            f"{len(plan.of_kind(StatementKind.UPDATE))} update(s) for {self.descriptor.table_name}"
        )
        return plan

    def _chunks(self, rows: List[Row]) -> Iterator[List[Row]]:
        for start in range(0, len(rows), self.chunk_size):
            yield rows[start:start + self.chunk_size]

    def _validate(self, group: ColumnSetGroup) -> None:
        unknown = self.descriptor.unknown_columns(group.columns)
        if unknown:
            raise ColumnShapeMismatchError(
                f"Columns {', '.join(sorted(unknown))} are not declared on "
                f"'{self.descriptor.table_name}'",
                rows=group.rows,
                columns=unknown,
            )

    def _insert_sql(self, columns: Tuple[str, ...], rows: List[Row]):
        tbl = self.descriptor.sql_table(columns)
        return insert(tbl).values([{name: row[name] for name in columns} for row in rows])

    def _update_sql(self, columns: Tuple[str, ...], rows: List[Row]):
        tbl = self.descriptor.sql_table(columns)
        pk_col = tbl.c[self.descriptor.primary_key]

        if len(rows) == 1:
            row = rows[0]
            return (
                update(tbl)
                .where(pk_col == row.identity)
                .values({name: row[name] for name in columns})
            )

        values = {
            name: case(
                {row.identity: row[name] for row in rows},
                value=pk_col,
                else_=tbl.c[name],
            )
            for name in columns
        }
        return update(tbl).where(pk_col.in_([row.identity for row in rows])).values(values)
