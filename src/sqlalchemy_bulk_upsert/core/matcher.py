"""
Matching incoming rows against the rows already persisted.
"""

import logging
from enum import Enum
from typing import Any, Dict, Iterable, Iterator, List, Mapping, Optional, Sequence, Tuple

from pydantic import BaseModel, ConfigDict
from sqlalchemy import and_, or_, select

from sqlalchemy_bulk_upsert.core.descriptor import EntityDescriptor, get_deleted_at_column
from sqlalchemy_bulk_upsert.core.rows import Row
from sqlalchemy_bulk_upsert.core.values import loose_key, normalize_key, values_equal
from sqlalchemy_bulk_upsert.exceptions import DuplicateUniqueKeyError

logger = logging.getLogger(__name__)


class DuplicatePolicy(str, Enum):
    """What to do when two rows of one batch share a unique key."""

    ERROR = "error"
    FIRST_WINS = "first_wins"
    LAST_WINS = "last_wins"


def deduplicate(rows: Sequence[Row], policy: DuplicatePolicy) -> Tuple[List[Row], List[Row]]:
    """
    Resolve rows sharing a unique key.

    Returns:
        (survivors in batch order, dropped rows)

    Raises:
        DuplicateUniqueKeyError: when ``policy`` is ERROR and a key repeats
    """
    policy = DuplicatePolicy(policy)
    kept: Dict[tuple, Row] = {}
    dropped: List[Row] = []

    for row in rows:
        key = row.unique_key
        previous = kept.get(key)
        if previous is None:
            kept[key] = row
            continue
        if policy is DuplicatePolicy.ERROR:
            raise DuplicateUniqueKeyError(
                f"Rows {previous.position} and {row.position} share the unique key "
                f"{dict(zip(row.unique_attributes, row.unique_values))}",
                rows=[previous, row],
                key=row.unique_values,
            )
        if policy is DuplicatePolicy.FIRST_WINS:
            dropped.append(row)
        else:
            dropped.append(previous)
            kept[key] = row

    if dropped:
        logger.debug(f"Dropped {len(dropped)} duplicate row(s) using policy {policy.value}")
    survivors = sorted(kept.values(), key=lambda r: r.position)
    return survivors, dropped


class MatchQuery(BaseModel):
    """
    Immutable description of one existing-row lookup.

    ``key_values`` holds one tuple per incoming row, aligned with
    ``unique_attributes``; ``limit`` is never larger than that count.
    """

    model_config = ConfigDict(frozen=True)

    descriptor: EntityDescriptor
    unique_attributes: Tuple[str, ...]
    key_values: Tuple[Tuple[Any, ...], ...]
    columns: Tuple[str, ...]
    limit: int
    include_trashed: bool = False

    def to_select(self):
        """Render the lookup as a SQLAlchemy ``select``."""
        descriptor = self.descriptor
        marker = get_deleted_at_column(descriptor)
        tbl = descriptor.sql_table(
            set(self.columns) | set(self.unique_attributes) | ({marker} if marker else set())
        )

        if len(self.unique_attributes) == 1:
            col = tbl.c[self.unique_attributes[0]]
            present = sorted(
                {values[0] for values in self.key_values if values[0] is not None}, key=repr
            )
            conditions = [col.in_(present)] if present else []
            if any(values[0] is None for values in self.key_values):
                conditions.append(col.is_(None))
        else:
            conditions = [
                and_(
                    *[
                        tbl.c[name].is_(None) if value is None else tbl.c[name] == value
                        for name, value in zip(self.unique_attributes, values)
                    ]
                )
                for values in self.key_values
            ]

        stmt = (
            select(*[tbl.c[name] for name in self.columns])
            .where(or_(*conditions))
            .order_by(tbl.c[descriptor.primary_key])
            .limit(self.limit)
        )
        if marker and not self.include_trashed:
            stmt = stmt.where(tbl.c[marker].is_(None))
        return stmt


class ExistingRowIndex:
    """Stored rows keyed by their normalized unique-key tuple, one per key."""

    def __init__(self, unique_attributes: Sequence[str]):
        self.unique_attributes = tuple(unique_attributes)
        self._rows: Dict[tuple, Dict[str, Any]] = {}
        self._loose: Dict[tuple, List[Dict[str, Any]]] = {}

    def add(self, record: Mapping) -> bool:
        key = normalize_key(record.get(name) for name in self.unique_attributes)
        if key in self._rows:
            return False
        stored = dict(record)
        self._rows[key] = stored
        loose = loose_key(stored.get(name) for name in self.unique_attributes)
        self._loose.setdefault(loose, []).append(stored)
        return True

    def get(self, key: tuple) -> Optional[Dict[str, Any]]:
        return self._rows.get(key)

    def find(self, values: Sequence[Any]) -> Optional[Dict[str, Any]]:
        """
        Stored row for a tuple of incoming unique values.

        An exact key wins. Otherwise a stored row whose values differ only in
        type, such as ``"7"`` sent for an integer 7, is accepted.
        """
        values = tuple(values)
        record = self._rows.get(normalize_key(values))
        if record is not None:
            return record
        for candidate in self._loose.get(loose_key(values), []):
            if all(
                values_equal(value, candidate.get(name))
                for name, value in zip(self.unique_attributes, values)
            ):
                return candidate
        return None

    def __contains__(self, key: tuple) -> bool:
        return key in self._rows

    def __len__(self) -> int:
        return len(self._rows)

    def __iter__(self) -> Iterator[tuple]:
        return iter(self._rows)


class RowMatcher:
    """
    Finds the stored counterpart of every incoming row.

    One bounded query is issued per ``chunk_size`` rows; soft-deleted rows
    are always included so they can be restored instead of duplicated.
    """

    def __init__(self, descriptor: EntityDescriptor, executor: Any, chunk_size: int = 500):
        self.descriptor = descriptor
        self.executor = executor
        self.chunk_size = max(1, chunk_size)

    def select_columns(
        self, unique_attributes: Sequence[str], compared: Iterable[str] = ()
    ) -> Tuple[str, ...]:
        """Primary key, unique attributes, then everything diffing needs."""
        descriptor = self.descriptor
        leading = [descriptor.primary_key] + [
            name for name in unique_attributes if name != descriptor.primary_key
        ]
        extra = set(compared) | descriptor.date_fields.names()
        marker = get_deleted_at_column(descriptor)
        if marker:
            extra.add(marker)
        trailing = sorted(
            name for name in extra if name not in leading and descriptor.has_column(name)
        )
        return tuple(leading + trailing)

    def match(
        self,
        rows: Sequence[Row],
        unique_attributes: Sequence[str],
        compared: Iterable[str] = (),
    ) -> ExistingRowIndex:
        index = ExistingRowIndex(unique_attributes)
        if not rows:
            return index

        columns = self.select_columns(unique_attributes, compared)
        include_trashed = get_deleted_at_column(self.descriptor) is not None

        for start in range(0, len(rows), self.chunk_size):
            chunk = rows[start:start + self.chunk_size]
            query = MatchQuery(
                descriptor=self.descriptor,
                unique_attributes=tuple(unique_attributes),
                key_values=tuple(row.unique_values for row in chunk),
                columns=columns,
                limit=len(chunk),
                include_trashed=include_trashed,
            )
            for record in self.executor.fetch(query):
                if not index.add(record):
                    logger.warning(
                        f"Table {self.descriptor.table_name} holds more than one row for "
                        f"{dict((name, record.get(name)) for name in unique_attributes)}; "
                        f"keeping the lowest {self.descriptor.primary_key}"
                    )

        logger.debug(f"Matched {len(index)} of {len(rows)} row(s) in {self.descriptor.table_name}")
        return index
