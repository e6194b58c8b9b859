"""
Dirty-attribute resolution: which rows are new, changed or untouched.
"""

import logging
from typing import Iterable, List, Optional, Sequence

from sqlalchemy_bulk_upsert.core.descriptor import EntityDescriptor
from sqlalchemy_bulk_upsert.core.matcher import ExistingRowIndex
from sqlalchemy_bulk_upsert.core.rows import Row, RowState
from sqlalchemy_bulk_upsert.core.values import values_equal

logger = logging.getLogger(__name__)


class DirtyAttributeResolver:
    """Pairs every row with its stored counterpart and computes its dirty set."""

    def __init__(self, descriptor: EntityDescriptor):
        self.descriptor = descriptor

    def compared_attributes(
        self,
        row: Row,
        unique_attributes: Sequence[str],
        update_attributes: Optional[Sequence[str]] = None,
        exclude_attributes: Iterable[str] = (),
    ) -> List[str]:
        """
        Attributes of ``row`` that may be written on update.

        Explicit ``update_attributes`` win; otherwise every attribute except
        the unique key and the primary key. Excluded attributes never count.
        """
        excluded = set(exclude_attributes)
        if update_attributes is not None:
            candidates = [name for name in update_attributes if name in row]
        else:
            skip = set(unique_attributes) | {self.descriptor.primary_key}
            candidates = [name for name in row if name not in skip]
        return [name for name in candidates if name not in excluded]

    def resolve(
        self,
        rows: Sequence[Row],
        index: ExistingRowIndex,
        unique_attributes: Sequence[str],
        update_attributes: Optional[Sequence[str]] = None,
        exclude_attributes: Iterable[str] = (),
    ) -> Sequence[Row]:
        exclude_attributes = tuple(exclude_attributes)
        locked = set(unique_attributes) | set(exclude_attributes) | {self.descriptor.primary_key}
        for row in rows:
            existing = index.find(row.unique_values)
            if existing is None:
                row.refresh_state()
                continue

            compared = self.compared_attributes(
                row, unique_attributes, update_attributes, exclude_attributes
            )
            row.attach(
                existing,
                existing.get(self.descriptor.primary_key),
                compared,
                extendable=update_attributes is None,
                locked=locked,
            )
            row.dirty = {
                name
                for name in compared
                if name not in existing or not values_equal(row[name], existing[name])
            }
            row.refresh_state()

        if logger.isEnabledFor(logging.DEBUG):
            counts = {state.value: sum(1 for r in rows if r.state is state) for state in RowState}
            logger.debug(f"Resolved rows: {counts}")
        return rows
