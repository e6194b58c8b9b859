"""
Timestamp stamping and soft-delete restore.
"""

import logging
from datetime import datetime
from typing import Iterable, Sequence

from sqlalchemy_bulk_upsert.core.descriptor import EntityDescriptor, get_deleted_at_column
from sqlalchemy_bulk_upsert.core.rows import Row, RowState

logger = logging.getLogger(__name__)


class DateFieldNormalizer:
    """
    Stamps created/updated columns with one instant per batch.

    New rows get both the created and the updated column, changed rows get
    the updated column. A column the caller already set on the row, or
    listed in ``exclude_attributes``, is left alone. A matched row that is
    soft-deleted in the store has its marker cleared and becomes changed.

    Running ``stamp`` again on the same rows is harmless, which lets the
    engine re-stamp after hooks altered the batch.
    """

    def __init__(self, descriptor: EntityDescriptor):
        self.descriptor = descriptor

    def stamp(
        self,
        rows: Sequence[Row],
        now: datetime,
        exclude_attributes: Iterable[str] = (),
    ) -> Sequence[Row]:
        fields = self.descriptor.date_fields
        marker = get_deleted_at_column(self.descriptor)
        if fields.is_empty() and marker is None:
            return rows

        skip = set(exclude_attributes)

        def writable(name, row):
            return bool(name) and name not in skip and name not in row

        restored = 0
        for row in rows:
            if row.excluded:
                continue
            if row.state is RowState.NEW:
                for name in (fields.created, fields.updated):
                    if writable(name, row):
                        row.touch(name, now)
                continue

            if marker and not row.restored and row.original.get(marker) is not None:
                if marker not in skip and row.get(marker) is None:
                    row.stamp(marker, None)
                    row.restored = True
                    restored += 1

            row.refresh_state()
            if row.state is RowState.CHANGED and writable(fields.updated, row):
                row.touch(fields.updated, now)

        if restored:
            logger.info(f"Restoring {restored} soft-deleted row(s) in {self.descriptor.table_name}")
        return rows
