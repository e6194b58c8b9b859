"""
Entity descriptors: what the engine needs to know about a target table.
"""

import logging
from typing import Any, FrozenSet, Iterable, Optional

from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy import Table, column, table as lightweight_table

logger = logging.getLogger(__name__)


class SoftDeleteCapability(BaseModel):
    """Marks an entity as soft-deletable through a nullable marker column."""

    model_config = ConfigDict(frozen=True)

    marker_column: str


class DateFields(BaseModel):
    """Timestamp columns and their roles."""

    model_config = ConfigDict(frozen=True)

    created: Optional[str] = None
    updated: Optional[str] = None
    deleted: Optional[str] = None

    def names(self) -> FrozenSet[str]:
        return frozenset(name for name in (self.created, self.updated, self.deleted) if name)

    def is_empty(self) -> bool:
        return not self.names()


class EntityDescriptor(BaseModel):
    """
    Immutable description of an upsert target.

    ``columns`` is the declared schema used to validate incoming rows; leave it
    empty to accept any attribute name. ``table`` optionally holds the
    SQLAlchemy ``Table`` so generated statements carry column types.
    """

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    table_name: str
    primary_key: str = "id"
    columns: FrozenSet[str] = Field(default_factory=frozenset)
    soft_delete: Optional[SoftDeleteCapability] = None
    date_fields: DateFields = Field(default_factory=DateFields)
    table: Optional[Table] = None

    @classmethod
    def from_table(
        cls,
        target: Any,
        created_column: Optional[str] = "created_at",
        updated_column: Optional[str] = "updated_at",
        deleted_column: Optional[str] = "deleted_at",
    ) -> "EntityDescriptor":
        """
        Build a descriptor by introspecting a SQLAlchemy table.

        Args:
            target: A ``Table`` or a declarative model class
            created_column: Name of the creation timestamp column, if any
            updated_column: Name of the modification timestamp column, if any
            deleted_column: Name of the soft-delete marker column, if any

        Returns:
            The descriptor; date roles whose columns do not exist are dropped
        """
        sql_table = getattr(target, "__table__", target)
        if not isinstance(sql_table, Table):
            raise TypeError(f"Cannot describe {target!r}: expected a Table or a mapped class")

        primary_key = list(sql_table.primary_key.columns)
        if len(primary_key) != 1:
            raise ValueError(
                f"Table '{sql_table.name}' must have exactly one primary key column, "
                f"found {len(primary_key)}"
            )

        names = frozenset(c.name for c in sql_table.columns)

        def existing(name: Optional[str]) -> Optional[str]:
            return name if name and name in names else None

        deleted = existing(deleted_column)
        descriptor = cls(
            table_name=sql_table.name,
            primary_key=primary_key[0].name,
            columns=names,
            soft_delete=SoftDeleteCapability(marker_column=deleted) if deleted else None,
            date_fields=DateFields(
                created=existing(created_column),
                updated=existing(updated_column),
                deleted=deleted,
            ),
            table=sql_table,
        )
        logger.debug(
            f"Described table {descriptor.table_name} "
            f"(pk={descriptor.primary_key}, soft_delete={deleted is not None})"
        )
        return descriptor

    def has_column(self, name: str) -> bool:
        return not self.columns or name in self.columns

    def unknown_columns(self, names: Any) -> FrozenSet[str]:
        """Return the names that are not part of the declared schema."""
        if not self.columns:
            return frozenset()
        return frozenset(names) - self.columns

    def sql_table(self, names: Iterable[str] = ()):
        """
        The table construct statements are built against.

        Without a bound ``Table`` a lightweight construct is made from the
        declared columns plus ``names``; build it once per statement.
        """
        if self.table is not None:
            return self.table
        names = sorted(self.columns | {self.primary_key} | set(names))
        return lightweight_table(self.table_name, *[column(name) for name in names])


def get_deleted_at_column(descriptor: EntityDescriptor) -> Optional[str]:
    """Return the soft-delete marker column, or None when rows are hard-deleted."""
    if descriptor.soft_delete is None:
        return None
    return descriptor.soft_delete.marker_column


def supports_soft_delete(descriptor: EntityDescriptor) -> bool:
    return get_deleted_at_column(descriptor) is not None
