"""
SQLAlchemy Bulk Upsert - batched insert-or-update for SQLAlchemy tables.

Existing rows are matched by unique attributes, diffed column by column and
written back with one statement per column shape, with lifecycle hooks and
soft-delete restore.
"""

from sqlalchemy_bulk_upsert.core import (
    BulkUpsertEngine,
    DuplicatePolicy,
    EntityDescriptor,
    HookPhase,
    HookRegistry,
    Row,
    RowState,
    UpsertResult,
)
from sqlalchemy_bulk_upsert.exceptions import (
    BulkUpsertError,
    ColumnShapeMismatchError,
    DuplicateUniqueKeyError,
    HookAbortError,
    QueryExecutionError,
    StatementExecutionError,
)
from sqlalchemy_bulk_upsert.utils import Config, UpsertConfig

__version__ = "0.1.0"

__all__ = [
    "BulkUpsertEngine",
    "BulkUpsertError",
    "ColumnShapeMismatchError",
    "Config",
    "DuplicatePolicy",
    "DuplicateUniqueKeyError",
    "EntityDescriptor",
    "HookAbortError",
    "HookPhase",
    "HookRegistry",
    "QueryExecutionError",
    "Row",
    "RowState",
    "StatementExecutionError",
    "UpsertConfig",
    "UpsertResult",
]
