"""Core components of the sqlalchemy-bulk-upsert package."""

from .callbacks import CallbackSequencer, HookPhase, HookRegistry
from .dates import DateFieldNormalizer
from .descriptor import DateFields, EntityDescriptor, SoftDeleteCapability
from .dirty import DirtyAttributeResolver
from .engine import BulkUpsertEngine, UpsertResult
from .executors import SessionQueryExecutor, SessionStatementExecutor
from .matcher import DuplicatePolicy, ExistingRowIndex, MatchQuery, RowMatcher
from .rows import Row, RowState
from .statements import StatementBatchBuilder, StatementKind, StatementPlan

__all__ = [
    "BulkUpsertEngine",
    "CallbackSequencer",
    "DateFieldNormalizer",
    "DateFields",
    "DirtyAttributeResolver",
    "DuplicatePolicy",
    "EntityDescriptor",
    "ExistingRowIndex",
    "HookPhase",
    "HookRegistry",
    "MatchQuery",
    "Row",
    "RowMatcher",
    "RowState",
    "SessionQueryExecutor",
    "SessionStatementExecutor",
    "SoftDeleteCapability",
    "StatementBatchBuilder",
    "StatementKind",
    "StatementPlan",
    "UpsertResult",
]
