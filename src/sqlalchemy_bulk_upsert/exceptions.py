"""
Custom exceptions for sqlalchemy-bulk-upsert
"""

from typing import Any, Optional, Sequence


class BulkUpsertError(Exception):
    """Base exception for bulk upsert errors"""

    stage: Optional[str] = None

    def __init__(self, message: str, rows: Optional[Sequence[Any]] = None):
        super().__init__(message)
        self.rows = list(rows or [])


class QueryExecutionError(BulkUpsertError):
    """Raised when the existing-row lookup query is rejected by the store"""

    stage = "matching"


class StatementExecutionError(BulkUpsertError):
    """Raised when an INSERT or UPDATE statement of the plan fails"""

    stage = "execution"

    def __init__(
        self,
        message: str,
        rows: Optional[Sequence[Any]] = None,
        statement_index: Optional[int] = None,
        kind: Optional[str] = None,
    ):
        super().__init__(message, rows)
        self.statement_index = statement_index
        self.kind = kind


class ColumnShapeMismatchError(BulkUpsertError):
    """Raised when a row carries attributes that are not declared columns"""

    stage = "validation"

    def __init__(
        self,
        message: str,
        rows: Optional[Sequence[Any]] = None,
        columns: Optional[Sequence[str]] = None,
    ):
        super().__init__(message, rows)
        self.columns = sorted(columns or [])


class HookAbortError(BulkUpsertError):
    """Raised when a registered hook vetoes the batch or raises"""

    stage = "hooks"

    def __init__(self, message: str, rows: Optional[Sequence[Any]] = None, phase: Any = None):
        super().__init__(message, rows)
        self.phase = phase


class DuplicateUniqueKeyError(BulkUpsertError):
    """Raised when two rows of one batch share a unique key and no merge policy applies"""

    stage = "deduplication"

    def __init__(self, message: str, rows: Optional[Sequence[Any]] = None, key: Any = None):
        super().__init__(message, rows)
        self.key = key


class ImmutableUniqueKeyError(BulkUpsertError):
    """Raised when a unique attribute is reassigned after the row entered the pipeline"""

    stage = "validation"
