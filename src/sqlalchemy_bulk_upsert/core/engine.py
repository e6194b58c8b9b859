"""
Bulk upsert engine: match, diff, stamp, hook, write.
"""

import logging
import time
from datetime import datetime, timezone
from typing import Any, Callable, Iterable, List, Mapping, Optional, Sequence

from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from sqlalchemy_bulk_upsert.core.callbacks import CallbackSequencer, HookRegistry
from sqlalchemy_bulk_upsert.core.dates import DateFieldNormalizer
from sqlalchemy_bulk_upsert.core.descriptor import EntityDescriptor
from sqlalchemy_bulk_upsert.core.dirty import DirtyAttributeResolver
from sqlalchemy_bulk_upsert.core.executors import SessionQueryExecutor, SessionStatementExecutor
from sqlalchemy_bulk_upsert.core.matcher import DuplicatePolicy, RowMatcher, deduplicate
from sqlalchemy_bulk_upsert.core.rows import Row, RowState
from sqlalchemy_bulk_upsert.core.statements import StatementBatchBuilder, StatementKind
from sqlalchemy_bulk_upsert.exceptions import BulkUpsertError, ColumnShapeMismatchError
from sqlalchemy_bulk_upsert.utils.config import UpsertConfig

logger = logging.getLogger(__name__)


def utcnow() -> datetime:
    """Naive UTC timestamp, the form DateTime columns store."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


class UpsertResult(BaseModel):
    """Result of one batch."""

    table: str
    created: int = 0
    updated: int = 0
    restored: int = 0
    unchanged: int = 0
    excluded: int = 0
    skipped: int = 0
    statements: int = 0
    affected_rows: int = 0
    duration: float = 0.0
    dry_run: bool = False
    sql: List[str] = Field(default_factory=list)


class BulkUpsertEngine:
    """
    Writes a batch of rows with a bounded number of statements.

    Existing rows are found by their unique attributes with one lookup per
    chunk, compared attribute by attribute, and only new or changed rows are
    written: one multi-row INSERT per column shape, one CASE-based UPDATE per
    column shape. Hooks fire before and after the writes.

    The engine never commits. Run it inside the caller's transaction so a
    failure at any stage leaves the store untouched.
    """

    def __init__(
        self,
        descriptor: EntityDescriptor,
        query_executor: Any,
        statement_executor: Any,
        hooks: Optional[HookRegistry] = None,
        config: Optional[UpsertConfig] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.descriptor = descriptor
        self.config = config or UpsertConfig()
        self.query_executor = query_executor
        self.statement_executor = statement_executor
        self.hooks = hooks if hooks is not None else HookRegistry()
        self.clock = clock or utcnow

        self.matcher = RowMatcher(descriptor, query_executor, self.config.chunk_size)
        self.resolver = DirtyAttributeResolver(descriptor)
        self.normalizer = DateFieldNormalizer(descriptor)
        self.builder = StatementBatchBuilder(descriptor, self.config.chunk_size)
        self.callbacks = CallbackSequencer(self.hooks)

    @classmethod
    def for_session(
        cls,
        session: Session,
        target: Any,
        hooks: Optional[HookRegistry] = None,
        config: Optional[UpsertConfig] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> "BulkUpsertEngine":
        """
        Build an engine for a SQLAlchemy table or mapped class on ``session``.

        Args:
            session: Session whose transaction the writes join
            target: ``Table`` or declarative model, or a ready descriptor
        """
        config = config or UpsertConfig()
        if isinstance(target, EntityDescriptor):
            descriptor = target
        else:
            descriptor = EntityDescriptor.from_table(
                target,
                created_column=config.created_column,
                updated_column=config.updated_column,
                deleted_column=config.deleted_column,
            )
        return cls(
            descriptor,
            SessionQueryExecutor(session),
            SessionStatementExecutor(session),
            hooks=hooks,
            config=config,
            clock=clock,
        )

    def upsert(
        self,
        rows: Iterable[Mapping],
        unique_attributes: Sequence[str],
        update_attributes: Optional[Sequence[str]] = None,
        exclude_attributes: Iterable[str] = (),
        duplicate_policy: Optional[DuplicatePolicy] = None,
        dry_run: bool = False,
    ) -> UpsertResult:
        """
        Insert missing rows and update changed ones.

        Args:
            rows: Mappings of attribute name to value
            unique_attributes: Attributes identifying a logical row
            update_attributes: Attributes allowed to change on existing rows;
                defaults to every non-key attribute present on the row
            exclude_attributes: Attributes never written on update nor stamped
            duplicate_policy: Overrides the configured policy for this batch
            dry_run: Build the plan and return its SQL without executing

        Returns:
            Counts for the batch
        """
        return self._run(
            rows, unique_attributes, update_attributes, exclude_attributes,
            duplicate_policy, dry_run, insert_missing=True, update_existing=True,
        )

    def insert(
        self,
        rows: Iterable[Mapping],
        unique_attributes: Sequence[str],
        exclude_attributes: Iterable[str] = (),
        duplicate_policy: Optional[DuplicatePolicy] = None,
        dry_run: bool = False,
    ) -> UpsertResult:
        """Insert rows that do not exist yet; existing rows are skipped."""
        return self._run(
            rows, unique_attributes, None, exclude_attributes,
            duplicate_policy, dry_run, insert_missing=True, update_existing=False,
        )

    def update(
        self,
        rows: Iterable[Mapping],
        unique_attributes: Sequence[str],
        update_attributes: Optional[Sequence[str]] = None,
        exclude_attributes: Iterable[str] = (),
        duplicate_policy: Optional[DuplicatePolicy] = None,
        dry_run: bool = False,
    ) -> UpsertResult:
        """Update rows that already exist; missing rows are skipped."""
        return self._run(
            rows, unique_attributes, update_attributes, exclude_attributes,
            duplicate_policy, dry_run, insert_missing=False, update_existing=True,
        )

    def _run(
        self,
        rows: Iterable[Mapping],
        unique_attributes: Sequence[str],
        update_attributes: Optional[Sequence[str]],
        exclude_attributes: Iterable[str],
        duplicate_policy: Optional[DuplicatePolicy],
        dry_run: bool,
        insert_missing: bool,
        update_existing: bool,
    ) -> UpsertResult:
        start = time.time()
        table = self.descriptor.table_name
        unique_attributes = tuple(unique_attributes)
        exclude_attributes = tuple(exclude_attributes)
        if update_attributes is not None:
            update_attributes = tuple(update_attributes)

        try:
            self._validate_attributes(unique_attributes, update_attributes, exclude_attributes)
            batch = [
                Row.ingest(data, self.descriptor, unique_attributes, position)
                for position, data in enumerate(rows)
            ]
            logger.info(f"Starting bulk upsert into {table}: {len(batch)} row(s)")
            if not batch:
                return UpsertResult(table=table, dry_run=dry_run, duration=time.time() - start)

            policy = duplicate_policy or self.config.duplicate_policy
            batch, dropped = deduplicate(batch, policy)

            compared = self._compared_attributes(
                batch, unique_attributes, update_attributes, exclude_attributes
            )
            index = self.matcher.match(batch, unique_attributes, compared)
            self.resolver.resolve(
                batch, index, unique_attributes, update_attributes, exclude_attributes
            )

            skipped = 0
            for row in batch:
                if (row.is_new and not insert_missing) or (row.original is not None and not update_existing):
                    row.exclude()
                    skipped += 1

            now = self.clock()

            def restamp(rows_: Sequence[Row]) -> None:
                self.normalizer.stamp(rows_, now, exclude_attributes)

            restamp(batch)
            self.callbacks.before(batch, after_saving=restamp)
            for row in batch:
                if not row.excluded:
                    row.refresh_state()

            plan = self.builder.build(batch, unique_attributes)
            created = plan.rows_of_kind(StatementKind.INSERT)
            updated = plan.rows_of_kind(StatementKind.UPDATE)
            unchanged = [
                row for row in batch if not row.excluded and row.state is RowState.UNCHANGED
            ]

            result = UpsertResult(
                table=table,
                created=len(created),
                updated=len(updated),
                restored=sum(1 for row in updated if row.restored),
                unchanged=len(unchanged),
                excluded=sum(1 for row in batch if row.excluded) - skipped,
                skipped=skipped + len(dropped),
                statements=len(plan),
                dry_run=dry_run,
            )

            if dry_run:
                dialect = getattr(self.statement_executor, "dialect", None)
                result.sql = plan.compile(dialect)
                result.duration = time.time() - start
                logger.info(f"Dry run for {table}: {len(plan)} statement(s) planned")
                return result

            counts = self.statement_executor.execute(plan) if plan else []
            result.affected_rows = sum(count for count in counts if count and count > 0)

            if created and self.config.fetch_inserted_identities:
                self._load_identities(created, unique_attributes)

            self.callbacks.after(created, updated, unchanged)
        except BulkUpsertError as e:
            logger.error(f"Bulk upsert into {table} failed during {e.stage}: {e}")
            raise

        result.duration = time.time() - start
        logger.info(
            f"Completed bulk upsert into {table} "
            f"(created={result.created}, updated={result.updated}, "
            f"unchanged={result.unchanged}, statements={result.statements}, "
            f"duration={result.duration:.2f}s)"
        )
        return result

    def _validate_attributes(
        self,
        unique_attributes: Sequence[str],
        update_attributes: Optional[Sequence[str]],
        exclude_attributes: Sequence[str],
    ) -> None:
        if not unique_attributes:
            raise ValueError("At least one unique attribute is required")
        named = set(unique_attributes) | set(update_attributes or ()) | set(exclude_attributes)
        unknown = self.descriptor.unknown_columns(named)
        if unknown:
            raise ColumnShapeMismatchError(
                f"Attributes {', '.join(sorted(unknown))} are not declared on "
                f"'{self.descriptor.table_name}'",
                columns=unknown,
            )

    def _compared_attributes(
        self,
        rows: Sequence[Row],
        unique_attributes: Sequence[str],
        update_attributes: Optional[Sequence[str]],
        exclude_attributes: Sequence[str],
    ) -> List[str]:
        names = {}
        for row in rows:
            for name in self.resolver.compared_attributes(
                row, unique_attributes, update_attributes, exclude_attributes
            ):
                names[name] = None
        return list(names)

    def _load_identities(self, rows: List[Row], unique_attributes: Sequence[str]) -> None:
        """Read back the primary keys the store assigned to inserted rows."""
        index = self.matcher.match(rows, unique_attributes)
        for row in rows:
            record = index.find(row.unique_values)
            if record is not None:
                row.identity = record.get(self.descriptor.primary_key)
