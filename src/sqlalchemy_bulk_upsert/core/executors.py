"""
Store collaborators: running the lookup query and the statement plan.

The engine only relies on the two protocols below; the Session-backed
implementations are what the CLI and most applications use.
"""

import logging
from typing import Any, Dict, Iterable, Iterator, List, Protocol

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from sqlalchemy_bulk_upsert.core.matcher import MatchQuery
from sqlalchemy_bulk_upsert.core.statements import StatementPlan
from sqlalchemy_bulk_upsert.exceptions import QueryExecutionError, StatementExecutionError

logger = logging.getLogger(__name__)


class QueryExecutor(Protocol):
    def fetch(self, query: MatchQuery) -> Iterable[Dict[str, Any]]:
        ...


class StatementExecutor(Protocol):
    def execute(self, plan: StatementPlan) -> List[int]:
        ...


class SessionQueryExecutor:
    """Runs match queries on a SQLAlchemy session."""

    def __init__(self, session: Session):
        self.session = session

    def fetch(self, query: MatchQuery) -> Iterator[Dict[str, Any]]:
        try:
            result = self.session.execute(query.to_select())
            records = [dict(record) for record in result.mappings()]
        except SQLAlchemyError as e:
            logger.error(f"Lookup on {query.descriptor.table_name} failed: {e}")
            raise QueryExecutionError(
                f"Lookup on '{query.descriptor.table_name}' failed: {e}"
            ) from e
        return iter(records)


class SessionStatementExecutor:
    """
    Runs a plan statement by statement on a SQLAlchemy session.

    Nothing is committed here: the caller owns the transaction and rolls it
    back when an error propagates.
    """

    def __init__(self, session: Session):
        self.session = session

    @property
    def dialect(self):
        return self.session.get_bind().dialect

    def execute(self, plan: StatementPlan) -> List[int]:
        counts: List[int] = []
        for index, statement in enumerate(plan):
            try:
                result = self.session.execute(statement.sql)
            except SQLAlchemyError as e:
                logger.error(f"Statement {index} ({statement.kind.value}) failed: {e}")
                raise StatementExecutionError(
                    f"{statement.kind.value.upper()} statement {index} failed: {e}",
                    rows=statement.rows,
                    statement_index=index,
                    kind=statement.kind.value,
                ) from e
            counts.append(result.rowcount)
            logger.debug(
                f"Statement {index} ({statement.kind.value}) affected {result.rowcount} row(s)"
            )
        return counts
