"""
Shared fixtures: an in-memory SQLite database with a soft-deletable users table.
"""

from datetime import datetime

import pytest
from sqlalchemy import Boolean, Column, DateTime, Integer, MetaData, String, Table, create_engine, insert, select
from sqlalchemy.orm import Session

from sqlalchemy_bulk_upsert import BulkUpsertEngine, EntityDescriptor

FIXED_NOW = datetime(2024, 5, 1, 12, 0, 0)


class UsersStore:
    """Small helper to seed and read the users table."""

    def __init__(self, session: Session, table: Table):
        self.session = session
        self.table = table

    def seed(self, *rows):
        self.session.execute(insert(self.table), list(rows))
        self.session.flush()

    def all(self):
        result = self.session.execute(select(self.table).order_by(self.table.c.id))
        return [dict(row) for row in result.mappings()]

    def by_email(self, email):
        return [row for row in self.all() if row["email"] == email]


@pytest.fixture
def users_table():
    metadata = MetaData()
    return Table(
        "users",
        metadata,
        Column("id", Integer, primary_key=True, autoincrement=True),
        Column("email", String(255), nullable=True),
        Column("tenant", String(50), nullable=True),
        Column("name", String(255), nullable=True),
        Column("age", Integer, nullable=True),
        Column("active", Boolean, nullable=True),
        Column("created_at", DateTime, nullable=True),
        Column("updated_at", DateTime, nullable=True),
        Column("deleted_at", DateTime, nullable=True),
    )


@pytest.fixture
def db_engine(users_table):
    engine = create_engine("sqlite://")
    users_table.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session(db_engine):
    with Session(db_engine) as session:
        yield session


@pytest.fixture
def store(session, users_table):
    return UsersStore(session, users_table)


@pytest.fixture
def descriptor(users_table):
    return EntityDescriptor.from_table(users_table)


@pytest.fixture
def clock():
    return lambda: FIXED_NOW


@pytest.fixture
def upsert_engine(session, users_table, clock):
    return BulkUpsertEngine.for_session(session, users_table, clock=clock)
