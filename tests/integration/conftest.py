"""
Fixtures for history store tests against a real Postgres
"""

from typing import AsyncIterator, Iterator

import pytest
from psycopg import AsyncConnection
from testcontainers.postgres import PostgresContainer

from dlq_intel.store import PostgresHistoryStore

HISTORY_TABLES = "replay_history, dlq_records, auto_replay_rules"


@pytest.fixture(scope="session")
def history_db_url() -> Iterator[str]:
    """One disposable Postgres for the whole session; yields its connection URL"""
    with PostgresContainer("postgres:15", driver=None) as server:
        yield server.get_connection_url()


@pytest.fixture
async def pg_store(history_db_url: str) -> AsyncIterator[PostgresHistoryStore]:
    """Connected store (schema created on connect) over emptied history tables"""
    history_store = PostgresHistoryStore(history_db_url)
    await history_store.connect()

    async with await AsyncConnection.connect(history_db_url, autocommit=True) as conn:
        await conn.execute(f"TRUNCATE {HISTORY_TABLES} RESTART IDENTITY CASCADE")

    yield history_store
    await history_store.disconnect()
