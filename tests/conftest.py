"""Pytest configuration and fixtures."""

import os
from datetime import datetime

import pytest
import pytest_asyncio

from library import DATA, SCHEMA


@pytest_asyncio.fixture
async def sqlite_engine():
    """Create an in-memory SQLite executor holding the textbook library."""
    from hydrakit import AiosqliteExecutor

    engine = await AiosqliteExecutor.connect(":memory:")
    for statement in SCHEMA:
        await engine.connection.execute(statement)
    for statement, rows in DATA:
        await engine.connection.executemany(statement, rows)
    await engine.connection.commit()
    yield engine
    await engine.close()


@pytest_asyncio.fixture
async def postgres_engine():
    """Create a PostgreSQL executor holding the textbook library.

    Set DATABASE_URL environment variable to use a real PostgreSQL database.
    Otherwise, this fixture is skipped.
    """
    url = os.environ.get("DATABASE_URL")
    if not url:
        pytest.skip("DATABASE_URL not set")
    pytest.importorskip("asyncpg")

    from hydrakit import AsyncpgExecutor

    engine = await AsyncpgExecutor.connect(url)
    connection = engine.connection
    for table in ("exercises", "sections", "isbns", "textbooks", "authors"):
        await connection.execute(f"DROP TABLE IF EXISTS {table}")
    for statement in SCHEMA:
        await connection.execute(statement)
    for statement, rows in DATA:
        # asyncpg uses $n placeholders and wants datetimes for TIMESTAMP columns
        columns = statement[statement.index("(") + 1:statement.index(")")].split(", ")
        placeholders = ", ".join(f"${i + 1}" for i in range(len(columns)))
        pg_statement = statement.split("VALUES")[0] + f"VALUES ({placeholders})"
        await connection.executemany(pg_statement, [_pg_row(columns, row) for row in rows])
    yield engine
    for table in ("exercises", "sections", "isbns", "textbooks", "authors"):
        await connection.execute(f"DROP TABLE IF EXISTS {table}")
    await engine.close()


def _pg_row(columns, row):
    return tuple(
        datetime.fromisoformat(value) if column == "created_at" else value
        for column, value in zip(columns, row)
    )
