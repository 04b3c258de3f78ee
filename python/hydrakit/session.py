"""Async session binding queries to one executor."""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any

from hydrakit.config import HydrateConfig
from hydrakit.executor import RowExecutor
from hydrakit.query import MultiQuery, Query

logger = logging.getLogger(__name__)


class AsyncSession:
    """Builds queries against one executor.

    Example:
        >>> async with AsyncSession(executor) as session:
        ...     textbooks = await session.query('''
        ...         FROM textbooks t
        ...         LEFT JOIN sections s ON s.textbook_id = t.textbook_id
        ...         ORDER BY t.textbook_id, s.section_id
        ...     ''').add_model(Textbook, "t").add_model(Section, "s").all(Textbook)

    The executor is closed when the session context exits.
    """

    def __init__(self, executor: RowExecutor, *, config: HydrateConfig | None = None) -> None:
        self._executor = executor
        self._config = config or HydrateConfig()
        self._closed = False

    async def __aenter__(self) -> AsyncSession:
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: Any,
    ) -> None:
        await self.close()

    @property
    def executor(self) -> RowExecutor:
        return self._executor

    @property
    def config(self) -> HydrateConfig:
        return self._config

    def query(self, sql: str, *args: Any) -> Query:
        """Start a query on this session's executor.

        Example:
            >>> session.query("FROM authors a WHERE a.author_id = ?", 1).add_model(Author, "a")
        """
        return Query(self._executor, sql, *args, timeout=self._config.default_timeout)

    def multi_query(self, *queries: Query) -> MultiQuery:
        """Combine queries whose results share one set of loaders."""
        return MultiQuery(*queries, timeout=self._config.default_timeout)

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        logger.debug("Closing session executor")
        await self._executor.close()


def create_session(executor: RowExecutor, **kwargs: Any) -> AsyncSession:
    """Create a new session from an executor.

    Example:
        >>> session = create_session(await create_engine("sqlite::memory:"))
    """
    return AsyncSession(executor, **kwargs)


@asynccontextmanager
async def session_context(executor: RowExecutor, **kwargs: Any) -> AsyncIterator[AsyncSession]:
    """Create a session that closes its executor on exit.

    Example:
        >>> async with session_context(engine) as session:
        ...     authors = await session.query("FROM authors a").add_model(Author, "a").all(Author)
    """
    session = AsyncSession(executor, **kwargs)
    try:
        yield session
    finally:
        await session.close()
