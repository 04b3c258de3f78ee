"""Queries that hydrate linked model graphs from hand-written joins."""

from __future__ import annotations

import asyncio
import logging
import re
from abc import ABC, abstractmethod
from collections.abc import Iterator
from dataclasses import dataclass
from typing import Any, TypeVar

from hydrakit.base import Base
from hydrakit.exceptions import QueryError, ScanError
from hydrakit.executor import RowExecutor, iter_rows, open_cursor
from hydrakit.loader import EntityLoader, LoaderRegistry
from hydrakit.metadata import EntityDescriptor, describe_entity
from hydrakit.output import bind_outputs, many, one, resolve_outputs

logger = logging.getLogger(__name__)

T = TypeVar("T", bound=Base)

# Leading whitespace and SQL comments are allowed before FROM
_FROM_RE = re.compile(r"\A(?:\s+|--[^\n]*(?:\n|\Z)|/\*.*?\*/)*FROM\b", re.IGNORECASE | re.DOTALL)


@dataclass(frozen=True)
class ModelBinding:
    """A model added to a query, and the alias its columns are selected from."""

    descriptor: EntityDescriptor
    alias: str = ""


class _Runnable(ABC):
    """Shared result helpers for Query and MultiQuery."""

    @abstractmethod
    async def run(self, *outputs: Any, timeout: float | None = None) -> None:
        """Execute, link relationships and fill ``outputs``."""

    async def all(self, model: type[T], *, timeout: float | None = None) -> list[T]:
        """Run and return every loaded entity of ``model`` in arrival order.

        Example:
            >>> textbooks = await query.all(Textbook)
        """
        output = many(model)
        await self.run(output, timeout=timeout)
        return output.value

    async def first(self, model: type[T], *, timeout: float | None = None) -> T | None:
        """Run and return the first loaded entity of ``model``, or None.

        No LIMIT is added to the statement.
        """
        output = one(model)
        await self.run(output, timeout=timeout)
        return output.value


class Query(_Runnable):
    """A single statement hydrating one or more models.

    The statement is given from ``FROM`` onwards; the column list is built
    from the models added with ``add_model``, each qualified by its alias
    (or its table name when no alias is given). Every model keeps one entity
    per primary key, and after the rows are read every relationship is
    filled from the other models loaded by the same run.

    The caller owns joins, filters and ordering. Entities appear in the order
    their rows arrive, so add an explicit ORDER BY.

    Example:
        >>> textbooks = many(Textbook)
        >>> await Query(executor, '''
        ...     FROM textbooks t
        ...     LEFT JOIN sections s ON s.textbook_id = t.textbook_id
        ...     WHERE t.textbook_id IN (?, ?)
        ...     ORDER BY t.textbook_id, s.section_id
        ... ''', 1, 2).add_model(Textbook, "t").add_model(Section, "s").run(textbooks)
        >>> textbooks.value[0].sections
        [<Section section_id=1>, <Section section_id=2>]
    """

    def __init__(
        self,
        executor: RowExecutor,
        sql: str,
        *args: Any,
        timeout: float | None = None,
    ) -> None:
        if not _FROM_RE.match(sql):
            raise QueryError("query must start with FROM; the column list is generated")
        self._executor = executor
        self._sql = sql.strip()
        self._args = list(args)
        self._models: list[ModelBinding] = []
        self._timeout = timeout

    def __repr__(self) -> str:
        models = ", ".join(
            f"{b.descriptor.model.__name__} AS {b.alias or b.descriptor.default_name}"
            for b in self._models
        )
        return f"<Query [{models}]>"

    @property
    def executor(self) -> RowExecutor:
        return self._executor

    @property
    def args(self) -> list[Any]:
        return list(self._args)

    @property
    def models(self) -> list[ModelBinding]:
        return list(self._models)

    def add_model(self, model: Any, alias: str = "") -> Query:
        """Load ``model`` (a model class or an instance of one) from ``alias``.

        Raises:
            ModelError: If the model can not be hydrated.
        """
        self._models.append(ModelBinding(describe_entity(model), alias))
        return self

    def statement(self, registry: LoaderRegistry | None = None) -> tuple[str, list[Any]]:
        """Build the full SELECT statement and its parameters."""
        registry = registry if registry is not None else LoaderRegistry()
        columns: list[str] = []
        for binding in self._models:
            columns.extend(registry.loader_for(binding.descriptor).projection(binding.alias))
        return f"SELECT {', '.join(columns)} {self._sql}", list(self._args)

    async def run(self, *outputs: Any, timeout: float | None = None) -> None:
        """Execute the query, link relationships and fill ``outputs``.

        Raises:
            BindingError: If an output can not be filled (before any SQL runs).
            ExecutionError: If the database rejects the statement.
            ScanError: If a row can not be converted into the models.
        """
        bindings = resolve_outputs(outputs)
        registry = LoaderRegistry()
        async with asyncio.timeout(timeout if timeout is not None else self._timeout):
            await self.execute_into(registry)
        bind_outputs(bindings, registry.finalize())

    async def execute_into(self, registry: LoaderRegistry) -> int:
        """Scan this query's rows into the loaders of ``registry``.

        Relationships are not linked; the owner of the registry finalizes it
        once every query of the unit of work has run.

        Returns:
            The number of rows read.
        """
        if not self._models:
            raise QueryError("no models added to query")

        sql, args = self.statement(registry)
        slices: list[tuple[EntityLoader, int, int]] = []
        width = 0
        for binding in self._models:
            loader = registry.loader_for(binding.descriptor)
            slices.append((loader, width, width + loader.width))
            width += loader.width

        level = logging.INFO if getattr(self._executor, "echo", False) else logging.DEBUG
        logger.log(level, "Executing: %s %r", sql, args)

        row_count = 0
        async with open_cursor(self._executor, sql, args) as cursor:
            async for row in iter_rows(cursor):
                if not isinstance(row, tuple):
                    row = tuple(row)
                if len(row) != width:
                    raise ScanError(f"expected {width} columns per row, got {len(row)}")
                # A model added under two aliases shares one loader, so each
                # slice is processed before the next one is scanned
                for loader, start, end in slices:
                    loader.scan(row[start:end])
                    loader.process_row()
                row_count += 1

        logger.debug(
            "Read %d rows: %s",
            row_count,
            ", ".join(f"{loader.model.__name__}={len(loader)}" for loader, _, _ in slices),
        )
        return row_count


class MultiQuery(_Runnable):
    """Runs several queries into one shared set of loaders.

    Entities of the same model are deduplicated across every query, and
    relationships are linked once after the last query, so a graph can be
    assembled from independent statements. Queries run in order; the first
    failure stops the run and no output is filled.

    Example:
        >>> textbooks = many(Textbook)
        >>> await MultiQuery(
        ...     Query(executor, "FROM textbooks t ORDER BY t.textbook_id").add_model(Textbook, "t"),
        ...     Query(executor, "FROM authors a ORDER BY a.author_id").add_model(Author, "a"),
        ... ).run(textbooks)
    """

    def __init__(self, *queries: Query, timeout: float | None = None) -> None:
        self._queries = list(queries)
        self._timeout = timeout

    def __iter__(self) -> Iterator[Query]:
        return iter(self._queries)

    def __len__(self) -> int:
        return len(self._queries)

    def __repr__(self) -> str:
        return f"<MultiQuery {self._queries!r}>"

    def add(self, query: Query) -> MultiQuery:
        """Append a query to run after the ones already added."""
        self._queries.append(query)
        return self

    async def run(self, *outputs: Any, timeout: float | None = None) -> None:
        """Execute every query in order, link relationships and fill ``outputs``.

        ``timeout`` applies to the whole sequence.

        Raises:
            BindingError: If an output can not be filled (before any SQL runs).
            QueryError: If a query has no models (before any SQL runs).
            ExecutionError: If the database rejects any statement.
            ScanError: If a row can not be converted into the models.
        """
        bindings = resolve_outputs(outputs)
        for step, query in enumerate(self._queries, start=1):
            if not query.models:
                raise QueryError(f"query {step} of {len(self._queries)} has no models added")
        registry = LoaderRegistry()
        async with asyncio.timeout(timeout if timeout is not None else self._timeout):
            for step, query in enumerate(self._queries, start=1):
                logger.debug("Running query %d of %d", step, len(self._queries))
                await query.execute_into(registry)
        bind_outputs(bindings, registry.finalize())
