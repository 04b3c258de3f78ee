"""Tests for MultiQuery against an in-memory executor."""

import pytest

from hydrakit import BindingError, ExecutionError, MultiQuery, Query, QueryError, collect, many, one
from library import Author, Isbn, Section, Textbook
from fakes import FakeExecutor


def textbooks_query(executor) -> Query:
    return Query(executor, "FROM textbooks t ORDER BY t.textbook_id").add_model(Textbook, "t")


def authors_query(executor) -> Query:
    return Query(executor, "FROM authors a ORDER BY a.author_id").add_model(Author, "a")


def sections_query(executor) -> Query:
    return Query(executor, "FROM sections s ORDER BY s.section_id").add_model(Section, "s")


TEXTBOOK_ROWS = [(1, None, "t1", None), (2, 1, "t2", None)]
AUTHOR_ROWS = [(1, "a1", None), (2, "a2", None)]
SECTION_ROWS = [(1, 1, "s1", None), (2, 1, "s2", None), (3, 1, "s3", None)]


class TestMultiQuery:
    async def test_links_across_queries(self):
        executor = FakeExecutor(TEXTBOOK_ROWS, AUTHOR_ROWS, SECTION_ROWS)
        textbooks, authors = many(Textbook), many(Author)
        multi = MultiQuery(textbooks_query(executor), authors_query(executor), sections_query(executor))

        await multi.run(textbooks, authors)

        t1, t2 = textbooks.value
        assert t1.author is None
        assert t2.author is authors.value[0]
        assert [s.title for s in t1.sections] == ["s1", "s2", "s3"]
        assert t2.sections == []
        assert [a.name for a in authors.value] == ["a1", "a2"]
        assert len(executor.statements) == 3

    async def test_deduplicates_across_queries(self):
        executor = FakeExecutor([(1, "a1", None)], [(1, "a1 again", None), (2, "a2", None)])
        authors = many(Author)

        await MultiQuery(authors_query(executor), authors_query(executor)).run(authors)

        assert [(a.author_id, a.name) for a in authors.value] == [(1, "a1"), (2, "a2")]

    async def test_same_parent_merges_relationships_from_each_query(self):
        executor = FakeExecutor(
            [(1, None, "t1", None, 1, 1, "s1", None)],
            [(1, None, "t1", None, 1, 1, "i1"), (1, None, "t1", None, 2, 1, "i2")],
        )
        with_sections = (
            Query(executor, "FROM textbooks t JOIN sections s ON s.textbook_id = t.textbook_id")
            .add_model(Textbook, "t")
            .add_model(Section, "s")
        )
        with_isbns = (
            Query(executor, "FROM textbooks t JOIN isbns i ON i.textbook_id = t.textbook_id")
            .add_model(Textbook, "t")
            .add_model(Isbn, "i")
        )

        textbooks = await MultiQuery(with_sections, with_isbns).all(Textbook)

        assert len(textbooks) == 1
        assert [s.title for s in textbooks[0].sections] == ["s1"]
        assert [i.isbn for i in textbooks[0].isbns] == ["i1", "i2"]
        assert textbooks[0].sections[0].textbook is textbooks[0]

    async def test_add(self):
        executor = FakeExecutor(TEXTBOOK_ROWS, AUTHOR_ROWS)
        multi = MultiQuery().add(textbooks_query(executor)).add(authors_query(executor))
        assert len(multi) == 2

        textbooks = await multi.all(Textbook)
        assert textbooks[1].author.name == "a1"

    async def test_empty_multi_query_fills_nothing(self):
        existing = [Isbn(isbn_id=1)]
        first = one(Isbn)
        await MultiQuery().run(collect(Isbn, existing), first)
        assert len(existing) == 1
        assert first.value is None

    async def test_closes_every_cursor(self):
        executor = FakeExecutor(TEXTBOOK_ROWS, AUTHOR_ROWS)
        await MultiQuery(textbooks_query(executor), authors_query(executor)).run()
        assert [c.closed for c in executor.cursors] == [True, True]


class TestMultiQueryErrors:
    async def test_failure_stops_later_queries(self):
        executor = FakeExecutor(TEXTBOOK_ROWS, ExecutionError("no such table: authors"), SECTION_ROWS)
        textbooks = many(Textbook)
        multi = MultiQuery(textbooks_query(executor), authors_query(executor), sections_query(executor))

        with pytest.raises(ExecutionError, match="no such table"):
            await multi.run(textbooks)

        assert len(executor.statements) == 2
        assert textbooks.value == []

    async def test_invalid_output_runs_no_sql(self):
        executor = FakeExecutor(TEXTBOOK_ROWS)
        with pytest.raises(BindingError):
            await MultiQuery(textbooks_query(executor)).run(None)
        assert executor.statements == []

    async def test_query_without_models_runs_no_sql(self):
        executor = FakeExecutor(TEXTBOOK_ROWS)
        multi = MultiQuery(textbooks_query(executor), Query(executor, "FROM authors a"))
        with pytest.raises(QueryError, match="query 2 of 2 has no models"):
            await multi.run(many(Textbook))
        assert executor.statements == []

    async def test_timeout_covers_whole_run(self):
        executor = FakeExecutor(TEXTBOOK_ROWS, AUTHOR_ROWS, delay=0.02)
        multi = MultiQuery(textbooks_query(executor), authors_query(executor))
        with pytest.raises(TimeoutError):
            await multi.run(timeout=0.05)
        assert all(c.closed for c in executor.cursors)

    async def test_each_query_uses_its_own_executor(self):
        textbook_db, author_db = FakeExecutor(TEXTBOOK_ROWS), FakeExecutor(AUTHOR_ROWS)
        textbooks = await MultiQuery(textbooks_query(textbook_db), authors_query(author_db)).all(Textbook)

        assert textbooks[1].author.name == "a1"
        assert len(textbook_db.statements) == 1
        assert len(author_db.statements) == 1
