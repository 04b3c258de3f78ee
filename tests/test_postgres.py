"""End-to-end hydration against PostgreSQL through asyncpg.

Run with DATABASE_URL set, e.g.:
    DATABASE_URL=postgresql://localhost/hydrakit_test pytest -m postgres
"""

import pytest

from hydrakit import ExecutionError, MultiQuery, Query, ScanError, many, one
from library import Author, BadTextbook, Exercise, Isbn, Section, Textbook

pytestmark = pytest.mark.postgres


async def test_load_from_single_query(postgres_engine):
    textbooks, authors, isbn = many(Textbook), many(Author), one(Isbn)
    await (
        Query(
            postgres_engine,
            """FROM textbooks t
            LEFT JOIN isbns i ON i.textbook_id = t.textbook_id
            LEFT JOIN sections s ON t.textbook_id = s.textbook_id
            LEFT JOIN exercises e ON e.section_id = s.section_id
            LEFT JOIN authors a ON a.author_id = t.author_id
            WHERE t.textbook_id = ANY($1)
            ORDER BY t.textbook_id, i.isbn_id, s.section_id, e.exercise_id, a.author_id""",
            [1, 2],
        )
        .add_model(Textbook, "t")
        .add_model(Isbn, "i")
        .add_model(Section, "s")
        .add_model(Exercise, "e")
        .add_model(Author, "a")
        .run(textbooks, authors, isbn)
    )

    t1, t2 = textbooks.value
    assert [i.isbn for i in t1.isbns] == ["i1", "i2"]
    assert [len(s.exercises) for s in t1.sections] == [2, 0, 2]
    assert t2.author.name == "a1"
    assert [a.name for a in authors.value] == ["a1"]
    assert isbn.value.isbn == "i1"


async def test_load_from_multi_query(postgres_engine):
    textbooks = await MultiQuery(
        Query(postgres_engine, "FROM textbooks t ORDER BY t.textbook_id").add_model(Textbook, "t"),
        Query(postgres_engine, "FROM sections s ORDER BY s.section_id").add_model(Section, "s"),
        Query(postgres_engine, "FROM authors a WHERE a.author_id = $1", 1).add_model(Author, "a"),
    ).all(Textbook)

    t1, t2 = textbooks
    assert len(t1.sections) == 3
    assert t1.author is None
    assert t2.author.name == "a1"


async def test_query_error(postgres_engine):
    query = Query(postgres_engine, "FROM textbooks WHERE not_a_column = $1", 1).add_model(Textbook)
    with pytest.raises(ExecutionError, match="not_a_column"):
        await query.run()
    # The failed statement must not leave the connection in an aborted transaction
    assert len(await Query(postgres_engine, "FROM authors a").add_model(Author, "a").all(Author)) == 2


async def test_scan_error(postgres_engine):
    query = Query(postgres_engine, "FROM textbooks t WHERE t.textbook_id = $1", 1).add_model(BadTextbook, "t")
    with pytest.raises(ScanError):
        await query.run()
