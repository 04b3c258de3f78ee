#!/usr/bin/env python
"""Compare loading one textbook hierarchy three ways on SQLite.

- Preload: one statement per level, linked by hand (the usual ORM strategy)
- Query: a single statement joining every level
- MultiQuery: two statements sharing one set of loaders

Usage:
    python benchmarks/bench_hydrate.py
    BENCH_ITERATIONS=200 python benchmarks/bench_hydrate.py
"""

import asyncio
import sys
from pathlib import Path
from typing import Any

sys.path.insert(0, str(Path(__file__).parent))
from helpers import make_result, output_results, timeit

from hydrakit import AiosqliteExecutor, Base, ForeignKey, Mapped, MultiQuery, Query, mapped_column, one, relationship

# (sections, exercises per section, isbns)
SHAPES = [(5, 10, 3), (2000, 2, 2), (10, 10, 10)]


class BenchAuthor(Base):
    __tablename__ = "bench_authors"

    author_id: Mapped[int] = mapped_column(primary_key=True)
    name: Mapped[str]


class BenchTextbook(Base):
    __tablename__ = "bench_textbooks"

    textbook_id: Mapped[int] = mapped_column(primary_key=True)
    author_id: Mapped[int | None] = mapped_column(ForeignKey("bench_authors.author_id"))
    name: Mapped[str]

    author: Mapped["BenchAuthor | None"] = relationship()
    isbns: Mapped[list["BenchIsbn"]] = relationship()
    sections: Mapped[list["BenchSection"]] = relationship()


class BenchIsbn(Base):
    __tablename__ = "bench_isbns"

    isbn_id: Mapped[int] = mapped_column(primary_key=True)
    textbook_id: Mapped[int] = mapped_column(ForeignKey("bench_textbooks.textbook_id"))
    isbn: Mapped[str]


class BenchSection(Base):
    __tablename__ = "bench_sections"

    section_id: Mapped[int] = mapped_column(primary_key=True)
    textbook_id: Mapped[int] = mapped_column(ForeignKey("bench_textbooks.textbook_id"))
    title: Mapped[str]

    exercises: Mapped[list["BenchExercise"]] = relationship()


class BenchExercise(Base):
    __tablename__ = "bench_exercises"

    exercise_id: Mapped[int] = mapped_column(primary_key=True)
    section_id: Mapped[int] = mapped_column(ForeignKey("bench_sections.section_id"))
    title: Mapped[str]


SCHEMA = [
    "CREATE TABLE bench_authors (author_id INTEGER PRIMARY KEY, name TEXT NOT NULL)",
    "CREATE TABLE bench_textbooks (textbook_id INTEGER PRIMARY KEY, author_id INTEGER, name TEXT NOT NULL)",
    "CREATE TABLE bench_isbns (isbn_id INTEGER PRIMARY KEY, textbook_id INTEGER NOT NULL, isbn TEXT NOT NULL)",
    "CREATE TABLE bench_sections (section_id INTEGER PRIMARY KEY, textbook_id INTEGER NOT NULL, title TEXT NOT NULL)",
    "CREATE TABLE bench_exercises (exercise_id INTEGER PRIMARY KEY, section_id INTEGER NOT NULL, title TEXT NOT NULL)",
    "CREATE INDEX ix_bench_isbns ON bench_isbns (textbook_id)",
    "CREATE INDEX ix_bench_sections ON bench_sections (textbook_id)",
    "CREATE INDEX ix_bench_exercises ON bench_exercises (section_id)",
]


async def generate_hierarchy(engine: AiosqliteExecutor, sections: int, exercises: int, isbns: int) -> int:
    """Insert one textbook with its author, sections, exercises and isbns."""
    db = engine.connection
    cursor = await db.execute("INSERT INTO bench_authors (name) VALUES (?)", ("author",))
    author_id = cursor.lastrowid
    cursor = await db.execute(
        "INSERT INTO bench_textbooks (author_id, name) VALUES (?, ?)", (author_id, "textbook")
    )
    textbook_id = cursor.lastrowid

    for s in range(sections):
        cursor = await db.execute(
            "INSERT INTO bench_sections (textbook_id, title) VALUES (?, ?)", (textbook_id, f"s{s}")
        )
        section_id = cursor.lastrowid
        await db.executemany(
            "INSERT INTO bench_exercises (section_id, title) VALUES (?, ?)",
            [(section_id, f"s{s}-e{e}") for e in range(exercises)],
        )
    await db.executemany(
        "INSERT INTO bench_isbns (textbook_id, isbn) VALUES (?, ?)",
        [(textbook_id, f"i{i}") for i in range(isbns)],
    )
    await db.commit()
    return textbook_id


async def preload(engine: AiosqliteExecutor, textbook_id: int) -> BenchTextbook:
    """Load each level with its own statement and link the levels by hand."""
    db = engine.connection

    async with db.execute(
        "SELECT textbook_id, author_id, name FROM bench_textbooks WHERE textbook_id = ?", (textbook_id,)
    ) as cursor:
        row = await cursor.fetchone()
    textbook = BenchTextbook(textbook_id=row[0], author_id=row[1], name=row[2])

    if textbook.author_id is not None:
        async with db.execute(
            "SELECT author_id, name FROM bench_authors WHERE author_id = ?", (textbook.author_id,)
        ) as cursor:
            row = await cursor.fetchone()
        textbook.author = BenchAuthor(author_id=row[0], name=row[1])

    async with db.execute(
        "SELECT isbn_id, textbook_id, isbn FROM bench_isbns WHERE textbook_id = ? ORDER BY isbn_id",
        (textbook_id,),
    ) as cursor:
        textbook.isbns = [BenchIsbn(isbn_id=r[0], textbook_id=r[1], isbn=r[2]) for r in await cursor.fetchall()]

    async with db.execute(
        "SELECT section_id, textbook_id, title FROM bench_sections WHERE textbook_id = ? ORDER BY section_id",
        (textbook_id,),
    ) as cursor:
        textbook.sections = [
            BenchSection(section_id=r[0], textbook_id=r[1], title=r[2]) for r in await cursor.fetchall()
        ]

    by_section = {section.section_id: section for section in textbook.sections}
    async with db.execute(
        """SELECT e.exercise_id, e.section_id, e.title FROM bench_exercises e
        JOIN bench_sections s ON s.section_id = e.section_id
        WHERE s.textbook_id = ? ORDER BY e.exercise_id""",
        (textbook_id,),
    ) as cursor:
        for r in await cursor.fetchall():
            by_section[r[1]].exercises.append(BenchExercise(exercise_id=r[0], section_id=r[1], title=r[2]))

    return textbook


async def single_query(engine: AiosqliteExecutor, textbook_id: int) -> BenchTextbook:
    textbook = one(BenchTextbook)
    await (
        Query(
            engine,
            """FROM bench_textbooks t
            LEFT JOIN bench_isbns i ON i.textbook_id = t.textbook_id
            LEFT JOIN bench_sections s ON s.textbook_id = t.textbook_id
            LEFT JOIN bench_exercises e ON e.section_id = s.section_id
            LEFT JOIN bench_authors a ON a.author_id = t.author_id
            WHERE t.textbook_id = ?
            ORDER BY t.textbook_id, i.isbn_id, s.section_id, e.exercise_id""",
            textbook_id,
        )
        .add_model(BenchTextbook, "t")
        .add_model(BenchIsbn, "i")
        .add_model(BenchSection, "s")
        .add_model(BenchExercise, "e")
        .add_model(BenchAuthor, "a")
        .run(textbook)
    )
    return textbook.value


async def multi_query(engine: AiosqliteExecutor, textbook_id: int) -> BenchTextbook:
    textbook = one(BenchTextbook)
    await MultiQuery(
        Query(
            engine,
            """FROM bench_sections s
            LEFT JOIN bench_exercises e ON e.section_id = s.section_id
            WHERE s.textbook_id = ?
            ORDER BY s.section_id, e.exercise_id""",
            textbook_id,
        )
        .add_model(BenchSection, "s")
        .add_model(BenchExercise, "e"),
        Query(
            engine,
            """FROM bench_textbooks t
            JOIN bench_isbns i ON i.textbook_id = t.textbook_id
            JOIN bench_authors a ON a.author_id = t.author_id
            WHERE t.textbook_id = ?
            ORDER BY i.isbn_id""",
            textbook_id,
        )
        .add_model(BenchTextbook, "t")
        .add_model(BenchAuthor, "a")
        .add_model(BenchIsbn, "i"),
    ).run(textbook)
    return textbook.value


def count_entities(textbook: BenchTextbook) -> int:
    exercises = sum(len(section.exercises) for section in textbook.sections)
    return 2 + len(textbook.isbns) + len(textbook.sections) + exercises


async def main() -> None:
    engine = await AiosqliteExecutor.connect(":memory:")
    for statement in SCHEMA:
        await engine.connection.execute(statement)

    strategies = [("Preload", preload), ("Query", single_query), ("MultiQuery", multi_query)]
    results = []
    try:
        for sections, exercises, isbns in SHAPES:
            shape = f"S{sections}:E{exercises}:I{isbns}"
            textbook_id = await generate_hierarchy(engine, sections, exercises, isbns)
            for name, strategy in strategies:
                loaded = await strategy(engine, textbook_id)
                time_ms = await timeit(lambda: strategy(engine, textbook_id))
                results.append(make_result(name, shape, count_entities(loaded), time_ms))
                print(f"{shape:<16} {name:<12} {time_ms:>10.2f}ms", file=sys.stderr)
    finally:
        await engine.close()

    output_results(results)


if __name__ == "__main__":
    asyncio.run(main())
