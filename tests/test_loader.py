"""Tests for EntityLoader and LoaderRegistry."""

import pytest

from hydrakit import (
    Base,
    EntityLoader,
    LoaderRegistry,
    Mapped,
    ScanError,
    describe_entity,
    mapped_column,
    relationship,
)
from library import Author, Exercise, Isbn, Section, Textbook


def loader_for(model) -> EntityLoader:
    return EntityLoader(describe_entity(model))


def load(loader: EntityLoader, *rows) -> None:
    for row in rows:
        loader.scan(row)
        loader.process_row()


class LoaderParcel(Base):
    __tablename__ = "loader_parcels"

    parcel_id: Mapped[int] = mapped_column(primary_key=True)
    region: Mapped[int | None]
    code: Mapped[str | None]


class LoaderShipment(Base):
    """Owns parcels through a two-column key."""

    __tablename__ = "loader_shipments"

    shipment_id: Mapped[int] = mapped_column(primary_key=True)
    region: Mapped[int]
    code: Mapped[str]

    parcels: Mapped[list[LoaderParcel]] = relationship(local_keys=["region", "code"], remote_keys=["region", "code"])


def shipments_with_parcels(shipment_rows, parcel_rows) -> list[LoaderShipment]:
    shipments = loader_for(LoaderShipment)
    load(shipments, *shipment_rows)
    parcels = loader_for(LoaderParcel)
    load(parcels, *parcel_rows)
    shipments.finalize({LoaderShipment: shipments.entities, LoaderParcel: parcels.entities})
    return shipments.entities


class TestProjection:
    def test_uses_alias(self):
        assert loader_for(Author).projection("a") == ["a.author_id", "a.name", "a.created_at"]

    def test_defaults_to_table_name(self):
        assert loader_for(Isbn).projection() == [
            "isbns.isbn_id",
            "isbns.textbook_id",
            "isbns.isbn",
        ]

    def test_width(self):
        assert loader_for(Textbook).width == 4


class TestScanAndProcess:
    def test_converts_and_sets_fields(self):
        loader = loader_for(Textbook)
        loader.scan((1, None, "t1", "2019-01-01"))
        textbook = loader.process_row()

        assert textbook.textbook_id == 1
        assert textbook.author_id is None
        assert textbook.name == "t1"
        assert textbook.created_at.year == 2019
        assert textbook.sections == []
        assert loader.entities == [textbook]

    def test_deduplicates_by_primary_key(self):
        loader = loader_for(Textbook)
        loader.scan((1, None, "t1", None))
        first = loader.process_row()
        loader.scan((1, None, "t1 again", None))
        assert loader.process_row() is None

        assert loader.entities == [first]
        assert first.name == "t1"

    def test_keeps_arrival_order(self):
        loader = loader_for(Author)
        load(loader, (2, "a2", None), (1, "a1", None), (2, "a2", None))
        assert [a.author_id for a in loader] == [2, 1]
        assert len(loader) == 2

    def test_null_key_is_skipped(self):
        loader = loader_for(Section)
        loader.scan((None, None, None, None))
        assert loader.process_row() is None
        assert loader.entities == []

    def test_null_cells_keep_defaults(self):
        loader = loader_for(Exercise)
        load(loader, (1, 1, "e1", None, None))
        assert loader.entities[0].ordering == 0

    def test_composite_key(self):
        class Enrollment(Base):
            __tablename__ = "loader_enrollments"

            student_id: Mapped[int] = mapped_column(primary_key=True)
            course_id: Mapped[int] = mapped_column(primary_key=True)
            grade: Mapped[str | None]

        loader = loader_for(Enrollment)
        load(loader, (1, 1, "A"), (1, 2, "B"), (1, 1, "A"), (2, 1, None), (1, None, "C"))
        assert [(e.student_id, e.course_id) for e in loader] == [(1, 1), (1, 2), (2, 1)]

    def test_wrong_width(self):
        with pytest.raises(ScanError, match="expected 3 columns, got 2"):
            loader_for(Author).scan((1, "a1"))

    def test_unconvertible_value(self):
        with pytest.raises(ScanError) as exc_info:
            loader_for(Author).scan(("a1", "a1", None))

        assert exc_info.value.model is Author
        assert exc_info.value.field == "author_id"
        assert exc_info.value.value == "a1"


class TestFinalize:
    def _loaded(self):
        textbooks = loader_for(Textbook)
        load(textbooks, (1, None, "t1", None), (2, 1, "t2", None))
        sections = loader_for(Section)
        load(sections, (1, 1, "s1", None), (2, 1, "s2", None), (3, 2, "s3", None))
        authors = loader_for(Author)
        load(authors, (1, "a1", None))
        return textbooks, sections, authors

    def test_one_to_many(self):
        textbooks, sections, authors = self._loaded()
        entities = {Textbook: textbooks.entities, Section: sections.entities, Author: authors.entities}
        textbooks.finalize(entities)

        t1, t2 = textbooks.entities
        assert [s.title for s in t1.sections] == ["s1", "s2"]
        assert [s.title for s in t2.sections] == ["s3"]

    def test_many_to_one(self):
        textbooks, sections, authors = self._loaded()
        entities = {Textbook: textbooks.entities, Section: sections.entities, Author: authors.entities}
        textbooks.finalize(entities)
        sections.finalize(entities)

        t1, t2 = textbooks.entities
        assert t1.author is None
        assert t2.author is authors.entities[0]
        assert all(s.textbook is not None for s in sections)
        assert sections.entities[2].textbook is t2

    def test_many_without_matches_is_empty_list(self):
        textbooks, _, _ = self._loaded()
        textbooks.finalize({Textbook: textbooks.entities, Isbn: []})
        assert all(t.isbns == [] for t in textbooks)
        assert textbooks.entities[0].isbns is not textbooks.entities[1].isbns

    def test_absent_target_leaves_relationship_alone(self):
        textbooks, _, _ = self._loaded()
        textbooks.finalize({Textbook: textbooks.entities})
        assert textbooks.entities[1].author is None
        assert textbooks.entities[1].sections == []

    def test_null_remote_keys_never_match(self):
        textbooks = loader_for(Textbook)
        load(textbooks, (1, None, "t1", None))
        isbns = loader_for(Isbn)
        load(isbns, (1, None, "orphan"), (2, 1, "i2"))
        textbooks.finalize({Textbook: textbooks.entities, Isbn: isbns.entities})

        assert [i.isbn for i in textbooks.entities[0].isbns] == ["i2"]

    def test_composite_relationship_keys(self):
        s1, s2 = shipments_with_parcels(
            [(1, 1, "a"), (2, 2, "a")],
            [(1, 1, "a"), (2, 2, "a"), (3, 1, "b"), (4, 1, "a"), (5, 1, None)],
        )
        assert [p.parcel_id for p in s1.parcels] == [1, 4]
        assert [p.parcel_id for p in s2.parcels] == [2]

    def test_composite_keys_do_not_collide(self):
        s1, s2 = shipments_with_parcels([(1, 1, "12"), (2, 11, "2")], [(1, 11, "2"), (2, 1, "12")])
        assert [p.parcel_id for p in s1.parcels] == [2]
        assert [p.parcel_id for p in s2.parcels] == [1]


class TestLoaderRegistry:
    def test_one_loader_per_model(self):
        registry = LoaderRegistry()
        descriptor = describe_entity(Textbook)
        loader = registry.loader_for(descriptor)

        assert registry.loader_for(descriptor) is loader
        assert Textbook in registry
        assert Author not in registry
        assert len(registry) == 1
        assert list(registry) == [loader]

    def test_finalize_links_all_loaders(self):
        registry = LoaderRegistry()
        load(registry.loader_for(describe_entity(Section)), (1, 1, "s1", None), (3, 1, "s3", None))
        load(
            registry.loader_for(describe_entity(Exercise)),
            (1, 1, "e1", 1, None),
            (3, 3, "e3", 1, None),
            (4, 3, "e4", 2, None),
        )

        entities = registry.finalize()
        s1, s3 = entities[Section]
        assert [e.title for e in s1.exercises] == ["e1"]
        assert [e.title for e in s3.exercises] == ["e3", "e4"]
        # Textbook was never loaded
        assert s1.textbook is None
        assert Textbook not in entities
