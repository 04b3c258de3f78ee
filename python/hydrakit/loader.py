"""Entity loaders: scan buffers, identity maps and relationship wiring."""

from __future__ import annotations

import logging
from collections.abc import Iterator, Sequence
from typing import Any

from hydrakit.base import Base
from hydrakit.exceptions import ScanError
from hydrakit.fields import ConversionError
from hydrakit.metadata import EntityDescriptor, RelationshipDescriptor, default_name
from hydrakit.relationships import Cardinality

logger = logging.getLogger(__name__)

Identity = tuple[Any, ...]


class EntityLoader:
    """Loads and deduplicates the entities of one model.

    Each scanned row is first written into the loader's scan cells (one per
    column, NULL always allowed), then ``process_row`` turns the cells into a
    new entity unless the row's primary key is NULL or was already seen.

    Example:
        >>> loader = EntityLoader(describe_entity(Textbook))
        >>> loader.scan((1, None, "t1", "2019-01-01 00:00:00"))
        >>> loader.process_row()
        >>> loader.entities
        [<Textbook textbook_id=1>]
    """

    def __init__(self, descriptor: EntityDescriptor) -> None:
        self.descriptor = descriptor
        self._cells: list[Any] = [None] * len(descriptor.fields)
        self._key_indexes = descriptor.key_indexes
        self._entities: list[Base] = []
        self._identities: set[Identity] = set()

    @property
    def model(self) -> type[Base]:
        return self.descriptor.model

    @property
    def width(self) -> int:
        """Number of columns this loader reads from each row."""
        return len(self._cells)

    @property
    def entities(self) -> list[Base]:
        """Loaded entities in the order they first appeared."""
        return self._entities

    def __len__(self) -> int:
        return len(self._entities)

    def __iter__(self) -> Iterator[Base]:
        return iter(self._entities)

    def __repr__(self) -> str:
        return f"<EntityLoader {self.model.__name__} entities={len(self._entities)}>"

    def projection(self, alias: str = "") -> list[str]:
        """Columns to select for this model, in scan order.

        Columns are qualified by ``alias``, or by the model's table name when
        no alias is given.
        """
        qualifier = alias or default_name(self.descriptor)
        return [f"{qualifier}.{f.column}" for f in self.descriptor.fields]

    def scan(self, values: Sequence[Any]) -> None:
        """Fill the scan cells from one row slice, converting to the declared types.

        Raises:
            ScanError: If the slice has the wrong width or a value can not be converted.
        """
        fields = self.descriptor.fields
        if len(values) != len(fields):
            raise ScanError(
                f"{self.model.__name__}: expected {len(fields)} columns, got {len(values)}",
                model=self.model,
            )
        cells = self._cells
        for i, (f, value) in enumerate(zip(fields, values)):
            try:
                cells[i] = f.convert(value)
            except ConversionError as exc:
                raise ScanError(
                    f"{self.model.__name__}.{f.name}: {exc}",
                    model=self.model,
                    field=f.name,
                    value=value,
                ) from exc

    def process_row(self) -> Base | None:
        """Materialize the scanned row unless it is an outer join miss or a duplicate.

        Returns:
            The new entity, or None when nothing was materialized.
        """
        cells = self._cells
        identity = tuple(cells[i] for i in self._key_indexes)
        if any(value is None for value in identity):
            # A NULL key means the join found no row for this model
            return None
        if identity in self._identities:
            return None

        entity = self.descriptor.new_entity()
        for f, value in zip(self.descriptor.fields, cells):
            if value is not None:
                f.set(entity, value)

        self._entities.append(entity)
        self._identities.add(identity)
        return entity

    def finalize(self, entities_by_type: dict[type[Base], list[Base]]) -> None:
        """Fill every relationship from the entities loaded for its target model.

        Relationships whose target was not loaded are left empty.
        """
        for rel in self.descriptor.relationships:
            targets = entities_by_type.get(rel.target)
            if targets is None:
                logger.debug(
                    "%s.%s: %s not loaded, relationship left empty",
                    self.model.__name__,
                    rel.name,
                    rel.target.__name__,
                )
                continue
            self._fill_relationship(rel, targets)

    def _fill_relationship(self, rel: RelationshipDescriptor, targets: list[Base]) -> None:
        lookup: dict[Identity, list[Base]] = {}
        for target in targets:
            key = rel.remote_key(target)
            if any(value is None for value in key):
                continue
            lookup.setdefault(key, []).append(target)

        filled = 0
        for entity in self._entities:
            key = rel.local_key(entity)
            matches = lookup.get(key, []) if None not in key else []
            if rel.cardinality is Cardinality.MANY:
                rel.set(entity, list(matches))
            elif matches:
                rel.set(entity, matches[0])
            if matches:
                filled += 1

        logger.debug(
            "%s.%s: linked %d of %d entities to %s",
            self.model.__name__,
            rel.name,
            filled,
            len(self._entities),
            rel.target.__name__,
        )


class LoaderRegistry:
    """Shares one EntityLoader per model across the steps of a unit of work."""

    def __init__(self) -> None:
        self._loaders: dict[type[Base], EntityLoader] = {}

    def loader_for(self, descriptor: EntityDescriptor) -> EntityLoader:
        """Get the loader for a model, creating it on first use."""
        loader = self._loaders.get(descriptor.model)
        if loader is None:
            loader = EntityLoader(descriptor)
            self._loaders[descriptor.model] = loader
        return loader

    def __contains__(self, model: object) -> bool:
        return model in self._loaders

    def __iter__(self) -> Iterator[EntityLoader]:
        return iter(self._loaders.values())

    def __len__(self) -> int:
        return len(self._loaders)

    def entities_by_type(self) -> dict[type[Base], list[Base]]:
        return {model: loader.entities for model, loader in self._loaders.items()}

    def finalize(self) -> dict[type[Base], list[Base]]:
        """Resolve every loader's relationships against all loaded entities.

        Must run once, after every row of the unit of work has been processed.
        """
        entities = self.entities_by_type()
        for loader in self._loaders.values():
            loader.finalize(entities)
        return entities
