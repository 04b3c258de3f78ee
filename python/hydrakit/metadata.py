"""Entity descriptors: the static shape of a model used while hydrating.

A descriptor is built once per model class and cached on it. It lists the
scanned columns in projection order, each with an explicit accessor and
mutator, and the relationships with the key attributes on both sides.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from operator import attrgetter
from typing import Any

from hydrakit.base import Base, ModelMeta, _resolve_hints
from hydrakit.exceptions import ModelError
from hydrakit.fields import ColumnInfo
from hydrakit.relationships import Cardinality

logger = logging.getLogger(__name__)


def _setter(name: str) -> Callable[[Any, Any], None]:
    def set_value(entity: Any, value: Any) -> None:
        object.__setattr__(entity, name, value)

    return set_value


@dataclass(frozen=True)
class ScanField:
    """One scanned column of an entity."""

    name: str
    column: str
    column_info: ColumnInfo = field(repr=False)
    get: Callable[[Any], Any] = field(repr=False, compare=False)
    set: Callable[[Any, Any], None] = field(repr=False, compare=False)

    @property
    def primary_key(self) -> bool:
        return self.column_info.primary_key

    @property
    def python_type(self) -> type | None:
        return self.column_info.python_type

    def convert(self, value: Any) -> Any:
        return self.column_info.to_python(value)


@dataclass(frozen=True)
class RelationshipDescriptor:
    """A relationship filled in by matching key attributes across loaded entities."""

    name: str
    target: type[Base]
    cardinality: Cardinality
    local_keys: tuple[str, ...]
    remote_keys: tuple[str, ...]
    get: Callable[[Any], Any] = field(repr=False, compare=False)
    set: Callable[[Any, Any], None] = field(repr=False, compare=False)

    def local_key(self, entity: Any) -> tuple[Any, ...]:
        return tuple(getattr(entity, name) for name in self.local_keys)

    def remote_key(self, entity: Any) -> tuple[Any, ...]:
        return tuple(getattr(entity, name) for name in self.remote_keys)


@dataclass(frozen=True)
class EntityDescriptor:
    """Static metadata describing a model's scanned columns, key and relationships."""

    model: type[Base]
    fields: tuple[ScanField, ...]
    relationships: tuple[RelationshipDescriptor, ...]
    default_name: str

    @property
    def key_indexes(self) -> tuple[int, ...]:
        """Positions of the primary key fields within ``fields``."""
        return tuple(i for i, f in enumerate(self.fields) if f.primary_key)

    def new_entity(self) -> Base:
        return self.model._blank()

    def __repr__(self) -> str:
        return f"<EntityDescriptor {self.model.__name__}>"


def describe_entity(model_or_instance: Any) -> EntityDescriptor:
    """Return the descriptor for a model class or an example instance of one.

    Raises:
        ModelError: If the argument is not a model or the model can not be hydrated.
    """
    model = model_or_instance if isinstance(model_or_instance, type) else type(model_or_instance)
    if not isinstance(model, ModelMeta) or model is Base:
        raise ModelError(f"{model.__name__} is not a hydrakit model")

    cached = model.__dict__.get("__descriptor__")
    if cached is not None:
        return cached

    descriptor = _build_descriptor(model)
    model.__descriptor__ = descriptor  # type: ignore[attr-defined]
    logger.debug(
        "Described %s: %d fields, %d relationships",
        model.__name__,
        len(descriptor.fields),
        len(descriptor.relationships),
    )
    return descriptor


def default_name(descriptor: EntityDescriptor) -> str:
    """Name used to qualify a model's columns when no alias is given."""
    return descriptor.default_name


def _build_descriptor(model: type[Base]) -> EntityDescriptor:
    if not model.__primary_key__:
        raise ModelError(f"{model.__name__} has no primary key")

    fields = tuple(
        ScanField(
            name=col_name,
            column=col_info.sql_name,
            column_info=col_info,
            get=attrgetter(col_name),
            set=_setter(col_name),
        )
        for col_name, col_info in model.__columns__.items()
    )

    relationships: list[RelationshipDescriptor] = []
    if model.__relationships__:
        # Re-resolve hints now that all models may be defined
        hints = _resolve_hints(model)
        for rel_name, rel_info in model.__relationships__.items():
            # Raises ModelError when the target or keys can not be determined
            rel_info.resolve(model, rel_name, hints.get(rel_name))
            relationships.append(
                RelationshipDescriptor(
                    name=rel_name,
                    target=rel_info.target_model,
                    cardinality=rel_info.cardinality,
                    local_keys=tuple(rel_info.local_keys),
                    remote_keys=tuple(rel_info.remote_keys),
                    get=attrgetter(rel_name),
                    set=_setter(rel_name),
                )
            )

    return EntityDescriptor(
        model=model,
        fields=fields,
        relationships=tuple(relationships),
        default_name=model.__tablename__,
    )
