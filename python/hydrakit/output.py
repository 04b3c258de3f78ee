"""Output destinations filled with hydrated entities after a run."""

from __future__ import annotations

import logging
from collections.abc import MutableSequence, Sequence
from dataclasses import dataclass
from enum import Enum
from typing import Any, Generic, TypeVar

from hydrakit.base import Base
from hydrakit.exceptions import BindingError, ModelError
from hydrakit.metadata import describe_entity

logger = logging.getLogger(__name__)

T = TypeVar("T", bound=Base)


class OutputKind(Enum):
    """How a destination receives entities."""

    ONE = "one"  # first entity in arrival order
    MANY = "many"  # every entity in arrival order


class Output(Generic[T]):
    """A destination for the entities of one model.

    Use ``one``, ``many`` or ``collect`` to create outputs, pass them to
    ``run`` and read them afterwards.

    Example:
        >>> textbooks = many(Textbook)
        >>> author = one(Author)
        >>> await query.run(textbooks, author)
        >>> textbooks.value, author.value
        ([<Textbook textbook_id=1>, ...], <Author author_id=1>)
    """

    def __init__(self, model: type[T], kind: OutputKind, target: Any = None) -> None:
        self.model = model
        self.kind = kind
        self.value: Any = target if kind is OutputKind.MANY else None
        if kind is OutputKind.MANY and self.value is None:
            self.value = []

    def __repr__(self) -> str:
        return f"<Output {self.kind.value} {getattr(self.model, '__name__', self.model)!r}>"


def one(model: type[T]) -> Output[T]:
    """Destination receiving the first loaded entity of ``model`` (or staying None)."""
    return Output(model, OutputKind.ONE)


def many(model: type[T]) -> Output[T]:
    """Destination receiving a new list of every loaded entity of ``model``."""
    return Output(model, OutputKind.MANY, [])


def collect(model: type[T], into: MutableSequence[T]) -> Output[T]:
    """Destination appending every loaded entity of ``model`` to an existing list."""
    return Output(model, OutputKind.MANY, into)


@dataclass(frozen=True)
class OutputBinding:
    """An output whose model has been checked against the registered models."""

    output: Output[Any]
    model: type[Base]


def resolve_outputs(outputs: Sequence[Any]) -> list[OutputBinding]:
    """Validate every destination before any SQL runs.

    Raises:
        BindingError: If a destination can not receive entities.
    """
    bindings: list[OutputBinding] = []
    for position, output in enumerate(outputs):
        if not isinstance(output, Output):
            raise BindingError(
                f"output {position} ({type(output).__name__}) can not be set; "
                "use one(), many() or collect()"
            )
        try:
            descriptor = describe_entity(output.model)
        except ModelError as exc:
            raise BindingError(f"output {position}: {exc}") from exc
        if output.kind is OutputKind.MANY and not isinstance(output.value, MutableSequence):
            raise BindingError(
                f"output {position}: {type(output.value).__name__} can not be appended to"
            )
        bindings.append(OutputBinding(output, descriptor.model))
    return bindings


def bind_outputs(bindings: Sequence[OutputBinding], entities_by_type: dict[type[Base], list[Base]]) -> None:
    """Assign finalized entities to their destinations.

    Destinations for models that were not loaded are left untouched.
    """
    for binding in bindings:
        entities = entities_by_type.get(binding.model)
        if entities is None:
            logger.debug("No %s loaded, output left untouched", binding.model.__name__)
            continue
        output = binding.output
        if output.kind is OutputKind.MANY:
            output.value.extend(entities)
        elif entities:
            output.value = entities[0]
