"""Declarative base for hydrated models."""

from __future__ import annotations

import inspect
import sys
import typing
from typing import Any, ClassVar

from hydrakit.fields import JSON, ColumnInfo, ForeignKey, Mapped
from hydrakit.relationships import RelationshipInfo, _is_list_type, _model_registry, register_model


class ModelMeta(type):
    """Metaclass for models that collects column and relationship definitions."""

    def __new__(
        mcs,
        name: str,
        bases: tuple[type, ...],
        namespace: dict[str, Any],
        **kwargs: Any,
    ) -> ModelMeta:
        cls = super().__new__(mcs, name, bases, namespace, **kwargs)

        # Skip processing for the Base class itself
        if name == "Base" and not bases:
            return cls

        # Get table name
        tablename = namespace.get("__tablename__")
        if tablename is None:
            # Generate table name from class name
            tablename = name.lower() + "s"
        cls.__tablename__ = tablename  # type: ignore[attr-defined]

        hints = _resolve_hints(cls)
        columns: dict[str, ColumnInfo] = {}
        relationships: dict[str, RelationshipInfo] = {}

        # Columns and relationships inherited from parent models come first
        for base in reversed(cls.__mro__[1:]):
            for col_name, col_info in base.__dict__.get("__columns__", {}).items():
                columns[col_name] = _clone_column(col_info)
            for rel_name, rel_info in base.__dict__.get("__relationships__", {}).items():
                relationships[rel_name] = RelationshipInfo(
                    name=rel_name,
                    local_keys=rel_info.local_keys,
                    remote_keys=rel_info.remote_keys,
                    uselist=rel_info.uselist,
                    _target_model=rel_info._target_model,
                    _target_name=rel_info._target_name,
                )

        # Own attributes in annotation order, then unannotated mapped_column() values
        own_names = list(_own_annotations(cls))
        own_names += [n for n in namespace if n not in own_names]

        for attr_name in own_names:
            if attr_name.startswith("_"):
                continue
            attr_value = namespace.get(attr_name)
            hint = hints.get(attr_name)

            if isinstance(attr_value, RelationshipInfo):
                attr_value.name = attr_name
                if attr_value.uselist is None:
                    attr_value.uselist = _is_list_type(hint)
                relationships[attr_name] = attr_value
                # Relationship values live on instances only
                delattr(cls, attr_name)
            elif isinstance(attr_value, ColumnInfo):
                attr_value.name = attr_name
                python_type, optional = _extract_mapped_type(hint)
                attr_value.python_type = python_type
                if optional:
                    attr_value.nullable = attr_value.nullable or not attr_value.primary_key
                # Auto-detect JSON columns from dict/list type hints
                if python_type is dict or python_type is list:
                    attr_value.is_json = True
                columns[attr_name] = attr_value
                delattr(cls, attr_name)
            elif attr_value is None and _is_mapped_hint(hint):
                # Bare ``Mapped[T]`` annotation: a plain column
                python_type, optional = _extract_mapped_type(hint)
                columns[attr_name] = ColumnInfo(
                    name=attr_name,
                    python_type=python_type,
                    nullable=optional,
                    is_json=(python_type is dict or python_type is list),
                )

        cls.__columns__ = columns  # type: ignore[attr-defined]
        cls.__relationships__ = relationships  # type: ignore[attr-defined]
        cls.__hints__ = hints  # type: ignore[attr-defined]
        cls.__primary_key__ = tuple(  # type: ignore[attr-defined]
            col_name for col_name, col_info in columns.items() if col_info.primary_key
        )

        # Register model for relationship resolution
        register_model(cls)  # type: ignore[arg-type]

        return cls


def _clone_column(col: ColumnInfo) -> ColumnInfo:
    """Copy a ColumnInfo so subclasses never share metadata with their parent."""
    return ColumnInfo(
        name=col.name,
        column_name=col.column_name,
        python_type=col.python_type,
        primary_key=col.primary_key,
        nullable=col.nullable,
        default=col.default,
        foreign_key=col.foreign_key,
        is_json=col.is_json,
    )


def _own_annotations(cls: type) -> dict[str, Any]:
    try:
        return dict(inspect.get_annotations(cls))
    except NameError:
        # Unresolvable forward references on interpreters with lazy annotations
        if hasattr(inspect, "Format"):
            return dict(inspect.get_annotations(cls, format=inspect.Format.STRING))
        return dict(cls.__dict__.get("__annotations__", {}))


_UNRESOLVED = (NameError, AttributeError, SyntaxError, TypeError)


def _resolve_hints(cls: type) -> dict[str, Any]:
    """Resolve the class annotations with ``typing.get_type_hints``.

    When a forward reference names a model that is not defined yet, the
    annotations are resolved one by one instead so the other hints survive:
    the unresolved annotation is kept as a string and resolved when the model
    is described.
    """
    module = sys.modules.get(cls.__module__, None)
    globalns = dict(getattr(module, "__dict__", {})) if module else {}
    # Add required typing constructs
    globalns.setdefault("ClassVar", ClassVar)
    globalns.setdefault("Any", Any)
    globalns.setdefault("Mapped", Mapped)
    globalns.setdefault("ForeignKey", ForeignKey)
    globalns.setdefault("JSON", JSON)
    globalns.setdefault("ColumnInfo", ColumnInfo)
    globalns.setdefault("RelationshipInfo", RelationshipInfo)
    # Models registered so far can be referenced by name
    for model_name, model_cls in list(_model_registry.items()):
        globalns.setdefault(model_name, model_cls)

    try:
        return typing.get_type_hints(cls, globalns=globalns, localns={})
    except _UNRESOLVED:
        pass

    hints: dict[str, Any] = {}
    for klass in reversed(cls.__mro__):
        if klass is object:
            continue
        for attr_name, annotation in _own_annotations(klass).items():
            hints[attr_name] = _resolve_annotation(annotation, globalns)
    return hints


def _resolve_annotation(annotation: Any, globalns: dict[str, Any]) -> Any:
    """Resolve a single string annotation, keeping the string when it can not be resolved yet."""
    if not isinstance(annotation, str):
        return annotation
    holder = type("_Annotation", (), {"__annotations__": {"hint": annotation}})
    try:
        return typing.get_type_hints(holder, globalns=globalns, localns={})["hint"]
    except _UNRESOLVED:
        return annotation


def _is_mapped_hint(hint: Any) -> bool:
    if isinstance(hint, str):
        return hint.strip().startswith("Mapped[")
    return typing.get_origin(hint) is Mapped


def _extract_mapped_type(hint: Any) -> tuple[type | None, bool]:
    """Extract the inner type from a ``Mapped[T]`` annotation.

    Returns:
        The Python type (None when it can not be determined) and whether the
        annotation was optional (``T | None``).
    """
    if hint is None or isinstance(hint, str):
        return None, isinstance(hint, str) and "None" in hint
    if typing.get_origin(hint) is Mapped:
        args = typing.get_args(hint)
        hint = args[0] if args else None

    optional = False
    origin = typing.get_origin(hint)
    if origin is typing.Union or (origin is not None and type(None) in typing.get_args(hint)):
        args = typing.get_args(hint)
        optional = type(None) in args
        non_none = [a for a in args if a is not type(None)]
        hint = non_none[0] if len(non_none) == 1 else None

    origin = typing.get_origin(hint)
    if origin is not None:
        # list[str], dict[str, Any] and friends map to their container type
        return (origin if isinstance(origin, type) else None), optional
    return (hint if isinstance(hint, type) else None), optional


class Base(metaclass=ModelMeta):
    """Base class for all hydrated models.

    Example:
        >>> class Textbook(Base):
        ...     __tablename__ = "textbooks"
        ...     textbook_id: Mapped[int] = mapped_column(primary_key=True)
        ...     name: Mapped[str]
        ...     sections: Mapped[list["Section"]] = relationship()
    """

    __tablename__: ClassVar[str]
    __columns__: ClassVar[dict[str, ColumnInfo]]
    __relationships__: ClassVar[dict[str, RelationshipInfo]]
    __primary_key__: ClassVar[tuple[str, ...]]
    __hints__: ClassVar[dict[str, Any]]

    def __init__(self, **kwargs: Any) -> None:
        """Initialize a model instance with the given column and relationship values."""
        for key in kwargs:
            if key not in self.__columns__ and key not in self.__relationships__:
                raise TypeError(f"Unknown column or relationship: {key}")
        self._set_defaults()
        for key, value in kwargs.items():
            setattr(self, key, value)

    def _set_defaults(self) -> None:
        for col_name, col_info in self.__columns__.items():
            object.__setattr__(self, col_name, col_info.default_value())
        for rel_name, rel_info in self.__relationships__.items():
            object.__setattr__(self, rel_name, [] if rel_info.uselist else None)

    @classmethod
    def _blank(cls) -> Base:
        """Create an instance holding only defaults, bypassing ``__init__``.

        Used by loaders, which assign scanned values through the descriptor.
        """
        instance = object.__new__(cls)
        instance._set_defaults()
        return instance

    def __repr__(self) -> str:
        pk = self.__primary_key__
        if pk:
            key = ", ".join(f"{name}={getattr(self, name, None)!r}" for name in pk)
            return f"<{self.__class__.__name__} {key}>"
        return f"<{self.__class__.__name__}>"

    def to_dict(self, include_relationships: bool = False) -> dict[str, Any]:
        """Convert model instance to a dictionary.

        Related entities are rendered recursively; an entity already being
        rendered higher up in the graph is rendered without its relationships.
        """
        return self._to_dict(include_relationships, set())

    def _to_dict(self, include_relationships: bool, seen: set[int]) -> dict[str, Any]:
        result = {col_name: getattr(self, col_name, None) for col_name in self.__columns__}
        if not include_relationships or id(self) in seen:
            return result

        seen = seen | {id(self)}
        for rel_name in self.__relationships__:
            rel_value = getattr(self, rel_name, None)
            if isinstance(rel_value, list):
                result[rel_name] = [item._to_dict(True, seen) for item in rel_value]
            elif rel_value is not None:
                result[rel_name] = rel_value._to_dict(True, seen)
            else:
                result[rel_name] = None
        return result

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Base:
        """Create a model instance from a dictionary, ignoring unknown keys."""
        return cls(**{k: v for k, v in data.items() if k in cls.__columns__})
