"""Relationship definitions for hydrated models."""

from __future__ import annotations

import typing
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any

from hydrakit.exceptions import ModelError
from hydrakit.fields import Mapped

if TYPE_CHECKING:
    from hydrakit.base import Base


# Global model registry - maps table names and class names to model classes
_model_registry: dict[str, type[Base]] = {}


def register_model(model_cls: type[Base]) -> None:
    """Register a model class for relationship resolution."""
    _model_registry[model_cls.__tablename__] = model_cls
    _model_registry[model_cls.__name__] = model_cls


def get_model(name: str) -> type[Base] | None:
    """Get a model class by table name or class name."""
    return _model_registry.get(name)


class Cardinality(Enum):
    """How many target entities a relationship holds."""

    ONE = "one"
    MANY = "many"


@dataclass
class RelationshipInfo:
    """Stores metadata about a relationship between models.

    ``local_keys`` name attributes on the owning model and ``remote_keys``
    the attributes on the target model; an owner is linked to every target
    whose remote key values equal its local key values, position by position.
    """

    name: str | None = None
    local_keys: list[str] | None = None
    remote_keys: list[str] | None = None
    uselist: bool | None = None  # True for collections, False for a single object

    # Resolved when the owning model is first described
    _target_model: type[Base] | None = field(default=None, repr=False)
    _target_name: str | None = field(default=None, repr=False)

    @property
    def cardinality(self) -> Cardinality:
        return Cardinality.MANY if self.uselist else Cardinality.ONE

    @property
    def target_model(self) -> type[Base] | None:
        return self._target_model

    def resolve(self, owner_model: type[Base], attr_name: str, type_hint: Any) -> None:
        """Resolve the relationship target model and key columns.

        Raises:
            ModelError: If the target model or the keys can not be determined.
        """
        self.name = attr_name

        if self._target_model is None:
            target_name = self._target_name or _extract_target_from_hint(type_hint)
            if target_name is None:
                raise ModelError(
                    f"{owner_model.__name__}.{attr_name}: can not determine relationship target"
                )
            self._target_name = target_name
            target = get_model(target_name)
            if target is None:
                raise ModelError(
                    f"{owner_model.__name__}.{attr_name}: unknown model {target_name!r}"
                )
            self._target_model = target

        # Determine if this is a collection or single relationship
        if self.uselist is None:
            self.uselist = _is_list_type(type_hint)

        if self.local_keys is None or self.remote_keys is None:
            self._resolve_foreign_key(owner_model)

        if not self.local_keys or not self.remote_keys:
            raise ModelError(
                f"{owner_model.__name__}.{attr_name}: no foreign key links "
                f"{owner_model.__name__} and {self._target_model.__name__}; "
                "pass local_keys and remote_keys"
            )
        if len(self.local_keys) != len(self.remote_keys):
            raise ModelError(
                f"{owner_model.__name__}.{attr_name}: local_keys and remote_keys "
                "must have the same length"
            )
        _check_columns(owner_model, attr_name, self.local_keys)
        _check_columns(self._target_model, attr_name, self.remote_keys)

    def _resolve_foreign_key(self, owner_model: type[Base]) -> None:
        """Find the foreign key column linking the models."""
        target = self._target_model
        if target is None:
            return

        if self.uselist:
            # One-to-many: FK is on the target model referencing owner
            # e.g., Textbook.sections -> Section.textbook_id references textbooks.textbook_id
            for col_name, col_info in target.__columns__.items():
                fk = col_info.foreign_key
                if fk and fk.table == owner_model.__tablename__:
                    local = _attr_for_column(owner_model, fk.column)
                    if local is None:
                        continue
                    self.local_keys = [local]
                    self.remote_keys = [col_name]
                    return
        else:
            # Many-to-one: FK is on owner model referencing target
            # e.g., Textbook.author -> Textbook.author_id references authors.author_id
            for col_name, col_info in owner_model.__columns__.items():
                fk = col_info.foreign_key
                if fk and fk.table == target.__tablename__:
                    remote = _attr_for_column(target, fk.column)
                    if remote is None:
                        continue
                    self.local_keys = [col_name]
                    self.remote_keys = [remote]
                    return


def _attr_for_column(model: type[Base], column: str | None) -> str | None:
    """Map a referenced SQL column to the attribute holding it (primary key if unnamed)."""
    if column is None:
        pk = model.__primary_key__
        return pk[0] if len(pk) == 1 else None
    for attr_name, col_info in model.__columns__.items():
        if col_info.sql_name == column:
            return attr_name
    return None


def _check_columns(model: type[Base], attr_name: str, keys: list[str]) -> None:
    missing = [k for k in keys if k not in model.__columns__]
    if missing:
        raise ModelError(
            f"relationship {attr_name!r}: {model.__name__} has no column(s) {', '.join(missing)}"
        )


def _unquote(text: str) -> str:
    text = text.strip()
    if len(text) >= 2 and text[0] == text[-1] and text[0] in "'\"":
        return text[1:-1].strip()
    return text


def _unwrap_mapped(hint: Any) -> Any:
    """Return ``T`` for ``Mapped[T]``, including unevaluated string annotations."""
    if isinstance(hint, str):
        hint = _unquote(hint)
        if hint.startswith("Mapped[") and hint.endswith("]"):
            return _unquote(hint[len("Mapped["):-1])
        return hint
    if typing.get_origin(hint) is Mapped:
        args = typing.get_args(hint)
        return args[0] if args else None
    return hint


def _strip_optional(hint: Any) -> Any:
    """Drop ``None`` from ``X | None`` and from string forms like ``"X | None"``."""
    if isinstance(hint, str):
        parts = [_unquote(p) for p in hint.split("|") if p.strip() not in ("None", "")]
        return parts[0] if len(parts) == 1 else hint
    if hasattr(hint, "__forward_arg__"):
        return _strip_optional(hint.__forward_arg__)
    args = typing.get_args(hint)
    if args and type(None) in args:
        non_none = [a for a in args if a is not type(None)]
        if len(non_none) == 1:
            return _strip_optional(non_none[0])
    return hint


def _extract_target_from_hint(hint: Any) -> str | None:
    """Extract target model name from type hint.

    Handles ``Mapped[list["Section"]]``, ``Mapped["Author | None"]`` and
    ``Mapped[Author]``.
    """
    inner = _strip_optional(_unwrap_mapped(hint))
    if inner is None:
        return None

    if isinstance(inner, str):
        inner = inner.strip()
        if inner.startswith("list[") and inner.endswith("]"):
            inner = _strip_optional(inner[5:-1].strip().strip("'\""))
        return inner if isinstance(inner, str) else None

    # Handle list[T]
    if typing.get_origin(inner) is list:
        inner_args = typing.get_args(inner)
        if not inner_args:
            return None
        inner = _strip_optional(inner_args[0])

    if isinstance(inner, str):
        return inner
    if isinstance(inner, type):
        return inner.__name__
    if hasattr(inner, "__forward_arg__"):
        return inner.__forward_arg__
    return None


def _is_list_type(hint: Any) -> bool:
    """Check if the type hint indicates a collection."""
    inner = _strip_optional(_unwrap_mapped(hint))
    if isinstance(inner, str):
        return inner.strip().startswith("list[")
    return typing.get_origin(inner) is list


def relationship(
    target: str | type[Base] | None = None,
    /,
    *,
    local_keys: list[str] | None = None,
    remote_keys: list[str] | None = None,
    uselist: bool | None = None,
) -> Any:
    """Define a relationship filled in from entities loaded by the same unit of work.

    Args:
        target: Target model (class or name); taken from the annotation when omitted
        local_keys: Attributes on this model that identify the related rows
        remote_keys: Matching attributes on the target model
        uselist: Whether to hold a list (True) or a single object (False)

    Keys are inferred from ``ForeignKey`` declarations when omitted.

    Returns:
        A RelationshipInfo descriptor

    Example:
        >>> class Textbook(Base):
        ...     sections: Mapped[list["Section"]] = relationship()
        ...     author: Mapped["Author | None"] = relationship(
        ...         local_keys=["author_id"], remote_keys=["author_id"]
        ...     )
    """
    info = RelationshipInfo(
        local_keys=list(local_keys) if local_keys is not None else None,
        remote_keys=list(remote_keys) if remote_keys is not None else None,
        uselist=uselist,
    )
    if isinstance(target, str):
        info._target_name = target
    elif target is not None:
        info._target_model = target
    return info
