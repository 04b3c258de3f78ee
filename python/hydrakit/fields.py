"""Column and field definitions for hydrated models."""

from __future__ import annotations

import json
import uuid
from dataclasses import dataclass
from datetime import date, datetime, time
from decimal import Decimal, InvalidOperation
from typing import Any, Generic, TypeVar

T = TypeVar("T")

_TRUE_STRINGS = frozenset({"1", "t", "true", "y", "yes", "on"})
_FALSE_STRINGS = frozenset({"0", "f", "false", "n", "no", "off"})


class JSON:
    """Marker class for JSON column types.

    SQLite hands JSON back as TEXT, so JSON columns are decoded while scanning.
    PostgreSQL drivers usually decode json/jsonb themselves; decoded values pass
    through untouched.

    Example:
        >>> class Product(Base):
        ...     id: Mapped[int] = mapped_column(primary_key=True)
        ...     attributes: Mapped[dict] = mapped_column(JSON)
    """

    pass


class Mapped(Generic[T]):
    """Type annotation wrapper indicating a database-mapped attribute.

    Example:
        >>> class Author(Base):
        ...     author_id: Mapped[int] = mapped_column(primary_key=True)
        ...     name: Mapped[str]
        ...     nickname: Mapped[str | None] = mapped_column(nullable=True)
    """

    pass


@dataclass
class ForeignKey:
    """Declares that a column references a column of another table.

    Foreign keys are only used to infer relationship keys; nothing is
    enforced on the database side.

    Args:
        target: The referenced column in format "table.column"

    Example:
        >>> class Section(Base):
        ...     textbook_id: Mapped[int] = mapped_column(ForeignKey("textbooks.textbook_id"))
    """

    target: str

    @property
    def table(self) -> str:
        """Get the target table name."""
        return self.target.split(".")[0]

    @property
    def column(self) -> str | None:
        """Get the target column name, if one was given."""
        parts = self.target.split(".")
        return parts[1] if len(parts) > 1 else None


class ConversionError(ValueError):
    """A scanned value could not be converted to the declared column type."""


@dataclass
class ColumnInfo:
    """Stores metadata about a mapped column."""

    name: str | None = None
    column_name: str | None = None
    python_type: type | None = None
    primary_key: bool = False
    nullable: bool = False
    default: Any = None
    foreign_key: ForeignKey | None = None
    is_json: bool = False

    @property
    def sql_name(self) -> str:
        """Column name used in projections (falls back to the attribute name)."""
        return self.column_name or self.name or ""

    def default_value(self) -> Any:
        """Value an attribute holds before (or without) a scanned value."""
        if callable(self.default):
            return self.default()
        return self.default

    def to_python(self, value: Any) -> Any:
        """Convert a raw driver value to this column's declared type.

        NULL is always accepted, whatever the column's nullability, so an
        outer join that misses never fails the scan.

        Raises:
            ConversionError: If the value can not be represented as the declared type.
        """
        if value is None:
            return None
        if self.is_json:
            return _to_json(value)
        target = self.python_type
        if target is None or target is Any:
            return value
        converter = _CONVERTERS.get(target)
        if converter is not None:
            return converter(value)
        if isinstance(value, target):
            return value
        raise ConversionError(f"can not convert {type(value).__name__} to {target.__name__}")


def _to_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, int) and value in (0, 1):
        return bool(value)
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in _TRUE_STRINGS:
            return True
        if lowered in _FALSE_STRINGS:
            return False
    raise ConversionError(f"can not convert {value!r} to bool")


def _to_int(value: Any) -> int:
    # bool is an int subclass but never a valid integer column value
    if isinstance(value, bool):
        raise ConversionError(f"can not convert {value!r} to int")
    if isinstance(value, int):
        return value
    if isinstance(value, (float, Decimal)):
        if value != value or value in (float("inf"), float("-inf")) or int(value) != value:
            raise ConversionError(f"can not convert {value!r} to int without losing precision")
        return int(value)
    if isinstance(value, (str, bytes)):
        try:
            return int(value)
        except ValueError as exc:
            raise ConversionError(f"can not convert {value!r} to int") from exc
    raise ConversionError(f"can not convert {type(value).__name__} to int")


def _to_float(value: Any) -> float:
    if isinstance(value, bool):
        raise ConversionError(f"can not convert {value!r} to float")
    if isinstance(value, (int, float, Decimal)):
        return float(value)
    if isinstance(value, (str, bytes)):
        try:
            return float(value)
        except ValueError as exc:
            raise ConversionError(f"can not convert {value!r} to float") from exc
    raise ConversionError(f"can not convert {type(value).__name__} to float")


def _to_decimal(value: Any) -> Decimal:
    if isinstance(value, bool):
        raise ConversionError(f"can not convert {value!r} to Decimal")
    if isinstance(value, Decimal):
        return value
    if isinstance(value, (int, float, str)):
        try:
            return Decimal(str(value)) if isinstance(value, float) else Decimal(value)
        except InvalidOperation as exc:
            raise ConversionError(f"can not convert {value!r} to Decimal") from exc
    raise ConversionError(f"can not convert {type(value).__name__} to Decimal")


def _to_str(value: Any) -> str:
    if isinstance(value, str):
        return value
    if isinstance(value, (bytes, bytearray, memoryview)):
        try:
            return bytes(value).decode("utf-8")
        except UnicodeDecodeError as exc:
            raise ConversionError("can not decode bytes as UTF-8 text") from exc
    if isinstance(value, (int, float, Decimal, uuid.UUID)) and not isinstance(value, bool):
        return str(value)
    raise ConversionError(f"can not convert {type(value).__name__} to str")


def _to_bytes(value: Any) -> bytes:
    if isinstance(value, bytes):
        return value
    if isinstance(value, (bytearray, memoryview)):
        return bytes(value)
    if isinstance(value, str):
        return value.encode("utf-8")
    raise ConversionError(f"can not convert {type(value).__name__} to bytes")


def _to_datetime(value: Any) -> datetime:
    if isinstance(value, datetime):
        return value
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day)
    if isinstance(value, str):
        try:
            return datetime.fromisoformat(value)
        except ValueError as exc:
            raise ConversionError(f"can not parse {value!r} as datetime") from exc
    raise ConversionError(f"can not convert {type(value).__name__} to datetime")


def _to_date(value: Any) -> date:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, str):
        try:
            if len(value) > 10:
                return datetime.fromisoformat(value).date()
            return date.fromisoformat(value)
        except ValueError as exc:
            raise ConversionError(f"can not parse {value!r} as date") from exc
    raise ConversionError(f"can not convert {type(value).__name__} to date")


def _to_time(value: Any) -> time:
    if isinstance(value, time):
        return value
    if isinstance(value, str):
        try:
            return time.fromisoformat(value)
        except ValueError as exc:
            raise ConversionError(f"can not parse {value!r} as time") from exc
    raise ConversionError(f"can not convert {type(value).__name__} to time")


def _to_uuid(value: Any) -> uuid.UUID:
    if isinstance(value, uuid.UUID):
        return value
    try:
        if isinstance(value, str):
            return uuid.UUID(value)
        if isinstance(value, (bytes, bytearray, memoryview)):
            return uuid.UUID(bytes=bytes(value))
    except ValueError as exc:
        raise ConversionError(f"can not convert {value!r} to UUID") from exc
    raise ConversionError(f"can not convert {type(value).__name__} to UUID")


def _to_json(value: Any) -> Any:
    if isinstance(value, (bytes, bytearray, memoryview)):
        value = bytes(value).decode("utf-8")
    if isinstance(value, str):
        try:
            return json.loads(value)
        except json.JSONDecodeError as exc:
            raise ConversionError(f"can not decode {value!r} as JSON") from exc
    return value


_CONVERTERS: dict[type, Any] = {
    bool: _to_bool,
    int: _to_int,
    float: _to_float,
    Decimal: _to_decimal,
    str: _to_str,
    bytes: _to_bytes,
    datetime: _to_datetime,
    date: _to_date,
    time: _to_time,
    uuid.UUID: _to_uuid,
}


def mapped_column(
    type_or_fk: type | ForeignKey | None = None,
    /,
    *,
    primary_key: bool = False,
    nullable: bool = False,
    default: Any = None,
    name: str | None = None,
) -> Any:
    """Define a mapped column.

    Args:
        type_or_fk: Optional ForeignKey or JSON marker for this column
        primary_key: Whether this column is part of the primary key
        nullable: Whether NULL values are expected
        default: Value an entity holds when the column is NULL (can be callable)
        name: SQL column name, when it differs from the attribute name

    Returns:
        A ColumnInfo descriptor

    Example:
        >>> textbook_id: Mapped[int] = mapped_column(primary_key=True)
        >>> author_id: Mapped[int | None] = mapped_column(ForeignKey("authors.author_id"), nullable=True)
        >>> title: Mapped[str] = mapped_column(name="section_title")
        >>> attributes: Mapped[dict] = mapped_column(JSON)
    """
    foreign_key = None
    is_json = False

    if isinstance(type_or_fk, ForeignKey):
        foreign_key = type_or_fk
    elif type_or_fk is JSON or (isinstance(type_or_fk, type) and issubclass(type_or_fk, JSON)):
        is_json = True

    # Primary keys are never nullable
    if primary_key:
        nullable = False

    return ColumnInfo(
        column_name=name,
        primary_key=primary_key,
        nullable=nullable,
        default=default,
        foreign_key=foreign_key,
        is_json=is_json,
    )
