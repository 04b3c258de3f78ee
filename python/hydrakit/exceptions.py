"""Exceptions raised by hydrakit."""

from __future__ import annotations


class HydrateError(Exception):
    """Base class for all hydrakit errors."""


class ModelError(HydrateError):
    """A model or relationship declaration can not be used for hydration."""


class BindingError(HydrateError):
    """An output destination can not receive results.

    Raised before any SQL is executed.
    """


class QueryError(HydrateError):
    """A query fragment is malformed (for example it does not start with FROM)."""


class ExecutionError(HydrateError):
    """The database failed to execute a statement."""

    def __init__(self, message: str, sql: str | None = None) -> None:
        super().__init__(message)
        self.sql = sql


class ScanError(HydrateError):
    """A row could not be scanned into the loaded models."""

    def __init__(
        self,
        message: str,
        model: type | None = None,
        field: str | None = None,
        value: object = None,
    ) -> None:
        super().__init__(message)
        self.model = model
        self.field = field
        self.value = value
