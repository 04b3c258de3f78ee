"""Configuration for connecting and running hydration queries."""

from __future__ import annotations

import configparser
import os
from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

_TRUE_VALUES = {"1", "true", "yes", "on"}
_FALSE_VALUES = {"0", "false", "no", "off", ""}


@dataclass
class HydrateConfig:
    """Connection and run settings.

    Can be read from an ini file section:

        [hydrakit]
        url = postgresql://localhost/library
        echo = true
        default_timeout = 5

    or from environment variables (``HYDRAKIT_URL``, ``HYDRAKIT_ECHO``,
    ``HYDRAKIT_DEFAULT_TIMEOUT``).
    """

    url: str | None = None
    """Database URL (sqlite::memory:, sqlite:///path.db, postgresql://...)."""

    echo: bool = False
    """Log every generated statement at INFO instead of DEBUG."""

    default_timeout: float | None = None
    """Seconds a run may take before it is cancelled; None waits forever."""

    extra: dict[str, Any] = field(default_factory=dict)
    """Additional options, passed through untouched."""

    @classmethod
    def from_mapping(cls, values: Mapping[str, Any]) -> HydrateConfig:
        """Build a config from string or native values.

        Raises:
            ValueError: If a value can not be parsed.
        """
        known = {"url", "echo", "default_timeout"}
        return cls(
            url=values.get("url") or None,
            echo=_parse_bool("echo", values.get("echo", False)),
            default_timeout=_parse_timeout(values.get("default_timeout")),
            extra={k: v for k, v in values.items() if k not in known},
        )

    @classmethod
    def from_ini(cls, path: Path | str, section: str = "hydrakit") -> HydrateConfig:
        """Load configuration from an ini file.

        Raises:
            FileNotFoundError: If config file doesn't exist
            ValueError: If the section is missing or a value can not be parsed
        """
        path = Path(path)
        if not path.exists():
            raise FileNotFoundError(f"Config file not found: {path}")

        parser = configparser.ConfigParser()
        parser.read(path)
        if section not in parser:
            raise ValueError(f"No [{section}] section in {path}")
        return cls.from_mapping(dict(parser[section]))

    @classmethod
    def from_env(cls, prefix: str = "HYDRAKIT_", environ: Mapping[str, str] | None = None) -> HydrateConfig:
        """Load configuration from environment variables starting with ``prefix``."""
        environ = os.environ if environ is None else environ
        values = {
            key[len(prefix):].lower(): value
            for key, value in environ.items()
            if key.startswith(prefix)
        }
        return cls.from_mapping(values)

    @classmethod
    def auto_detect(cls, start_path: Path | str | None = None, filename: str = "hydrakit.ini") -> HydrateConfig | None:
        """Find ``filename`` by searching up from start_path (default: cwd)."""
        current = Path.cwd() if start_path is None else Path(start_path)
        while True:
            candidate = current / filename
            if candidate.exists():
                return cls.from_ini(candidate)
            if current == current.parent:
                return None
            current = current.parent

    def get_url(self, override: str | None = None) -> str:
        """Get database URL with optional override.

        Raises:
            ValueError: If no URL available
        """
        url = override or self.url
        if not url:
            raise ValueError("No database URL configured")
        return url


def _parse_bool(name: str, value: Any) -> bool:
    if isinstance(value, bool):
        return value
    lowered = str(value).strip().lower()
    if lowered in _TRUE_VALUES:
        return True
    if lowered in _FALSE_VALUES:
        return False
    raise ValueError(f"Invalid boolean for {name}: {value!r}")


def _parse_timeout(value: Any) -> float | None:
    if value is None or (isinstance(value, str) and not value.strip()):
        return None
    try:
        timeout = float(value)
    except (TypeError, ValueError) as exc:
        raise ValueError(f"Invalid default_timeout: {value!r}") from exc
    if timeout <= 0:
        raise ValueError(f"default_timeout must be positive, got {value!r}")
    return timeout
