"""
Global defaults and their validation.

The coordinator owns one GlobalDefaults instance. Workers only ever see
plain-dict snapshots of it (``model_dump()``) delivered with lookups and
rebuild notices.

Usage:
    defaults = GlobalDefaults.from_yaml("timberline.yaml")
    coordinator = Coordinator(defaults=defaults)
"""

from __future__ import annotations

import os
import re
import sys
from dataclasses import asdict, dataclass, fields
from pathlib import Path
from typing import Any, Literal, Union

import yaml
from pydantic import BaseModel, ConfigDict, ValidationError, field_validator

from timberline.constants import ENV_CONFIG, ENV_LOGGERS
from timberline.errors import ConfigurationError
from timberline.levels import DEFAULT_LEVELS

COORDINATOR_COLLECTOR = "coordinator"
WORKER_COLLECTOR = "worker"

# Options that can only be set globally; stripped from per-logger options.
GLOBAL_ONLY_OPTIONS = (
    "collector",
    "dark_theme",
    "ignore",
    "mute_inspector",
    "prettify",
    "separator",
    "hook_console",
    "timestamp",
    "transports",
)


def is_development() -> bool:
    """Running from source rather than from a frozen (packaged) build."""
    return not getattr(sys, "frozen", False)


def _default_log_level() -> int:
    level = "info" if is_development() else "warn"
    return DEFAULT_LEVELS[level]["priority"]


def read_logger_filter(environ: dict | None = None) -> frozenset[str] | None:
    """Allow-list of logger names from TIMBERLINE_LOGGERS, or None when unset."""
    environ = os.environ if environ is None else environ
    raw = environ.get(ENV_LOGGERS)
    if not raw:
        return None
    return frozenset(name.strip() for name in raw.split(",") if name.strip())


# Read once at process start.
LOGGER_FILTER = read_logger_filter()


class GlobalDefaults(BaseModel):
    """Process-wide logging defaults, owned by the coordinator."""
    model_config = ConfigDict(extra="forbid", validate_assignment=True)

    collector: Union[bool, int, str] = COORDINATOR_COLLECTOR
    dark_theme: bool = False
    ignore: list[str] = []
    log_level: int = _default_log_level()
    mute_inspector: Union[bool, int] = False
    prettify: Literal["all", "context", "none"] = "context"
    separator: str = "›"
    hook_console: bool = False
    timestamp: Union[Literal[False], Literal["iso", "time"]] = False
    transports: list[Union[str, dict[str, Any]]] = ["console"]

    @field_validator("collector", mode="before")
    @classmethod
    def _check_collector(cls, v: Any) -> Any:
        if v is False or v in (COORDINATOR_COLLECTOR, WORKER_COLLECTOR):
            return v
        if isinstance(v, str) and v.isdigit():
            v = int(v)
        if isinstance(v, int) and not isinstance(v, bool) and v > 0:
            return v
        raise ValueError(f"collector must be False, 'coordinator', 'worker' or a worker id, got {v!r}")

    @field_validator("log_level", mode="before")
    @classmethod
    def _check_log_level(cls, v: Any) -> Any:
        if isinstance(v, str) and v in DEFAULT_LEVELS:
            return DEFAULT_LEVELS[v]["priority"]
        if isinstance(v, str) and v == "log":
            return DEFAULT_LEVELS["info"]["priority"]
        if isinstance(v, bool) or not isinstance(v, int) or v < 0:
            raise ValueError(f"log_level must be a level name or a non-negative priority, got {v!r}")
        return v

    @field_validator("mute_inspector", mode="before")
    @classmethod
    def _check_mute(cls, v: Any) -> Any:
        if isinstance(v, bool):
            return v
        if isinstance(v, str) and v.isdigit():
            v = int(v)
        if isinstance(v, int) and v >= 0:
            return v
        raise ValueError(f"mute_inspector must be a bool or a non-negative priority, got {v!r}")

    @field_validator("ignore")
    @classmethod
    def _check_patterns(cls, v: list[str]) -> list[str]:
        for pattern in v:
            try:
                re.compile(pattern)
            except re.error as exc:
                raise ValueError(f"invalid ignore pattern {pattern!r}: {exc}") from exc
        return v

    @field_validator("transports")
    @classmethod
    def _check_transports(cls, v: list) -> list:
        from timberline.transports import TRANSPORTS

        for transport in v:
            kind = transport.get("type") if isinstance(transport, dict) else transport
            if kind not in TRANSPORTS:
                raise ValueError(
                    f"unknown transport {kind!r}, valid: {', '.join(sorted(TRANSPORTS))}"
                )
        return v

    # ── Loading ───────────────────────────────────────────────────

    @classmethod
    def from_dict(cls, data: dict | None) -> "GlobalDefaults":
        try:
            return cls.model_validate(data or {})
        except ValidationError as exc:
            raise ConfigurationError(str(exc)) from exc

    @classmethod
    def from_yaml(cls, path: str | Path) -> "GlobalDefaults":
        """Load and validate from a YAML file."""
        raw = Path(path).read_text(encoding="utf-8")
        return cls.from_yaml_string(raw)

    @classmethod
    def from_yaml_string(cls, yaml_string: str) -> "GlobalDefaults":
        return cls.from_dict(yaml.safe_load(yaml_string))

    @classmethod
    def from_env(cls) -> "GlobalDefaults":
        """Defaults from the file named by TIMBERLINE_CONFIG, else built-in ones."""
        path = os.environ.get(ENV_CONFIG)
        return cls.from_yaml(path) if path else cls()

    def merged(self, changes: dict) -> "GlobalDefaults":
        """Validated copy with ``changes`` applied; self is left untouched."""
        return type(self).from_dict({**self.model_dump(), **changes})


@dataclass(frozen=True)
class RebuildFlags:
    """Categories of cached presentation state that a change made stale."""
    contexts: bool = False
    colors: bool = False
    level_helpers: bool = False
    hooks: bool = False
    transports: bool = False
    collector: bool = False

    def any(self) -> bool:
        return any(getattr(self, f.name) for f in fields(self))

    def to_dict(self) -> dict[str, bool]:
        return asdict(self)


def diff_defaults(current: GlobalDefaults, new: GlobalDefaults, given: dict) -> RebuildFlags:
    """Which categories must be rebuilt going from ``current`` to ``new``."""
    def changed(option: str) -> bool:
        return option in given and getattr(current, option) != getattr(new, option)

    return RebuildFlags(
        contexts=changed("timestamp") or changed("separator") or changed("dark_theme"),
        colors=changed("dark_theme"),
        level_helpers=changed("log_level") or changed("prettify") or changed("ignore"),
        hooks="hook_console" in given or changed("mute_inspector"),
        transports="transports" in given,
        collector=changed("collector"),
    )
