"""
Level tables.

A level table maps a level name to its priority and display color. Lower
priority means more severe; a record is emitted only when its priority is
less than or equal to the logger's threshold. The ``info`` level is also
reachable as ``log``.
"""

from __future__ import annotations

from typing import Any, Mapping

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from timberline.errors import ConfigurationError

LOG_ALIAS = "log"
INFO = "info"

DEFAULT_LEVELS: dict[str, dict[str, Any]] = {
    "error": {"priority": 0, "color": "#FF0000"},
    "warn": {"priority": 1, "color": "#FFFF00"},
    "info": {"priority": 2, "color": "#0000FF"},
    "verbose": {"priority": 3, "color": "#FF00FF"},
    "debug": {"priority": 4, "color": "#008000"},
    "silly": {"priority": 5, "color": "#808080"},
}


class LevelSpec(BaseModel):
    """One row of a level table."""
    model_config = ConfigDict(extra="forbid", frozen=True)

    priority: int = Field(ge=0)
    color: str = Field(pattern=r"^#[0-9a-fA-F]{6}$")


def validate_levels(levels: Any) -> dict[str, LevelSpec]:
    """
    Validate a level table and return it as LevelSpec rows.

    Raises ConfigurationError when the table is empty, a row is malformed
    (negative or non-integer priority, color not ``#RRGGBB``) or two levels
    share a priority.
    """
    if not isinstance(levels, Mapping) or not levels:
        raise ConfigurationError(f"Invalid level table: {levels!r}")

    table: dict[str, LevelSpec] = {}
    seen: dict[int, str] = {}
    for name, row in levels.items():
        if not isinstance(name, str) or not name or name == LOG_ALIAS:
            raise ConfigurationError(f"Invalid level name: {name!r}")
        if isinstance(row, LevelSpec):
            spec = row
        else:
            try:
                spec = LevelSpec.model_validate(row)
            except ValidationError as exc:
                raise ConfigurationError(
                    f"Invalid definition for log level '{name}': {row!r}"
                ) from exc
        if spec.priority in seen:
            raise ConfigurationError(
                f"Levels '{seen[spec.priority]}' and '{name}' share priority {spec.priority}"
            )
        seen[spec.priority] = name
        table[name] = spec
    return table


def priority_table(levels: Mapping[str, LevelSpec]) -> dict[str, int]:
    """Level name → priority, including the ``log`` alias for ``info``."""
    priority = {name: spec.priority for name, spec in levels.items()}
    if INFO in priority:
        priority[LOG_ALIAS] = priority[INFO]
    return priority


def level_names(levels: Mapping[str, LevelSpec]) -> dict[int, str]:
    """Priority → level name. Falls back to nothing for unknown priorities."""
    return {spec.priority: name for name, spec in levels.items()}


def dump_levels(levels: Mapping[str, LevelSpec]) -> dict[str, dict[str, Any]]:
    """Plain dict form, safe to send to another process."""
    return {name: spec.model_dump() for name, spec in levels.items()}


def resolve_level(priority: Mapping[str, int], value: int | str) -> int:
    """Convert a level name, or a known priority, to a priority."""
    if isinstance(value, bool):
        raise ConfigurationError(f"Unknown log level {value!r}")
    if isinstance(value, str):
        try:
            return priority[value]
        except KeyError:
            raise ConfigurationError(
                f"Unknown log level '{value}'. "
                f"Valid levels: {', '.join(priority)}"
            ) from None
    if isinstance(value, int):
        if value in priority.values():
            return value
        raise ConfigurationError(f"No log level with priority {value}")
    raise ConfigurationError(
        f"Expected int or str for log level, got {type(value).__name__}"
    )
