"""
Logger instances.

A logger is a named, per-process object. Everything it prints is computed
once and cached on the instance: effective options, level priorities, a
contrast-checked color table, the padded context prefix and one handler per
level. Rebuild notices recompute only the parts they name.

The side-specific parts (settings lookup, registration, set_defaults,
set_levels broadcasting, console hooking) live in CoordinatorLogger and
WorkerLogger.

Usage:
    log = coordinator.create(name="db", log_level="debug")
    log.info("connected", {"host": "localhost"})
    log.time("query")
    log.time_end("query")          # db [coordinator] › query: 1.234ms
    log.stream_error(proc.stderr)  # one record per line
"""

from __future__ import annotations

import re
import threading
import time as _time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import IO, TYPE_CHECKING, Any, Callable, Mapping

from timberline.colors import ensure_contrast, seed_color
from timberline.config import GLOBAL_ONLY_OPTIONS, RebuildFlags
from timberline.constants import (
    BLANK,
    DEFAULT_LOGGER,
    DEFAULT_TIMER_LABEL,
    PAD_WORKER_ID_DIGITS,
    SIDE_COLUMN_WIDTH,
    TIMER_LEVEL,
    IdentityState,
    Side,
)
from timberline.discovery import get_project_name
from timberline.errors import ConfigurationError
from timberline.formatters import Context, build_context, join_message, render_plain, render_pretty
from timberline.levels import (
    DEFAULT_LEVELS,
    INFO,
    LOG_ALIAS,
    LevelSpec,
    dump_levels,
    level_names,
    priority_table,
    resolve_level,
    validate_levels,
)
from timberline.records import LogRecord
from timberline.registry import SharedSettings
from timberline.streams import follow
from timberline.transports import Transport, build_transport

if TYPE_CHECKING:
    from timberline.coordinator import Coordinator
    from timberline.worker import WorkerRuntime


def _noop(*args: Any, **kwargs: Any) -> None:
    return None


# ═══════════════════════════════════════════════════════════════════
#  Level handlers
# ═══════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class LevelHandlers:
    """Callables bound for one logger: per level, per level stream, timers."""
    helpers: dict[str, Callable[..., None]]
    streams: dict[str, Callable[[IO], threading.Thread | None]]
    time: Callable[..., None]
    time_end: Callable[..., None]


def build_level_handlers(
    priority: Mapping[str, int],
    threshold: int,
    ignore: list[re.Pattern],
    enabled: bool,
    report: Callable[[int, tuple], None],
    timers: dict[str, float],
    name: str = DEFAULT_LOGGER,
) -> LevelHandlers:
    """
    Bind one handler per level.

    Disabled loggers and levels above ``threshold`` get a no-op, decided
    here once rather than on every call. The ``ignore`` check is only
    compiled into the handlers when there are patterns.
    """
    def should_log(args: tuple) -> bool:
        message = join_message(args)
        return not any(p.search(message) for p in ignore)

    def make_helper(level_priority: int) -> Callable[..., None]:
        if ignore:
            def helper(*args: Any) -> None:
                if should_log(args):
                    report(level_priority, args)
        else:
            def helper(*args: Any) -> None:
                report(level_priority, args)
        return helper

    def make_stream(level_priority: int, level: str) -> Callable[[IO], threading.Thread]:
        def on_line(line: str) -> None:
            if should_log((line,)):
                report(level_priority, (line,))

        def stream_helper(stream: IO) -> threading.Thread:
            return follow(stream, on_line, name=f"timberline-{name}-{level}")
        return stream_helper

    helpers: dict[str, Callable[..., None]] = {}
    streams: dict[str, Callable[[IO], threading.Thread | None]] = {}
    for level, level_priority in priority.items():
        if level == LOG_ALIAS:
            continue
        if not enabled or level_priority > threshold:
            helpers[level], streams[level] = _noop, _noop
        else:
            helpers[level] = make_helper(level_priority)
            streams[level] = make_stream(level_priority, level)
        if level == INFO:
            helpers[LOG_ALIAS], streams[LOG_ALIAS] = helpers[level], streams[level]

    timer_priority = priority.get(TIMER_LEVEL)
    if not enabled or timer_priority is None or timer_priority > threshold:
        return LevelHandlers(helpers, streams, _noop, _noop)

    def time(label: str = DEFAULT_TIMER_LABEL) -> None:
        timers[label] = _time.perf_counter()

    def time_end(label: str = DEFAULT_TIMER_LABEL) -> None:
        start = timers.pop(label, None)
        if start is None:
            return
        args = (f"{label}: {(_time.perf_counter() - start) * 1000:.3f}ms",)
        if should_log(args):
            report(timer_priority, args)

    return LevelHandlers(helpers, streams, time, time_end)


# ═══════════════════════════════════════════════════════════════════
#  Base logger
# ═══════════════════════════════════════════════════════════════════

class BaseLogger(ABC):
    """Side-independent part of a logger instance."""

    def __init__(self, runtime: "Coordinator | WorkerRuntime", options: dict[str, Any] | None = None):
        options = dict(options or {})
        self.runtime = runtime
        self.name: str = options.get("name") or get_project_name()
        if not self.name:
            raise ConfigurationError("You must provide a name for your logger!")

        self.side: Side = runtime.side
        self.worker_id: int | None = runtime.worker_id
        self.is_default = self.name == DEFAULT_LOGGER
        self.enabled = runtime.logger_filter is None or self.name in runtime.logger_filter
        self.identity_state = IdentityState.UNREGISTERED

        # Global-only options may not be set per instance.
        for option in GLOBAL_ONLY_OPTIONS:
            options.pop(option, None)
        options["name"] = self.name
        # Resolved before the lookup, which registers the name.
        if options.get("log_level") is not None:
            options["log_level"] = resolve_level(self._known_priorities(), options["log_level"])
        self._initial_options = options
        self._shared_options: dict[str, Any] = {}

        self._timers: dict[str, float] = {}
        self._transports: list[Transport] = []
        self._handlers: LevelHandlers | None = None

        self.identity_state = IdentityState.AWAITING_SHARED
        shared = self._get_shared_settings()

        self._apply_levels(shared.levels)
        self._compute_options(shared.options)
        self._compute_colors(shared.colors)
        self._set_transports()
        self._build_contexts()
        self._register()
        self._bind_level_handlers()
        self.identity_state = IdentityState.CONVERGED
        if self.is_default and self._options["hook_console"]:
            self._toggle_hook(True)

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self.name!r} [{self._side_label()}]>"

    # ── Side-specific hooks ───────────────────────────────────────

    @abstractmethod
    def _get_shared_settings(self) -> SharedSettings:
        """Find same-named peers and fetch their options/levels/colors."""

    @abstractmethod
    def _register(self) -> None:
        """Record this instance in the runtime's bookkeeping."""

    @abstractmethod
    def set_defaults(self, **options: Any) -> RebuildFlags: ...

    @abstractmethod
    def set_levels(self, levels: Mapping[str, Any]) -> None: ...

    @abstractmethod
    def hook_console(self, coordinator: bool | None = None, worker: bool | None = None) -> Callable[[], None]: ...

    # ── Options ───────────────────────────────────────────────────

    def _known_priorities(self) -> dict[str, int]:
        """Level table of a same-named instance on this side, else the default one."""
        existing = self.runtime.instances(self.name)
        if existing:
            return dict(existing[0]._priority)
        return priority_table(validate_levels(DEFAULT_LEVELS))

    def _resolve_threshold(self, value: int | str, priority: Mapping[str, int]) -> int:
        if isinstance(value, int) and not isinstance(value, bool):
            return value
        return resolve_level(priority, value)

    def _compute_options(self, shared: Mapping[str, Any] | None = None) -> None:
        """Effective options: global defaults ⊕ shared options ⊕ own options."""
        if shared:
            self._shared_options = {k: v for k, v in shared.items() if k not in GLOBAL_ONLY_OPTIONS}
        merged = {**self.runtime.defaults(), **self._shared_options, **self._initial_options}
        merged["log_level"] = self._resolve_threshold(merged["log_level"], self._priority)
        self._ignore = [re.compile(p) for p in merged["ignore"]]
        self._options = merged

    @property
    def options(self) -> dict[str, Any]:
        return dict(self._options)

    @property
    def log_level(self) -> int:
        return self._options["log_level"]

    def shared_options(self) -> dict[str, Any]:
        """Options handed to same-named instances created later."""
        return {**self._shared_options, **self._initial_options}

    # ── Levels & colors ───────────────────────────────────────────

    def _apply_levels(self, levels: Mapping[str, Any] | None) -> None:
        table = validate_levels(levels if levels is not None else DEFAULT_LEVELS)
        self._levels: dict[str, LevelSpec] = table
        self._priority = priority_table(table)
        self._level_names = level_names(table)

    def _compute_colors(self, shared: Mapping[Any, str] | None = None) -> None:
        """
        Per-level and per-side display colors.

        Shared colors were already contrast-checked by the instance that
        computed them and are reused as-is.
        """
        if shared:
            colors = dict(shared)
        else:
            colors = {
                Side.COORDINATOR.value: seed_color(Side.COORDINATOR.value.upper()),
                Side.WORKER.value: seed_color(Side.WORKER.value.upper()),
                "logger": seed_color(self.name),
            }
        for spec in self._levels.values():
            colors.setdefault(spec.priority, spec.color)
        if not shared:
            dark = self._options["dark_theme"]
            colors = {key: ensure_contrast(color, dark) for key, color in colors.items()}
        self._colors = colors

    @property
    def colors(self) -> dict[Any, str]:
        return dict(self._colors)

    def get_levels(self) -> dict[str, dict[str, Any]]:
        return dump_levels(self._levels)

    def _set_levels(self, levels: Mapping[str, Any]) -> None:
        """
        Replace the level table and rebuild everything derived from it.

        Thresholds are priorities by now, so a table that validates can be
        applied to every instance without per-instance rejection.
        """
        self._apply_levels(levels)
        self._compute_options()
        self._compute_colors()
        self._build_contexts()
        self._bind_level_handlers()

    # ── Context ───────────────────────────────────────────────────

    def _side_label(self) -> str:
        if self.side is Side.WORKER and self.worker_id is not None:
            return f"{self.side.value} {self.worker_id:0{PAD_WORKER_ID_DIGITS}d}"
        return self.side.value

    def _pads(self) -> tuple[str, str]:
        side_label = self._side_label()
        return (
            BLANK * max(0, self.runtime.max_name_length - len(self.name)),
            BLANK * max(0, SIDE_COLUMN_WIDTH - len(side_label)),
        )

    def _build_contexts(self) -> None:
        self._padded_to = self.runtime.max_name_length
        self._context: Context = build_context(
            self.name,
            self._side_label(),
            self._pads(),
            self._colors["logger"],
            self._colors[self.side.value],
        )

    @property
    def context(self) -> Context:
        return self._context

    # ── Transports ────────────────────────────────────────────────

    def _set_transports(self) -> None:
        for transport in self._transports:
            transport.close()
        self._transports = [build_transport(cfg, self) for cfg in self._options["transports"]]

    @property
    def transports(self) -> list[Transport]:
        return list(self._transports)

    def get_transport(self, kind: str) -> Transport | None:
        return next((t for t in self._transports if t.type == kind), None)

    # ── Emission ──────────────────────────────────────────────────

    def _report(self, level_priority: int, args: tuple) -> None:
        """Render once per style and hand the record to every transport."""
        prettify = self._options["prettify"] != "none"
        cache: dict[bool, LogRecord] = {}
        message = None
        for transport in self._transports:
            pretty = transport.supports_prettify and prettify
            record = cache.get(pretty)
            if record is None:
                if message is None:
                    message = join_message(args)
                if pretty:
                    color = self._colors.get(level_priority, self._colors["logger"])
                    text = render_pretty(self._context, self._options, color, args)
                else:
                    text = render_plain(self._context, self._options, args)
                record = cache[pretty] = LogRecord.create(
                    level=self._level_names.get(level_priority, str(level_priority)),
                    priority=level_priority,
                    logger=self.name,
                    side=self.side.value,
                    worker_id=self.worker_id,
                    message=message,
                    text=text,
                    pretty=pretty,
                )
            transport.report(level_priority, record)

    def _bind_level_handlers(self) -> None:
        self._handlers = build_level_handlers(
            self._priority,
            self._options["log_level"],
            self._ignore,
            self.enabled,
            self._report,
            self._timers,
            name=self.name,
        )

    def __getattr__(self, item: str) -> Any:
        handlers = self.__dict__.get("_handlers")
        if handlers is not None:
            if item in handlers.helpers:
                return handlers.helpers[item]
            if item.startswith("stream_") and item[7:] in handlers.streams:
                return handlers.streams[item[7:]]
        raise AttributeError(f"{type(self).__name__!r} object has no attribute {item!r}")

    def time(self, label: str = DEFAULT_TIMER_LABEL) -> None:
        self._handlers.time(label)

    def time_end(self, label: str = DEFAULT_TIMER_LABEL) -> None:
        self._handlers.time_end(label)

    # ── Rebuild ───────────────────────────────────────────────────

    def _update(self, flags: RebuildFlags, max_name_length: int | None = None) -> None:
        """Recompute exactly the state ``flags`` marks as stale."""
        if max_name_length is not None:
            self.runtime.observe_max_name_length(max_name_length)
        grew = self.runtime.max_name_length != self._padded_to
        self._compute_options()
        if flags.colors:
            self._compute_colors()
        if flags.contexts or flags.colors or grew:
            self._build_contexts()
        if flags.level_helpers:
            self._bind_level_handlers()
        if flags.transports:
            self._set_transports()
        elif flags.collector:
            for transport in self._transports:
                transport.configure_collect()

    def snapshot(self) -> dict[str, Any]:
        """What a same-named instance needs to converge with this one."""
        return {
            "options": self.shared_options(),
            "levels": self.get_levels(),
            "colors": dict(self._colors),
        }

    # ── Factories & defaults ──────────────────────────────────────

    def create(self, **options: Any) -> "BaseLogger":
        """New independent logger on the same side."""
        return self.runtime.create(**options)

    def get_logger(self, name: str, **options: Any) -> "BaseLogger":
        return self.runtime.get_logger(name, **options)

    def get_defaults(self) -> dict[str, Any]:
        return self.runtime.get_defaults()

    def _toggle_hook(self, capture: bool) -> None:
        self.runtime.toggle_hook(self, capture)
