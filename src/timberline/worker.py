"""
Worker side: logger runtime of a process attached to a Coordinator.

A WorkerRuntime owns the worker end of the coordinator connection. Loggers
created through it look their settings up from the coordinator (blocking),
apply rebuild notices as they arrive and forward their records to the
collector.

Usage (inside the worker process):
    runtime = WorkerRuntime(conn, worker_id).start()
    log = runtime.create(name="job")
    log.info("hello from", runtime.worker_id)
    runtime.close()
"""

from __future__ import annotations

import logging
import threading
from multiprocessing.connection import Connection
from typing import Any, Callable, Mapping

from timberline.config import LOGGER_FILTER, RebuildFlags
from timberline.console import CONSOLE_HOOK
from timberline.constants import DEFAULT_LOGGER, Side, Topic
from timberline.errors import ChannelClosedError, ConfigurationError, CoordinatorOnlyError
from timberline.levels import LOG_ALIAS, dump_levels, validate_levels
from timberline.logger import BaseLogger
from timberline.messaging import Channel, Message
from timberline.records import LogRecord
from timberline.registry import SharedSettings
from timberline.transports import print_record

log = logging.getLogger(__name__)


# ═══════════════════════════════════════════════════════════════════
#  Worker logger
# ═══════════════════════════════════════════════════════════════════

class WorkerLogger(BaseLogger):
    """Logger instance living in a worker (or observer) process."""

    runtime: "WorkerRuntime"

    def _get_shared_settings(self) -> SharedSettings:
        return self.runtime.lookup(self.name)

    def _register(self) -> None:
        self.runtime.register_local(self)

    def set_defaults(self, **options: Any) -> RebuildFlags:
        raise CoordinatorOnlyError("set_defaults can only be called from the coordinator")

    def set_levels(self, levels: Mapping[str, Any]) -> None:
        """Replace the level table here and in every other instance of this name."""
        self.runtime.set_levels(self.name, levels)

    def hook_console(self, coordinator: bool | None = None, worker: bool | None = None) -> Callable[[], None]:
        """Route this process's console through the default logger."""
        if coordinator:
            raise CoordinatorOnlyError("Only the coordinator can hook the coordinator console")
        if not self.is_default:
            raise ConfigurationError(
                f"Only the default logger ('{DEFAULT_LOGGER}') can hook the console"
            )
        self.runtime.toggle_hook(self, True)

        def unhook() -> None:
            self.runtime.toggle_hook(self, False)

        return unhook


# ═══════════════════════════════════════════════════════════════════
#  Worker runtime
# ═══════════════════════════════════════════════════════════════════

class WorkerRuntime:
    """Per-process state of a worker: its channel, loggers and cached defaults."""

    side = Side.WORKER

    def __init__(
        self,
        conn: Connection,
        worker_id: int | None,
        logger_filter: frozenset[str] | None = LOGGER_FILTER,
    ):
        self.worker_id = worker_id
        self.logger_filter = logger_filter
        self.max_name_length = 0
        self.channel = Channel(conn, name=self._channel_name())
        self._defaults: dict[str, Any] | None = None
        self._instances: dict[str, list[WorkerLogger]] = {}
        self._lock = threading.RLock()
        self._default_lock = threading.Lock()
        self._default_logger: WorkerLogger | None = None

        self.channel.on(Topic.UPDATE, self._on_update)
        self.channel.on(Topic.SET_LEVELS, self._on_set_levels)
        self.channel.on(Topic.CONFIG_RELAY, self._on_config_relay)
        self.channel.on(Topic.RELAY_OBSERVERS, self._on_relay_observers)
        self._listen_collector()

    def _channel_name(self) -> str:
        return f"worker-{self.worker_id}"

    def __repr__(self) -> str:
        return f"<{type(self).__name__} id={self.worker_id} loggers={sorted(self._instances)}>"

    def start(self) -> "WorkerRuntime":
        """Start listening and fetch the global defaults."""
        self.channel.start()
        self._defaults = self.channel.request(Topic.DEFAULTS)
        if self._defaults.get("hook_console"):
            self.sync_hook(True)
        return self

    def close(self) -> None:
        """Deregister from the coordinator and close the connection."""
        if self.channel.closed:
            return
        if self.worker_id is not None:
            try:
                self.channel.send(Topic.REMOVE_WORKER, self.worker_id)
            except ChannelClosedError:
                log.debug("Coordinator gone before %s deregistered", self.channel.name)
        self.channel.close()

    def __enter__(self) -> "WorkerRuntime":
        return self.start()

    def __exit__(self, *exc_info: Any) -> None:
        self.close()

    # ── Runtime interface used by loggers ─────────────────────────

    def defaults(self) -> dict[str, Any]:
        if self._defaults is None:
            self._defaults = self.channel.request(Topic.DEFAULTS)
        return dict(self._defaults)

    def get_defaults(self) -> dict[str, Any]:
        """Fresh copy of the coordinator's defaults (blocking)."""
        self._defaults = self.channel.request(Topic.DEFAULTS)
        return dict(self._defaults)

    def observe_max_name_length(self, length: int) -> bool:
        with self._lock:
            if length > self.max_name_length:
                self.max_name_length = length
                return True
            return False

    def collector_route(self) -> Callable[[int, LogRecord], None] | None:
        """None to print here, else a forwarder to the coordinator."""
        collector = self.defaults()["collector"]
        if collector is False or (collector == self.worker_id and self.worker_id is not None):
            return None
        return self._forward_to_coordinator

    def _forward_to_coordinator(self, priority: int, record: LogRecord) -> None:
        self.channel.send(Topic.COLLECTOR, priority, record)

    def console_mute(self, logger: BaseLogger) -> Callable[[str], bool] | None:
        return None

    def toggle_hook(self, logger: BaseLogger, capture: bool) -> None:
        CONSOLE_HOOK.toggle(logger, capture, mute=self.console_mute(logger))

    def sync_hook(self, hook: bool | None = None) -> None:
        """
        Hook (True) or unhook (False) this console through the default logger.

        None re-installs an existing hook so it picks up a new mute filter.
        """
        if hook is None:
            if CONSOLE_HOOK.is_hooked and self._default_logger is not None:
                self.toggle_hook(self._default_logger, True)
        elif hook:
            self.toggle_hook(self.default_logger, True)
        elif self._default_logger is not None:
            self.toggle_hook(self._default_logger, False)

    # ── Loggers ───────────────────────────────────────────────────

    def create(self, name: str | None = None, **options: Any) -> WorkerLogger:
        if name is not None:
            options["name"] = name
        return WorkerLogger(self, options)

    def get_logger(self, name: str, **options: Any) -> WorkerLogger:
        existing = self.instances(name)
        return existing[0] if existing else self.create(name, **options)

    @property
    def default_logger(self) -> WorkerLogger:
        with self._default_lock:
            if self._default_logger is None:
                self._default_logger = self.get_logger(DEFAULT_LOGGER)
            return self._default_logger

    def register_local(self, logger: WorkerLogger) -> None:
        """Keep ``logger`` for relays and rebuilds; instances live as long as the runtime."""
        with self._lock:
            self._instances.setdefault(logger.name, []).append(logger)

    def instances(self, name: str | None = None) -> list[WorkerLogger]:
        with self._lock:
            if name is not None:
                return list(self._instances.get(name, ()))
            return [i for group in self._instances.values() for i in group]

    def lookup(self, name: str) -> SharedSettings:
        """Blocking settings lookup at the coordinator."""
        settings = SharedSettings.from_dict(self.channel.request(Topic.CONFIG, name))
        self._defaults = settings.defaults
        self.observe_max_name_length(settings.max_name_length)
        if settings.options is None:
            existing = self.instances(name)
            if existing:
                snapshot = existing[0].snapshot()
                settings.options = snapshot["options"]
                settings.levels = snapshot["levels"]
                settings.colors = snapshot["colors"]
        return settings

    def set_levels(self, name: str, levels: Mapping[str, Any]) -> None:
        """
        Apply a level table to every instance of ``name``, here and elsewhere.

        The coordinator applies and forwards it first (blocking); local
        instances only change once it has accepted the table.
        """
        table = dump_levels(validate_levels(levels))
        if self.worker_id is not None:
            rejected = self.channel.request(Topic.SET_LEVELS, name, table)
            if rejected:
                raise ConfigurationError(rejected)
        for instance in self.instances(name):
            instance._set_levels(table)

    # ── Handlers ──────────────────────────────────────────────────

    def _in_background(self, fn: Callable[..., Any], *args: Any) -> threading.Thread:
        """Run work that may issue blocking requests off the listener thread."""
        thread = threading.Thread(target=fn, args=args, name=f"timberline-{self.channel.name}-task", daemon=True)
        thread.start()
        return thread

    def _apply_update(self, instances: list[WorkerLogger], flags: RebuildFlags, max_len: int, defaults: dict) -> None:
        self._defaults = defaults
        self.observe_max_name_length(max_len)
        for instance in instances:
            instance._update(flags, max_len)
        if flags.collector:
            self._listen_collector()

    def _on_update(self, message: Message) -> None:
        name, payload, max_len, defaults, hook = message.args
        flags = RebuildFlags(**payload)
        if name is None:
            self._apply_update([], flags, max_len, defaults)
            if flags.hooks:
                self._in_background(self.sync_hook, hook)
        else:
            self._apply_update(self.instances(name), flags, max_len, defaults)

    def _on_set_levels(self, message: Message) -> None:
        name, levels = message.args
        for instance in self.instances(name):
            instance._set_levels(levels)

    def _on_config_relay(self, message: Message) -> None:
        existing = self.instances(message.args[0])
        message.reply(existing[0].snapshot() if existing else None)

    def _on_relay_observers(self, message: Message) -> None:
        self.channel.send(Topic.UPDATE_OBSERVERS, *message.args)

    def _on_collect(self, message: Message) -> None:
        priority, record = message.args
        print_record(priority, record)

    def _listen_collector(self) -> None:
        self.channel.remove_all_listeners(Topic.COLLECTOR)
        self.channel.on(Topic.COLLECTOR, self._on_collect)


# ═══════════════════════════════════════════════════════════════════
#  Observer runtime
# ═══════════════════════════════════════════════════════════════════

class ObserverRuntime(WorkerRuntime):
    """
    Inspector-like consumer attached with ``Coordinator.attach_observer()``.

    Observers are not registered under any logger name. They rebuild every
    instance on ``UPDATE_OBSERVERS`` and their console hook honors
    ``mute_inspector``.
    """

    def __init__(self, conn: Connection, logger_filter: frozenset[str] | None = LOGGER_FILTER):
        super().__init__(conn, None, logger_filter)
        self.channel.remove_all_listeners(Topic.UPDATE)
        self.channel.on(Topic.UPDATE_OBSERVERS, self._on_update_observers)

    def _channel_name(self) -> str:
        return "observer"

    def console_mute(self, logger: BaseLogger) -> Callable[[str], bool] | None:
        def muted(method: str) -> bool:
            mute = self.defaults()["mute_inspector"]
            if mute is True:
                return True
            if mute is False:
                return False
            level = method if method in ("warn", "error") else LOG_ALIAS
            return logger._priority.get(level, 0) >= mute

        return muted

    def _on_update_observers(self, message: Message) -> None:
        payload, max_len, defaults, hook = message.args
        flags = RebuildFlags(**payload)
        self._apply_update(self.instances(), flags, max_len, defaults)
        if flags.hooks:
            self._in_background(self.sync_hook, hook)


def run_worker(
    conn: Connection,
    worker_id: int,
    target: Callable[..., Any],
    args: tuple = (),
    kwargs: dict | None = None,
    logger_filter: frozenset[str] | None = LOGGER_FILTER,
) -> Any:
    """Process entry point used by ``Coordinator.spawn``."""
    runtime = WorkerRuntime(conn, worker_id, logger_filter).start()
    try:
        return target(runtime, *args, **(kwargs or {}))
    finally:
        runtime.close()
