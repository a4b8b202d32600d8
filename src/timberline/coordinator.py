"""
Coordinator side: the process that owns the registry and the global defaults.

One Coordinator per application. Workers are attached either by
``spawn()`` (a new process running ``run_worker``) or by handing the
connection returned from ``connect_worker()`` to a WorkerRuntime yourself.

Usage:
    coordinator = Coordinator(defaults={"timestamp": "time"})
    log = coordinator.create(name="main")
    log.info("starting")

    def job(runtime, n):
        runtime.create(name="job").info("working on", n)

    proc = coordinator.spawn(job, 3)
    proc.join()
"""

from __future__ import annotations

import itertools
import logging
import multiprocessing
import threading
from dataclasses import dataclass
from multiprocessing.connection import Connection
from pathlib import Path
from typing import Any, Callable, Mapping

from timberline.config import (
    LOGGER_FILTER,
    WORKER_COLLECTOR,
    GlobalDefaults,
    RebuildFlags,
    diff_defaults,
)
from timberline.console import CONSOLE_HOOK
from timberline.constants import DEFAULT_LOGGER, Side, Topic
from timberline.errors import ChannelClosedError, ConfigurationError
from timberline.levels import DEFAULT_LEVELS, dump_levels, priority_table, resolve_level, validate_levels
from timberline.logger import BaseLogger
from timberline.messaging import Channel, Message
from timberline.records import LogRecord
from timberline.registry import Registry, SharedSettings
from timberline.transports import print_record
from timberline.worker import run_worker

log = logging.getLogger(__name__)


@dataclass
class WorkerHandle:
    """Coordinator's view of one attached worker."""
    worker_id: int
    channel: Channel
    process: multiprocessing.process.BaseProcess | None = None

    def is_alive(self) -> bool:
        if self.channel.closed:
            return False
        return self.process is None or self.process.is_alive()


# ═══════════════════════════════════════════════════════════════════
#  Coordinator logger
# ═══════════════════════════════════════════════════════════════════

class CoordinatorLogger(BaseLogger):
    """Logger instance living in the coordinator process."""

    runtime: "Coordinator"

    def _get_shared_settings(self) -> SharedSettings:
        return self.runtime.lookup(self.name)

    def _register(self) -> None:
        self.runtime.register_local(self)

    def set_defaults(self, **options: Any) -> RebuildFlags:
        """Change global defaults everywhere. Returns what was rebuilt."""
        return self.runtime.set_defaults(options, caller=self)

    def set_levels(self, levels: Mapping[str, Any]) -> None:
        """Replace the level table of every instance named like this one."""
        self.runtime.set_levels(self.name, levels)

    def hook_console(self, coordinator: bool | None = None, worker: bool | None = None) -> Callable[[], None]:
        """
        Route console output through this logger.

        With no arguments the coordinator console is hooked. ``worker=True``
        asks every worker to hook its own console. Returns a callable that
        undoes exactly what was hooked.
        """
        if not self.is_default:
            raise ConfigurationError(
                f"Only the default logger ('{DEFAULT_LOGGER}') can hook the console"
            )
        if coordinator is None and worker is None:
            coordinator = True

        if coordinator:
            self.runtime.toggle_hook(self, True)
        if worker:
            self.runtime.broadcast_update(RebuildFlags(hooks=True), hook=True)

        def unhook() -> None:
            if coordinator:
                self.runtime.toggle_hook(self, False)
            if worker:
                self.runtime.broadcast_update(RebuildFlags(hooks=True), hook=False)

        return unhook


# ═══════════════════════════════════════════════════════════════════
#  Coordinator
# ═══════════════════════════════════════════════════════════════════

class Coordinator:
    """
    Registry, global defaults and worker connections of one application.

    Registry and defaults are only touched under ``self._lock``. Handlers run
    on the per-connection listener threads and never wait on another
    process: relayed lookups complete through reply callbacks.
    """

    side = Side.COORDINATOR
    worker_id = None

    def __init__(
        self,
        defaults: GlobalDefaults | dict | None = None,
        config_path: str | Path | None = None,
        logger_filter: frozenset[str] | None = LOGGER_FILTER,
    ):
        if isinstance(defaults, GlobalDefaults):
            self._defaults = defaults
        elif defaults is not None:
            self._defaults = GlobalDefaults.from_dict(defaults)
        elif config_path is not None:
            self._defaults = GlobalDefaults.from_yaml(config_path)
        else:
            self._defaults = GlobalDefaults.from_env()

        self.logger_filter = logger_filter
        self.registry = Registry()
        # Printer for records collected from workers.
        self.collector_sink: Callable[[int, LogRecord], None] = print_record

        self._lock = threading.RLock()
        self._default_lock = threading.Lock()
        self._ids = itertools.count(1)
        self._workers: dict[int, WorkerHandle] = {}
        self._observers: list[Channel] = []
        self._instances: dict[str, list[CoordinatorLogger]] = {}
        self._default_logger: CoordinatorLogger | None = None

    def __repr__(self) -> str:
        return f"<Coordinator workers={sorted(self._workers)} loggers={self.registry.names()}>"

    # ── Runtime interface used by loggers ─────────────────────────

    @property
    def max_name_length(self) -> int:
        return self.registry.max_name_length

    def observe_max_name_length(self, length: int) -> bool:
        # The registry is the source of truth here; nothing to adopt.
        return False

    def defaults(self) -> dict[str, Any]:
        with self._lock:
            return self._defaults.model_dump()

    def get_defaults(self) -> dict[str, Any]:
        return self.defaults()

    def collector_route(self) -> Callable[[int, LogRecord], None] | None:
        """Forwarder to the collector worker, or None to print here."""
        collector = self._defaults.collector
        if isinstance(collector, bool) or not isinstance(collector, int):
            return None
        return self._forward_to_collector

    def toggle_hook(self, logger: BaseLogger, capture: bool) -> None:
        CONSOLE_HOOK.toggle(logger, capture)

    # ── Loggers ───────────────────────────────────────────────────

    def create(self, name: str | None = None, **options: Any) -> CoordinatorLogger:
        """New coordinator-side logger instance."""
        if name is not None:
            options["name"] = name
        return CoordinatorLogger(self, options)

    def get_logger(self, name: str, **options: Any) -> CoordinatorLogger:
        """Existing instance named ``name`` on this side, else a new one."""
        with self._lock:
            existing = self._instances.get(name)
            if existing:
                return existing[0]
        return self.create(name, **options)

    @property
    def default_logger(self) -> CoordinatorLogger:
        with self._default_lock:
            if self._default_logger is None:
                self._default_logger = self.get_logger(DEFAULT_LOGGER)
            return self._default_logger

    def register_local(self, logger: CoordinatorLogger) -> None:
        """Keep ``logger`` for lookups and rebuilds; instances live as long as the coordinator."""
        with self._lock:
            self.registry.set_coordinator(logger.name, logger)
            self._instances.setdefault(logger.name, []).append(logger)

    def instances(self, name: str) -> list[CoordinatorLogger]:
        with self._lock:
            return list(self._instances.get(name, ()))

    # ── Settings lookup ───────────────────────────────────────────

    def _settings(self, snapshot: dict[str, Any] | None = None) -> SharedSettings:
        with self._lock:
            return SharedSettings.from_snapshot(
                snapshot,
                max_name_length=self.registry.max_name_length,
                defaults=self._defaults.model_dump(),
            )

    def _is_alive(self, worker_id: int) -> bool:
        handle = self._workers.get(worker_id)
        return handle is not None and handle.is_alive()

    def _resolve_lookup(self, name: str, requester: int | None) -> tuple[BaseLogger | None, int | None, bool]:
        """
        Registry side of a lookup: (coordinator instance, relay target, grew).

        Registers ``requester`` before returning so it is known by the time
        the reply goes out.
        """
        with self._lock:
            grew = self.registry.update_max(name)
            entry = self.registry.purge(name, self._is_alive)
            local = entry.coordinator if entry is not None else None
            target = None
            if local is None and entry is not None:
                target = next((w for w in entry.workers if w != requester), None)
            if requester is not None:
                self.registry.register_worker(name, requester)
        if grew:
            self.broadcast_update(RebuildFlags(contexts=True), exclude=(name, requester))
        return local, target, grew

    def _relay(self, name: str, target: int, done: Callable[[SharedSettings], None]) -> None:
        """Ask worker ``target`` for its instance of ``name``; ``done`` gets the result."""
        def on_reply(value: Any, error: BaseException | None) -> None:
            if error is not None:
                log.debug("Relay of %s to worker %s failed: %s", name, target, error)
            done(self._settings(value if error is None else None))

        handle = self._workers.get(target)
        if handle is None:
            done(self._settings())
            return
        handle.channel.request_async(Topic.CONFIG_RELAY, name, callback=on_reply)

    def lookup(self, name: str) -> SharedSettings:
        """Settings lookup for a logger being created in this process."""
        local, target, _ = self._resolve_lookup(name, None)
        if local is not None:
            return self._settings(local.snapshot())
        if target is None:
            return self._settings()

        result: list[SharedSettings] = []
        ready = threading.Event()

        def done(settings: SharedSettings) -> None:
            result.append(settings)
            ready.set()

        self._relay(name, target, done)
        ready.wait()
        return result[0]

    def _on_config(self, message: Message) -> None:
        name = message.args[0]
        requester = message.channel.peer_id
        local, target, _ = self._resolve_lookup(name, requester)
        if local is not None:
            message.reply(self._settings(local.snapshot()).to_dict())
        elif target is None:
            message.reply(self._settings().to_dict())
        else:
            self._relay(name, target, lambda settings: message.reply(settings.to_dict()))

    def _on_defaults(self, message: Message) -> None:
        message.reply(self.defaults())

    # ── Defaults & levels ─────────────────────────────────────────

    def _lowest_live_worker(self) -> int | None:
        live = [w for w, handle in self._workers.items() if handle.is_alive()]
        return min(live) if live else None

    def set_defaults(self, changes: Mapping[str, Any], caller: BaseLogger | None = None) -> RebuildFlags:
        """
        Validate and apply new global defaults, then broadcast the rebuild.

        ``log_level`` given as a name is resolved through the caller's level
        table. ``collector="worker"`` picks the lowest live worker id.
        """
        given = {k: v for k, v in changes.items() if k not in ("name", "levels")}
        if "log_level" in given:
            table = caller._priority if caller is not None else priority_table(validate_levels(DEFAULT_LEVELS))
            given["log_level"] = resolve_level(table, given["log_level"])

        with self._lock:
            if given.get("collector") == WORKER_COLLECTOR:
                worker_id = self._lowest_live_worker()
                if worker_id is None:
                    raise ConfigurationError("collector='worker' but no worker is attached")
                given["collector"] = worker_id
            new = self._defaults.merged(given)
            flags = diff_defaults(self._defaults, new, given)
            self._defaults = new

        if flags.collector:
            for handle in list(self._workers.values()):
                self._listen_collector(handle.channel)
            for channel in list(self._observers):
                self._listen_collector(channel)
        if "hook_console" in given:
            self._sync_hook()
        if flags.any():
            self.broadcast_update(flags, hook=new.hook_console if "hook_console" in given else None)
        return flags

    def set_levels(self, name: str, levels: Mapping[str, Any], sender: int | None = None) -> None:
        """
        Apply a level table to every instance of ``name``.

        The table is validated once before any instance changes, so either
        every instance gets it or none does. ``sender`` is a worker that
        applies it on its own side.
        """
        table = dump_levels(validate_levels(levels))
        for instance in self.instances(name):
            instance._set_levels(table)

        with self._lock:
            entry = self.registry.purge(name, self._is_alive)
            targets = [w for w in entry.workers if w != sender] if entry is not None else []
        for worker_id in targets:
            self._send(worker_id, Topic.SET_LEVELS, name, table)

    def _on_set_levels(self, message: Message) -> None:
        name, levels = message.args
        try:
            self.set_levels(name, levels, sender=message.channel.peer_id)
        except ConfigurationError as exc:
            message.reply(str(exc))
            return
        message.reply(None)

    # ── Broadcast ─────────────────────────────────────────────────

    def _send(self, worker_id: int, topic: str, *args: Any) -> bool:
        handle = self._workers.get(worker_id)
        if handle is None or not handle.is_alive():
            return False
        try:
            handle.channel.send(topic, *args)
        except ChannelClosedError:
            log.debug("Worker %s went away before %s", worker_id, topic)
            return False
        return True

    def broadcast_update(
        self,
        flags: RebuildFlags,
        exclude: tuple[str, int | None] | None = None,
        hook: bool | None = None,
    ) -> None:
        """
        Tell every instance of every name to rebuild what ``flags`` marks.

        ``exclude`` is a (name, worker id) pair to skip, worker id None meaning
        the coordinator's own instances. ``hook`` tells workers whether to hook
        their console when ``flags.hooks`` is set; None only refreshes
        existing hooks.
        """
        with self._lock:
            max_len = self.registry.max_name_length
            defaults = self._defaults.model_dump()
            targets: dict[int, list[str]] = {}
            local: list[CoordinatorLogger] = []
            for name, entry in self.registry:
                for worker_id in entry.workers:
                    if exclude != (name, worker_id):
                        targets.setdefault(worker_id, []).append(name)
                if exclude != (name, None):
                    local.extend(self._instances.get(name, ()))
            workers = [w for w, handle in self._workers.items() if handle.is_alive()]

        for instance in local:
            instance._update(flags, max_len)

        payload = flags.to_dict()
        for worker_id in workers:
            for name in targets.get(worker_id, ()):
                self._send(worker_id, Topic.UPDATE, name, payload, max_len, defaults, None)
            if flags.hooks:
                self._send(worker_id, Topic.UPDATE, None, payload, max_len, defaults, hook)

        if self._observers:
            relayed = any(
                self._send(worker_id, Topic.RELAY_OBSERVERS, payload, max_len, defaults, hook)
                for worker_id in workers[:1]
            )
            if not relayed:
                self._fan_out_observers(payload, max_len, defaults, hook)

    def _sync_hook(self) -> None:
        """Make the coordinator console hook match the hook_console default."""
        if self._defaults.hook_console:
            self.toggle_hook(self.default_logger, True)
        elif self._default_logger is not None:
            self.toggle_hook(self._default_logger, False)

    def _fan_out_observers(self, *args: Any) -> None:
        for channel in list(self._observers):
            try:
                channel.send(Topic.UPDATE_OBSERVERS, *args)
            except ChannelClosedError:
                log.debug("Observer %s went away", channel.name)

    def _on_update_observers(self, message: Message) -> None:
        self._fan_out_observers(*message.args)

    # ── Collector ─────────────────────────────────────────────────

    def _forward_to_collector(self, priority: int, record: LogRecord) -> None:
        collector = self._defaults.collector
        if not self._send(collector, Topic.COLLECTOR, priority, record):
            raise ChannelClosedError(f"collector worker {collector} is not attached")

    def _on_collect(self, message: Message) -> None:
        priority, record = message.args
        collector = self._defaults.collector
        is_worker = isinstance(collector, int) and not isinstance(collector, bool)
        if is_worker and collector != message.channel.peer_id and self._send(collector, Topic.COLLECTOR, priority, record):
            return
        self.collector_sink(priority, record)

    def _listen_collector(self, channel: Channel) -> None:
        channel.remove_all_listeners(Topic.COLLECTOR)
        channel.on(Topic.COLLECTOR, self._on_collect)

    # ── Connections ───────────────────────────────────────────────

    def connect_worker(self) -> tuple[int, Connection]:
        """
        Attach a new worker. Returns its id and the worker end of the pipe.

        The connection is meant for ``WorkerRuntime(conn, worker_id)``, in
        another process or, for tests, in this one.
        """
        parent_end, worker_end = multiprocessing.Pipe(duplex=True)
        with self._lock:
            worker_id = next(self._ids)
            channel = Channel(parent_end, name=f"coordinator-worker-{worker_id}", peer_id=worker_id)
            self._workers[worker_id] = WorkerHandle(worker_id, channel)

        channel.on(Topic.CONFIG, self._on_config)
        channel.on(Topic.DEFAULTS, self._on_defaults)
        channel.on(Topic.SET_LEVELS, self._on_set_levels)
        channel.on(Topic.REMOVE_WORKER, self._on_remove_worker)
        channel.on(Topic.UPDATE_OBSERVERS, self._on_update_observers)
        self._listen_collector(channel)
        channel.on_close(lambda _: self.remove_worker(worker_id))
        channel.start()
        log.debug("Attached worker %s", worker_id)
        # collector="worker" from the initial defaults waits for the first worker.
        if self._defaults.collector == WORKER_COLLECTOR:
            self.set_defaults({"collector": WORKER_COLLECTOR})
        return worker_id, worker_end

    def attach_observer(self) -> Connection:
        """Attach an observer (inspector-like consumer). Returns its pipe end."""
        parent_end, observer_end = multiprocessing.Pipe(duplex=True)
        channel = Channel(parent_end, name=f"coordinator-observer-{len(self._observers) + 1}")
        channel.on(Topic.CONFIG, self._on_config)
        channel.on(Topic.DEFAULTS, self._on_defaults)
        self._listen_collector(channel)
        channel.on_close(self._detach_observer)
        with self._lock:
            self._observers.append(channel)
        channel.start()
        return observer_end

    def _detach_observer(self, channel: Channel) -> None:
        with self._lock:
            if channel in self._observers:
                self._observers.remove(channel)

    def spawn(
        self,
        target: Callable[..., Any],
        *args: Any,
        context: str | None = None,
        **kwargs: Any,
    ) -> multiprocessing.process.BaseProcess:
        """
        Start ``target(runtime, *args, **kwargs)`` in a new worker process.

        ``context`` is a multiprocessing start method ("fork", "spawn",
        "forkserver"); ``target`` must be picklable unless it is "fork".
        """
        ctx = multiprocessing.get_context(context)
        worker_id, conn = self.connect_worker()
        process = ctx.Process(
            target=run_worker,
            args=(conn, worker_id, target, args, kwargs, self.logger_filter),
            name=f"timberline-worker-{worker_id}",
        )
        self._workers[worker_id].process = process
        process.start()
        conn.close()
        return process

    def remove_worker(self, worker_id: int) -> None:
        """Forget a worker and drop its id from every registry entry."""
        with self._lock:
            self._workers.pop(worker_id, None)
            names = self.registry.remove_worker(worker_id)
        if names:
            log.debug("Worker %s deregistered from %s", worker_id, names)

    def _on_remove_worker(self, message: Message) -> None:
        self.remove_worker(message.args[0])

    @property
    def workers(self) -> list[int]:
        with self._lock:
            return [w for w, handle in self._workers.items() if handle.is_alive()]

    def shutdown(self) -> None:
        """Close every worker and observer connection."""
        with self._lock:
            channels = [handle.channel for handle in self._workers.values()] + list(self._observers)
        for channel in channels:
            channel.close()
