"""
Transports (output sinks).

One logger, an ordered list of transports. Each transport receives every
record the logger emits through ``report(level_priority, record)``.

  - console: prints through the native console, or forwards the record to
             the collector process when collector redirection applies.
  - memory:  ring buffer of the last N records, for inspection and tests.
"""

from __future__ import annotations

import threading
from abc import ABC, abstractmethod
from collections import deque
from typing import TYPE_CHECKING, Any, Callable, ClassVar

from timberline.console import CONSOLE_HOOK, method_for_priority
from timberline.errors import ChannelClosedError, ConfigurationError
from timberline.records import LogRecord

if TYPE_CHECKING:
    from timberline.logger import BaseLogger


def print_record(priority: int, record: LogRecord) -> None:
    """Print a record with the original console function for its priority."""
    CONSOLE_HOOK.native(method_for_priority(priority))(record.text)


class Transport(ABC):
    """Base transport."""

    type: ClassVar[str]
    supports_prettify: ClassVar[bool] = False

    def __init__(self, options: dict[str, Any] | None = None, logger: "BaseLogger | None" = None):
        self.options = dict(options or {})
        self.logger = logger

    @abstractmethod
    def report(self, level_priority: int, record: LogRecord) -> None:
        """Write one record."""
        ...

    def configure_collect(self) -> None:
        """Re-read collector routing. Only the console transport routes."""

    def close(self) -> None:
        """Cleanup. Override if the transport holds resources."""


class ConsoleTransport(Transport):
    """
    Prints to stdout/stderr, honoring collector redirection.

    The routing decision is taken by the logger's runtime when the transport
    is built and whenever the ``collector`` default changes: either None
    (print here) or a callable that forwards the record to the collector.
    """

    type = "console"
    supports_prettify = True

    def __init__(self, options: dict[str, Any] | None = None, logger: "BaseLogger | None" = None):
        super().__init__(options, logger)
        self._forward: Callable[[int, LogRecord], None] | None = None
        self.configure_collect()

    def configure_collect(self) -> None:
        runtime = self.logger.runtime if self.logger is not None else None
        self._forward = runtime.collector_route() if runtime is not None else None

    @property
    def redirects(self) -> bool:
        return self._forward is not None

    def report(self, level_priority: int, record: LogRecord) -> None:
        if self._forward is not None:
            try:
                self._forward(level_priority, record)
                return
            except ChannelClosedError:
                # Collector unreachable; keep the record.
                pass
        print_record(level_priority, record)


class MemoryTransport(Transport):
    """Ring buffer of the last ``capacity`` records."""

    type = "memory"

    def __init__(self, options: dict[str, Any] | None = None, logger: "BaseLogger | None" = None):
        super().__init__(options, logger)
        self._buffer: deque[LogRecord] = deque(maxlen=int(self.options.get("capacity", 1000)))
        self._lock = threading.Lock()

    def report(self, level_priority: int, record: LogRecord) -> None:
        with self._lock:
            self._buffer.append(record)

    def records(self, n: int | None = None, level: str | None = None) -> list[LogRecord]:
        """Recent records, oldest first, optionally filtered by level name."""
        with self._lock:
            records = list(self._buffer)
        if level is not None:
            records = [r for r in records if r.level == level]
        return records if n is None else records[-n:]

    def messages(self) -> list[str]:
        return [r.message for r in self.records()]

    def clear(self) -> None:
        with self._lock:
            self._buffer.clear()

    @property
    def count(self) -> int:
        return len(self._buffer)


TRANSPORTS: dict[str, type[Transport]] = {
    ConsoleTransport.type: ConsoleTransport,
    MemoryTransport.type: MemoryTransport,
}


def build_transport(config: str | dict[str, Any], logger: "BaseLogger | None" = None) -> Transport:
    """Build a transport from its name or a ``{"type": name, ...}`` dict."""
    options = dict(config) if isinstance(config, dict) else {"type": config}
    kind = options.get("type")
    try:
        cls = TRANSPORTS[kind]
    except KeyError:
        raise ConfigurationError(f"Unknown transport type '{kind}'") from None
    return cls(options, logger)
