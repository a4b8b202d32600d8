"""
timberline: named, colorized logging shared by a coordinator process and
its workers.

Loggers created independently on either side under the same name converge
on one color table, level table and padding width, and follow global
defaults changed at runtime from the coordinator.
"""

import logging

from timberline.config import GlobalDefaults, RebuildFlags
from timberline.console import CONSOLE_HOOK, ConsoleHook, console
from timberline.coordinator import Coordinator, CoordinatorLogger
from timberline.errors import (
    ChannelClosedError,
    ConfigurationError,
    CoordinatorOnlyError,
    TimberlineError,
)
from timberline.levels import DEFAULT_LEVELS, LevelSpec
from timberline.logger import BaseLogger, LevelHandlers, build_level_handlers
from timberline.records import LogRecord
from timberline.transports import ConsoleTransport, MemoryTransport, Transport
from timberline.worker import ObserverRuntime, WorkerLogger, WorkerRuntime, run_worker

logging.getLogger(__name__).addHandler(logging.NullHandler())

__all__ = [
    "Coordinator",
    "CoordinatorLogger",
    "WorkerRuntime",
    "WorkerLogger",
    "ObserverRuntime",
    "run_worker",
    "BaseLogger",
    "LevelHandlers",
    "build_level_handlers",
    "GlobalDefaults",
    "RebuildFlags",
    "DEFAULT_LEVELS",
    "LevelSpec",
    "LogRecord",
    "Transport",
    "ConsoleTransport",
    "MemoryTransport",
    "ConsoleHook",
    "CONSOLE_HOOK",
    "console",
    "TimberlineError",
    "ConfigurationError",
    "CoordinatorOnlyError",
    "ChannelClosedError",
]
