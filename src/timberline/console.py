"""
Native console and console interception.

``console`` holds the process's print functions (log/warn/error/time/
time_end). ConsoleHook swaps them, together with ``builtins.print``, for
wrappers that forward to a logger, and restores the exact original function
objects on unhook.

Usage:
    unhook = CONSOLE_HOOK.hook(logger)
    console.log("captured")        # goes through logger.log
    print("captured too")
    unhook()
"""

import builtins
import sys
import threading
import time as _time
from types import SimpleNamespace
from typing import Any, Callable

from timberline.constants import DEFAULT_TIMER_LABEL, HOOKABLE_METHODS

PRINT = "print"

# Marks wrapper functions so they are never saved as originals.
_WRAPPER_ATTR = "__timberline_hook__"

_native_timers: dict[str, float] = {}


def _write(stream, args: tuple) -> None:
    stream.write(" ".join(str(a) for a in args) + "\n")
    stream.flush()


def _log(*args: Any) -> None:
    _write(sys.stdout, args)


def _warn(*args: Any) -> None:
    _write(sys.stderr, args)


def _error(*args: Any) -> None:
    _write(sys.stderr, args)


def _time_start(label: str = DEFAULT_TIMER_LABEL) -> None:
    _native_timers[label] = _time.perf_counter()


def _time_end(label: str = DEFAULT_TIMER_LABEL) -> None:
    start = _native_timers.pop(label, None)
    if start is not None:
        _write(sys.stdout, (f"{label}: {(_time.perf_counter() - start) * 1000:.3f}ms",))


console = SimpleNamespace(
    log=_log,
    warn=_warn,
    error=_error,
    time=_time_start,
    time_end=_time_end,
)


def method_for_priority(priority: int) -> str:
    """Console method used to print a record of the given priority."""
    if priority == 0:
        return "error"
    if priority == 1:
        return "warn"
    return "log"


class ConsoleHook:
    """
    Process-wide console interception state.

    States: unhooked → hooked. ``hook()`` is idempotent and only retargets
    the wrappers when called again; ``unhook()`` is a no-op when unhooked.
    The backup only ever holds original (non-wrapper) functions.
    """

    def __init__(self, target: SimpleNamespace = console):
        self._target = target
        self._backup: dict[str, Callable] = {}
        self._logger: Any = None
        self._mute: Callable[[str], bool] | None = None
        self._lock = threading.RLock()
        self.is_hooked = False

    # ── State ─────────────────────────────────────────────────────

    def _current(self) -> dict[str, Callable]:
        current = {name: getattr(self._target, name) for name in HOOKABLE_METHODS}
        current[PRINT] = builtins.print
        return current

    def _backup_natives(self) -> None:
        for name, fn in self._current().items():
            if getattr(fn, _WRAPPER_ATTR, False):
                continue
            if self._backup.get(name) is not fn:
                self._backup[name] = fn

    def native(self, name: str) -> Callable:
        """Original function ``name``, bypassing any hook."""
        with self._lock:
            if name in self._backup:
                return self._backup[name]
            return self._current()[name]

    @property
    def logger(self) -> Any:
        return self._logger

    # ── Transitions ───────────────────────────────────────────────

    def hook(self, logger: Any, mute: Callable[[str], bool] | None = None) -> Callable[[], None]:
        """
        Redirect the console to ``logger``. Returns an unhook callable.

        ``mute(method)`` may veto individual calls (they are dropped).
        """
        with self._lock:
            self._logger = logger
            self._mute = mute
            if not self.is_hooked:
                self._backup_natives()
                for name in HOOKABLE_METHODS:
                    setattr(self._target, name, self._wrap(name))
                builtins.print = self._wrap_print()
                self.is_hooked = True

        def unhook() -> None:
            self.unhook()

        return unhook

    def unhook(self) -> None:
        with self._lock:
            if not self.is_hooked:
                return
            for name in HOOKABLE_METHODS:
                setattr(self._target, name, self._backup[name])
            builtins.print = self._backup[PRINT]
            self.is_hooked = False
            self._logger = None
            self._mute = None

    def toggle(self, logger: Any, capture: bool, mute: Callable[[str], bool] | None = None) -> None:
        if capture:
            self.hook(logger, mute)
        elif self._logger is logger or self._logger is None:
            self.unhook()

    # ── Wrappers ──────────────────────────────────────────────────

    def _forward(self, name: str, args: tuple) -> None:
        mute = self._mute
        if mute is not None and mute(name):
            return
        target = getattr(self._logger, name, None) if self._logger is not None else None
        if target is None:
            self._backup[name](*args)
        else:
            target(*args)

    def _wrap(self, name: str) -> Callable:
        def wrapper(*args: Any) -> None:
            self._forward(name, args)

        setattr(wrapper, _WRAPPER_ATTR, True)
        wrapper.__name__ = name
        return wrapper

    def _wrap_print(self) -> Callable:
        original = self._backup[PRINT]

        def wrapper(*args: Any, sep: str | None = " ", end: str | None = "\n", file: Any = None, flush: bool = False) -> None:
            if file is not None and file not in (sys.stdout, sys.stderr):
                original(*args, sep=sep, end=end, file=file, flush=flush)
                return
            text = (" " if sep is None else sep).join(str(a) for a in args)
            self._forward("error" if file is sys.stderr else "log", (text,))

        setattr(wrapper, _WRAPPER_ATTR, True)
        wrapper.__name__ = PRINT
        return wrapper


# One per process: the console is process-global.
CONSOLE_HOOK = ConsoleHook()
