"""
Shared constants: channel topics, sides, default logger and timer settings.
"""

from enum import Enum

BLANK = " "

DEFAULT_LOGGER = "timberline"
DEFAULT_TIMER_LABEL = "default"
TIMER_LEVEL = "info"

# Methods swapped by the console hook, in the order they are backed up.
HOOKABLE_METHODS = ("log", "warn", "error", "time", "time_end")

# Worker ids are padded to this many digits in the side column.
PAD_WORKER_ID_DIGITS = 2

# WCAG AA minimum contrast for level colors against the theme background.
MIN_CONTRAST_RATIO = 4.5
DARK_BACKGROUND = "#242424"
LIGHT_BACKGROUND = "#FFFFFF"

ENV_LOGGERS = "TIMBERLINE_LOGGERS"
ENV_CONFIG = "TIMBERLINE_CONFIG"

PROJECT_FILE = "pyproject.toml"


class Side(str, Enum):
    COORDINATOR = "coordinator"
    WORKER = "worker"


SIDE_COLUMN_WIDTH = max(
    len(Side.COORDINATOR.value),
    len(Side.WORKER.value) + 1 + PAD_WORKER_ID_DIGITS,
)


class IdentityState(str, Enum):
    """Reconciliation state of a logger instance against same-named peers."""
    UNREGISTERED = "unregistered"
    AWAITING_SHARED = "awaiting_shared"
    CONVERGED = "converged"


# ── Channel topics ────────────────────────────────────────────────

_PREFIX = "__TIMBERLINE_"


def _topic(name: str) -> str:
    return f"{_PREFIX}{name}__"


class Topic:
    """Channel topics, namespaced so they never collide with host topics."""
    PREFIX = _PREFIX

    # Records redirected to the collector process.
    COLLECTOR = _topic("COLLECTOR")

    # Blocking settings lookup made by a worker logger on construction.
    CONFIG = _topic("LOGGER_CONFIG")

    # Coordinator asking a worker for the settings of one of its loggers.
    CONFIG_RELAY = _topic("LOGGER_CONFIG_RELAY")

    # Blocking read of the global defaults from a worker.
    DEFAULTS = _topic("DEFAULTS")

    # Worker about to exit; drop its ids from the registry.
    REMOVE_WORKER = _topic("REMOVE_WORKER_LOGGER")

    # New level table for every instance sharing a logger name.
    SET_LEVELS = _topic("SET_LEVELS")

    # Rebuild notice for cached presentation state.
    UPDATE = _topic("UPDATE")

    # Coordinator asking one worker to relay a rebuild notice to observers.
    RELAY_OBSERVERS = _topic("RELAY_OBSERVERS")

    # Rebuild notice as seen by observers, which have no worker id.
    UPDATE_OBSERVERS = _topic("UPDATE_OBSERVERS")
