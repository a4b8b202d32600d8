"""
Exception hierarchy.

Configuration problems are always raised synchronously to the caller that
triggered them. Relay and forwarding failures between processes are
recovered internally and only surface as ChannelClosedError inside the
messaging layer.
"""


class TimberlineError(Exception):
    """Base class for every error raised by timberline."""


class ConfigurationError(TimberlineError, ValueError):
    """Unresolvable logger name, unknown level, malformed level table or default."""


class CoordinatorOnlyError(TimberlineError, PermissionError):
    """A worker-side logger attempted a coordinator-only operation."""


class ChannelClosedError(TimberlineError):
    """The peer end of a channel is gone."""
