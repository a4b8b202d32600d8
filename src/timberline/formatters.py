"""
Record formatting.

Turns a logger context plus the raw call arguments into a printable line:
  - plain:  "[ts]   a [coordinator]   › message"
  - pretty: same layout with ANSI colors for name, side, separator and,
            in ``prettify="all"`` mode, the message itself.

``stringify`` is the value pretty-printer used for non-string arguments.
"""

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Iterable

from timberline.colors import dim, paint
from timberline.constants import BLANK

INDENT = BLANK * 2

# Colors used by stringify(prettify=True).
_GRAY = "#808080"
_CYAN = "#00AAAA"
_BLUE = "#5555FF"
_GREEN = "#00AA00"
_YELLOW = "#AAAA00"


@dataclass(frozen=True)
class Context:
    """Precomputed prefix of every line a logger prints."""
    plain: str
    pretty: str


def build_context(
    name: str,
    side_label: str,
    pads: tuple[str, str],
    name_color: str,
    side_color: str,
) -> Context:
    left, right = pads
    return Context(
        plain=f"{left}{name} [{side_label}]{right}",
        pretty=f"{left}{paint(name_color, name)} [{paint(side_color, side_label)}]{right}",
    )


def format_timestamp(mode: str | bool) -> str:
    now = datetime.now(timezone.utc)
    if mode == "iso":
        return now.isoformat(timespec="milliseconds")
    if mode == "time":
        return now.astimezone().strftime("%H:%M:%S")
    raise ValueError(f"Unsupported value provided for option 'timestamp': {mode!r}")


def join_message(args: Iterable[Any]) -> str:
    """Message text used for ``ignore`` matching and plain rendering."""
    return BLANK.join(a if isinstance(a, str) else stringify(a) for a in args)


def render_plain(context: Context, options: dict, args: tuple) -> str:
    parts = []
    if options.get("timestamp"):
        parts.append(f"[{format_timestamp(options['timestamp'])}]")
    parts.append(f"{context.plain} {options['separator']}")
    message = join_message(args)
    if message:
        parts.append(message)
    return BLANK.join(parts)


def render_pretty(context: Context, options: dict, level_color: str, args: tuple) -> str:
    parts = []
    if options.get("timestamp"):
        parts.append(dim(f"[{format_timestamp(options['timestamp'])}]"))
    parts.append(f"{context.pretty} {paint(level_color, options['separator'])}")
    if options.get("prettify") == "all":
        parts.extend(
            paint(level_color, a) if isinstance(a, str) else stringify(a, prettify=True)
            for a in args
        )
    else:
        message = join_message(args)
        if message:
            parts.append(message)
    return BLANK.join(parts)


def stringify(item: Any, prettify: bool = False, pads: str = "") -> str:
    """
    Render a value for display.

    Mappings and sequences are printed one key per line, keys right-aligned;
    mapping keys are sorted. Scalars get a color per type when ``prettify``.
    """
    def color(c: str, text: str) -> str:
        return paint(c, text) if prettify else text

    if isinstance(item, (dict, list, tuple)):
        is_mapping = isinstance(item, dict)
        if is_mapping:
            keys = sorted(item, key=str)
            entries = [(str(k), item[k]) for k in keys]
            opening, ending = "{", "}"
        else:
            entries = [(str(i), v) for i, v in enumerate(item)]
            opening, ending = "[", "]"

        if not entries:
            return color(_GRAY, opening + ending)

        max_length = max(len(k) for k, _ in entries) + 1
        child_pads = pads + BLANK * max_length + BLANK + INDENT
        lines = []
        for key, value in entries:
            padded_key = pads + INDENT + f"{key}:".rjust(max_length)
            lines.append(f"{color(_GRAY, padded_key)} {stringify(value, prettify, child_pads)}\n")
        if pads:
            ending = pads + ending
        return color(_GRAY, opening) + "\n" + "".join(lines) + color(_GRAY, ending)

    if isinstance(item, bool):
        return color(_CYAN, str(item))
    if isinstance(item, (int, float)):
        return color(_BLUE, str(item))
    if isinstance(item, str):
        return color(_GREEN, item)
    if item is None:
        return color(_YELLOW, str(item))
    return str(item)
