"""
Line splitting for byte or text streams.
"""

import io
import threading
from typing import Callable, IO, Iterator


def iter_lines(stream: IO) -> Iterator[str]:
    """Yield each line of ``stream`` without its line terminator, decoding bytes as UTF-8."""
    if not isinstance(stream, io.TextIOBase) and "b" in getattr(stream, "mode", "b"):
        stream = io.TextIOWrapper(stream, encoding="utf-8", errors="replace")
    for line in stream:
        yield line.rstrip("\r\n")


def follow(stream: IO, on_line: Callable[[str], None], name: str = "timberline-stream") -> threading.Thread:
    """Call ``on_line`` for every line of ``stream`` on a daemon thread."""
    def pump() -> None:
        for line in iter_lines(stream):
            on_line(line)

    thread = threading.Thread(target=pump, name=name, daemon=True)
    thread.start()
    return thread
