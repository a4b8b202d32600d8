"""
Topic-addressed messaging over a multiprocessing connection.

A Channel wraps one end of a ``multiprocessing.Pipe`` (or any
``multiprocessing.connection.Connection``) and services it on a daemon
listener thread. Two kinds of traffic share the connection:

  - one-way messages:  channel.send(topic, *args)
  - request/reply:     value = channel.request(topic, *args)      # blocks
                       channel.request_async(topic, *args, callback=fn)

Handlers are registered per topic and run on the listener thread. A handler
for a request answers with ``message.reply(value)``, possibly later from
another thread; that is how the coordinator relays a lookup to a second
worker without blocking its own listener.
"""

from __future__ import annotations

import itertools
import logging
import threading
from dataclasses import dataclass, field
from multiprocessing.connection import Connection
from typing import Any, Callable

from timberline.errors import ChannelClosedError, TimberlineError

log = logging.getLogger(__name__)

_SEND = "send"
_REQUEST = "request"
_REPLY = "reply"
_CLOSE = "close"

Handler = Callable[["Message"], None]


@dataclass(frozen=True)
class RemoteError:
    """Reply sent back when a request handler raised."""
    topic: str
    error: str


@dataclass
class Message:
    """An incoming message, as seen by a handler."""
    channel: "Channel"
    topic: str
    args: tuple
    request_id: int | None = None
    _replied: bool = field(default=False, repr=False)

    @property
    def expects_reply(self) -> bool:
        return self.request_id is not None

    def reply(self, value: Any = None) -> None:
        if self.request_id is None or self._replied:
            return
        self._replied = True
        self.channel._send_raw(_REPLY, self.topic, self.request_id, (value,))


class PendingReply:
    """The future side of a request."""

    def __init__(self, topic: str, callback: Callable[[Any, BaseException | None], None] | None = None):
        self.topic = topic
        self._callback = callback
        self._event = threading.Event()
        self._value: Any = None
        self._error: BaseException | None = None

    def _resolve(self, value: Any = None, error: BaseException | None = None) -> None:
        if self._event.is_set():
            return
        self._value, self._error = value, error
        self._event.set()
        if self._callback is not None:
            try:
                self._callback(value, error)
            except Exception:
                log.exception("Reply callback for %s failed", self.topic)

    @property
    def done(self) -> bool:
        return self._event.is_set()

    def result(self) -> Any:
        """Block until the reply arrives. There is no timeout."""
        self._event.wait()
        if self._error is not None:
            raise self._error
        return self._value


class Channel:
    """
    One end of a duplex connection with topic dispatch.

    ``peer_id`` identifies the process on the other end (a worker id on the
    coordinator side, None elsewhere).
    """

    def __init__(self, conn: Connection, name: str = "channel", peer_id: int | None = None):
        self.name = name
        self.peer_id = peer_id
        self._conn = conn
        self._handlers: dict[str, list[tuple[Handler, bool]]] = {}
        self._pending: dict[int, PendingReply] = {}
        self._ids = itertools.count(1)
        self._send_lock = threading.Lock()
        self._state_lock = threading.Lock()
        self._close_callbacks: list[Callable[["Channel"], None]] = []
        self._thread: threading.Thread | None = None
        self._closed = False

    # ── Lifecycle ─────────────────────────────────────────────────

    def start(self) -> "Channel":
        if self._thread is None:
            self._thread = threading.Thread(
                target=self._listen, name=f"timberline-{self.name}", daemon=True
            )
            self._thread.start()
        return self

    @property
    def closed(self) -> bool:
        return self._closed

    def on_close(self, callback: Callable[["Channel"], None]) -> None:
        self._close_callbacks.append(callback)

    def close(self) -> None:
        """Close both ends: the peer is told first so its listener lets go."""
        if self._closed:
            return
        try:
            self._send_raw(_CLOSE, _CLOSE, None, ())
        except ChannelClosedError:
            log.debug("%s: peer already gone", self.name)
        self._close_conn()
        self._mark_closed()

    def _close_conn(self) -> None:
        try:
            self._conn.close()
        except OSError:
            log.debug("%s: connection already closed", self.name)

    def _mark_closed(self) -> None:
        with self._state_lock:
            if self._closed:
                return
            self._closed = True
            pending = list(self._pending.values())
            self._pending.clear()
        for reply in pending:
            reply._resolve(error=ChannelClosedError(f"{self.name} closed before replying to {reply.topic}"))
        for callback in self._close_callbacks:
            try:
                callback(self)
            except Exception:
                log.exception("Close callback for %s failed", self.name)

    # ── Handlers ──────────────────────────────────────────────────

    def on(self, topic: str, handler: Handler) -> None:
        self._handlers.setdefault(topic, []).append((handler, False))

    def once(self, topic: str, handler: Handler) -> None:
        self._handlers.setdefault(topic, []).append((handler, True))

    def remove_all_listeners(self, topic: str | None = None) -> None:
        """Drop the handlers of ``topic``, or of every topic when None."""
        if topic is None:
            self._handlers.clear()
        else:
            self._handlers.pop(topic, None)

    def listener_count(self, topic: str) -> int:
        return len(self._handlers.get(topic, ()))

    # ── Sending ───────────────────────────────────────────────────

    def _send_raw(self, kind: str, topic: str, request_id: int | None, args: tuple) -> None:
        if self._closed:
            raise ChannelClosedError(f"{self.name} is closed")
        try:
            with self._send_lock:
                self._conn.send((kind, topic, request_id, args))
        except (OSError, EOFError, ValueError) as exc:
            self._mark_closed()
            raise ChannelClosedError(f"{self.name}: {exc}") from exc

    def send(self, topic: str, *args: Any) -> None:
        """Fire-and-forget message."""
        self._send_raw(_SEND, topic, None, args)

    def request_async(
        self,
        topic: str,
        *args: Any,
        callback: Callable[[Any, BaseException | None], None] | None = None,
    ) -> PendingReply:
        """Send a request; ``callback(value, error)`` runs when it is answered or fails."""
        request_id = next(self._ids)
        pending = PendingReply(topic, callback)
        with self._state_lock:
            if self._closed:
                pending._resolve(error=ChannelClosedError(f"{self.name} is closed"))
                return pending
            self._pending[request_id] = pending
        try:
            self._send_raw(_REQUEST, topic, request_id, args)
        except ChannelClosedError as exc:
            with self._state_lock:
                self._pending.pop(request_id, None)
            pending._resolve(error=exc)
        return pending

    def request(self, topic: str, *args: Any) -> Any:
        """Send a request and block until the reply arrives."""
        return self.request_async(topic, *args).result()

    # ── Listening ─────────────────────────────────────────────────

    def _listen(self) -> None:
        while not self._closed:
            try:
                kind, topic, request_id, args = self._conn.recv()
            except (EOFError, OSError):
                break
            if kind == _CLOSE:
                self._close_conn()
                break
            if kind == _REPLY:
                self._on_reply(topic, request_id, args[0])
            else:
                self._dispatch(Message(self, topic, args, request_id if kind == _REQUEST else None))
        self._mark_closed()

    def _on_reply(self, topic: str, request_id: int, value: Any) -> None:
        with self._state_lock:
            pending = self._pending.pop(request_id, None)
        if pending is None:
            log.debug("Dropping reply %s for unknown request %s", topic, request_id)
        elif isinstance(value, RemoteError):
            pending._resolve(error=TimberlineError(f"{value.topic} failed remotely: {value.error}"))
        else:
            pending._resolve(value)

    def _dispatch(self, message: Message) -> None:
        entries = self._handlers.get(message.topic)
        try:
            if not entries:
                log.debug("%s: no listener for %s", self.name, message.topic)
                message.reply(None)
                return

            for handler, once in list(entries):
                if once:
                    entries.remove((handler, once))
                try:
                    handler(message)
                except ChannelClosedError:
                    raise
                except Exception as exc:
                    log.exception("%s: handler for %s failed", self.name, message.topic)
                    message.reply(RemoteError(message.topic, repr(exc)))
        except ChannelClosedError:
            log.debug("%s: peer gone while handling %s", self.name, message.topic)
