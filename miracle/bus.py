"""Datagram control-socket bus for talking to wpa_supplicant, with a small event loop."""

from __future__ import annotations

import contextlib
import errno
import itertools
import os
import selectors
import socket
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any, Optional

from miracle.message import MessageType, WpasMessage, parse_message
from miracle.strutil import now_usec

ABSTRACT_PREFIX = "@abstract:"
UNIX_PATH_MAX = 108
CLIENT_PATH_TEMPLATE = "/tmp/.miracle-wpas-{pid}-{counter}"

# Default time a queued message may wait for delivery or its reply, in seconds.
DEFAULT_TIMEOUT = 0.5

# Largest datagram accepted, including room for the terminating NUL.
MAX_LEN = 16384

MatchCallback = Callable[["Wpas", Optional[WpasMessage]], Any]
ReplyCallback = Callable[["Wpas", WpasMessage], Any]

_client_counter = itertools.count(1)


class BusError(OSError):
    """Raised when a bus operation fails; ``errno`` tells why."""


def _error(code: int, message: str) -> BusError:
    return BusError(code, message)


def _socket_address(ctrl_path: str) -> tuple[str, bool]:
    length = len(os.fsencode(ctrl_path))
    if ctrl_path.startswith(ABSTRACT_PREFIX):
        if length > UNIX_PATH_MAX - 12:
            raise _error(errno.EINVAL, f"control path too long: {ctrl_path!r}")
        return "\0" + ctrl_path[len(ABSTRACT_PREFIX):], True
    if length > UNIX_PATH_MAX - 1:
        raise _error(errno.EINVAL, f"control path too long: {ctrl_path!r}")
    return ctrl_path, False


@dataclass(eq=False)
class _Match:
    callback: MatchCallback
    removed: bool = False


class EventLoop:
    """Selector-based loop driving attached buses and their message timeouts."""

    _default: EventLoop | None = None

    def __init__(self) -> None:
        self._selector = selectors.DefaultSelector()
        self._buses: list[Wpas] = []
        self._exit_code: int | None = None

    @classmethod
    def default(cls) -> EventLoop:
        """Return the shared process-wide loop."""
        if cls._default is None:
            cls._default = cls()
        return cls._default

    def __enter__(self) -> EventLoop:
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()

    def add(self, bus: Wpas) -> None:
        """Start watching ``bus``."""
        if bus in self._buses:
            raise _error(errno.EALREADY, "bus is already attached to this loop")
        self._selector.register(bus, selectors.EVENT_READ, bus)
        self._buses.append(bus)

    def remove(self, bus: Wpas) -> None:
        """Stop watching ``bus``; unknown buses are ignored."""
        if bus not in self._buses:
            return
        self._buses.remove(bus)
        with contextlib.suppress(KeyError, ValueError):
            self._selector.unregister(bus)

    def run(self, timeout: float | None = None) -> int:
        """Wait up to ``timeout`` seconds and dispatch what is ready.

        Returns the number of sources dispatched.
        """
        now = now_usec()
        deadline: int | None = None
        for bus in list(self._buses):
            events, due = bus._prepare()
            self._selector.modify(bus, events, bus)
            if due is not None:
                deadline = due if deadline is None else min(deadline, due)

        wait = timeout
        if deadline is not None:
            until = max(0.0, (deadline - now) / 1_000_000)
            wait = until if wait is None else min(wait, until)

        ready = self._selector.select(wait)
        fired = {key.data: mask for key, mask in ready}

        dispatched = 0
        for bus in sorted(self._buses, key=lambda b: b.priority):
            if bus not in self._buses:
                continue
            mask = fired.get(bus, 0)
            if mask:
                bus._handle_io(
                    bool(mask & selectors.EVENT_READ),
                    bool(mask & selectors.EVENT_WRITE),
                )
                dispatched += 1
            if bus not in self._buses:
                continue
            due = bus._deadline()
            if due is not None and due <= now_usec():
                bus._handle_timeout()
                dispatched += 1
        return dispatched

    def loop(self) -> int:
        """Run until :meth:`exit` is called and return its code."""
        while self._exit_code is None:
            self.run()
        code = self._exit_code
        self._exit_code = None
        return code

    def exit(self, code: int = 0) -> None:
        """Ask :meth:`loop` to return ``code`` after the current iteration."""
        self._exit_code = code

    def close(self) -> None:
        """Detach every bus and release the selector."""
        for bus in list(self._buses):
            bus.detach_event()
        self._selector.close()
        if EventLoop._default is self:
            EventLoop._default = None


class Wpas:
    """One end of a wpa_supplicant control socket, as client or server."""

    def __init__(self, ctrl_path: str, server: bool = False) -> None:
        if ctrl_path is None:
            raise _error(errno.EINVAL, "control path is required")
        self.ctrl_path = ctrl_path
        self.server = server
        self.name = ""
        self.peer: str | None = None
        self.priority = 0
        self.dead = False
        self._loop: EventLoop | None = None
        self._matches: list[_Match] = []
        self._queue: list[WpasMessage] = []
        self._cookies = 0
        self._calling = False
        self._sock: socket.socket | None = None

        sock = socket.socket(socket.AF_UNIX, socket.SOCK_DGRAM)
        sock.setblocking(False)
        try:
            if server:
                self._bind_server(sock)
            else:
                self._bind_client(sock)
                self._connect_client(sock)
        except BaseException:
            sock.close()
            self._unlink_name()
            raise
        self._sock = sock

    def __repr__(self) -> str:
        role = "server" if self.server else "client"
        return f"Wpas({self.ctrl_path!r}, {role}, dead={self.dead})"

    def __enter__(self) -> Wpas:
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()

    # socket setup

    def _bind_client(self, sock: socket.socket) -> None:
        name = CLIENT_PATH_TEMPLATE.format(pid=os.getpid(), counter=next(_client_counter))
        name = name[: UNIX_PATH_MAX - 2]
        try:
            sock.bind(name)
        except OSError as exc:
            if exc.errno != errno.EADDRINUSE:
                raise BusError(exc.errno, exc.strerror) from exc
            with contextlib.suppress(OSError):
                os.unlink(name)
            try:
                sock.bind(name)
            except OSError as retry_exc:
                raise BusError(retry_exc.errno, retry_exc.strerror) from retry_exc
        self.name = name

    def _connect_client(self, sock: socket.socket) -> None:
        address, _ = _socket_address(self.ctrl_path)
        try:
            sock.connect(address)
        except OSError as exc:
            raise BusError(exc.errno, exc.strerror) from exc
        self.peer = address

    def _bind_server(self, sock: socket.socket) -> None:
        address, abstract = _socket_address(self.ctrl_path)
        try:
            sock.bind(address)
        except OSError as exc:
            if abstract:
                raise _error(errno.EADDRINUSE, "abstract address in use") from exc
            probe = socket.socket(socket.AF_UNIX, socket.SOCK_DGRAM)
            try:
                probe.connect(address)
                in_use = True
            except OSError:
                in_use = False
            finally:
                probe.close()
            if in_use:
                raise _error(errno.EADDRINUSE, f"{address} is in use") from exc
            with contextlib.suppress(OSError):
                os.unlink(address)
            try:
                sock.bind(address)
            except OSError as bind_exc:
                raise BusError(bind_exc.errno, bind_exc.strerror) from bind_exc
        if not abstract:
            self.name = address

    def _unlink_name(self) -> None:
        if self.name:
            with contextlib.suppress(OSError):
                os.unlink(self.name)
            self.name = ""

    def _close_socket(self) -> None:
        if self._sock is not None:
            self._sock.close()
            self._sock = None
        self._unlink_name()

    # public interface

    @property
    def loop(self) -> EventLoop | None:
        """The loop this bus is attached to, if any."""
        return self._loop

    @property
    def pending(self) -> int:
        """Number of messages waiting to be sent or answered."""
        return len(self._queue)

    def fileno(self) -> int:
        return self._sock.fileno() if self._sock is not None else -1

    def close(self) -> None:
        """Detach, close the socket, remove its file and drop all state."""
        self.detach_event()
        self._close_socket()
        for message in self._queue:
            message.queued = False
        self._queue.clear()
        self._matches.clear()

    def _link(self, message: WpasMessage, timeout: float | None) -> None:
        message.timeout = now_usec() + int((timeout or DEFAULT_TIMEOUT) * 1_000_000)
        message.queued = True
        self._queue.append(message)

    def _unlink(self, message: WpasMessage) -> None:
        self._queue.remove(message)
        message.queued = False

    def _current(self) -> WpasMessage | None:
        return self._queue[0] if self._queue else None

    def _check_owned(self, message: WpasMessage) -> None:
        if message is None or message.bus is not self:
            raise _error(errno.EINVAL, "message does not belong to this bus")
        if message.queued or message.sent:
            raise _error(errno.EALREADY, "message is already queued or sent")

    def call_async(
        self,
        message: WpasMessage,
        callback: ReplyCallback | None = None,
        timeout: float | None = None,
    ) -> int:
        """Queue a request and call ``callback(bus, reply)`` when answered.

        Returns the cookie identifying the call.
        """
        self._check_owned(message)
        if self.server or message.type != MessageType.REQUEST or message.has_peer:
            raise _error(errno.EINVAL, "only unaddressed requests can be called")

        message.peer = self.peer
        message.seal()
        message.callback = callback
        self._cookies += 1
        message.cookie = self._cookies
        self._link(message, timeout)
        return message.cookie

    def cancel_call(self, cookie: int) -> None:
        """Forget a pending call; a reply that still arrives is dropped."""
        if not cookie:
            return
        for message in self._queue:
            if message.cookie != cookie:
                continue
            if message.sent:
                message.removed = True
            else:
                self._unlink(message)
            return

    def send(self, message: WpasMessage, timeout: float | None = None) -> None:
        """Queue a message that expects no reply."""
        self._check_owned(message)
        if not message.has_peer and self.server:
            raise _error(errno.EINVAL, "server messages need a peer")

        if not message.has_peer:
            if message.sealed:
                message._peer = self.peer
            else:
                message.peer = self.peer
        message.seal()
        message.callback = None
        message.cookie = 0
        self._link(message, timeout)

    def attach_event(self, loop: EventLoop | None = None, priority: int = 0) -> None:
        """Let ``loop`` (or the default loop) drive this bus."""
        if self.dead:
            raise _error(errno.ENOTCONN, "bus is dead")
        if self._loop is not None:
            raise _error(errno.EALREADY, "bus is already attached")
        loop = loop if loop is not None else EventLoop.default()
        self.priority = priority
        loop.add(self)
        self._loop = loop

    def detach_event(self) -> None:
        """Stop being driven by the loop."""
        if self._loop is None:
            return
        self._loop.remove(self)
        self._loop = None

    def add_match(self, callback: MatchCallback) -> None:
        """Register ``callback(bus, message)`` for incoming messages and hang-ups.

        A truthy return value stops further callbacks for that message.
        """
        if callback is None:
            raise _error(errno.EINVAL, "callback is required")
        self._matches.append(_Match(callback))

    def remove_match(self, callback: MatchCallback) -> None:
        """Remove the most recently added registration of ``callback``."""
        if callback is None:
            return
        for match in reversed(self._matches):
            if match.callback == callback and not match.removed:
                if self._calling:
                    match.removed = True
                else:
                    self._matches.remove(match)
                return

    # loop hooks

    def _call_matches(self, message: WpasMessage | None) -> None:
        self._calling = True
        try:
            for match in list(self._matches):
                if match.callback(self, message):
                    break
        finally:
            self._calling = False
        self._matches = [match for match in self._matches if not match.removed]

    def _hup(self) -> None:
        if self.dead:
            return
        self.detach_event()
        self._close_socket()
        self.dead = True
        self._call_matches(None)

    def _deadline(self) -> int | None:
        current = self._current()
        return current.timeout if current is not None else None

    def _prepare(self) -> tuple[int, int | None]:
        current = self._current()
        events = selectors.EVENT_READ
        if current is not None and not current.sent:
            events |= selectors.EVENT_WRITE
        return events, self._deadline()

    def _write(self) -> None:
        current = self._current()
        if current is None or current.sent:
            return
        data = (current.raw or "").encode("utf-8", errors="surrogateescape")
        if data:
            if self.server:
                sent = self._sock.sendto(data, current.peer)
            else:
                sent = self._sock.send(data)
            if not sent:
                raise BlockingIOError(errno.EAGAIN, "nothing sent")
        current.sent = True
        if not current.cookie:
            self._unlink(current)

    def _read(self) -> bool:
        data, address = self._sock.recvfrom(MAX_LEN - 1)
        if not data:
            return False
        if isinstance(address, bytes):
            source = address.decode("utf-8", errors="surrogateescape")
        else:
            source = address or ""
        message = parse_message(self, data, source, self.server)

        if message.type == MessageType.REPLY:
            current = self._current()
            if current is None or not current.sent:
                return True
            self._unlink(current)
            if not current.removed and current.callback is not None:
                current.callback(self, message)
        else:
            self._call_matches(message)
        return True

    def _handle_io(self, readable: bool, writable: bool) -> None:
        write_failed = False
        if writable:
            try:
                self._write()
            except (BlockingIOError, InterruptedError):
                pass
            except OSError:
                write_failed = True

        if readable or write_failed:
            try:
                if self._read():
                    return
            except (BlockingIOError, InterruptedError):
                pass
            except OSError:
                self._hup()
                return

        if write_failed:
            self._hup()

    def _handle_timeout(self) -> None:
        # A reply may still arrive late and replies carry no serial, so the
        # only safe reaction to a timeout is to give up on the connection.
        if self._current() is None:
            return
        self._hup()


def open_client(ctrl_path: str) -> Wpas:
    """Connect to the control socket at ``ctrl_path``."""
    return Wpas(ctrl_path, server=False)


def create_server(ctrl_path: str) -> Wpas:
    """Listen on a control socket at ``ctrl_path``."""
    return Wpas(ctrl_path, server=True)