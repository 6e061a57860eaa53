"""Messages exchanged with wpa_supplicant over its control socket."""

from __future__ import annotations

import re
from collections.abc import Iterator
from enum import IntEnum
from typing import Any

from miracle.strutil import qstr_join, qstr_tokenize, strsplit

TYPE_STRING = "s"
TYPE_INT32 = "i"
TYPE_UINT32 = "u"
TYPE_DICT = "e"

# Longest socket path a peer can carry, excluding the terminating NUL.
PEER_MAX = 107

_INT_RE = re.compile(r"\s*([+-]?)(\d+)")


class MessageType(IntEnum):
    """Kind of a control-socket message."""

    UNKNOWN = 0
    EVENT = 1
    REQUEST = 2
    REPLY = 3


class Level(IntEnum):
    """Severity level carried by an event."""

    UNKNOWN = 0
    MSGDUMP = 1
    DEBUG = 2
    INFO = 3
    WARNING = 4
    ERROR = 5


class MessageError(ValueError):
    """Raised for invalid message construction or access."""


class MessageSealedError(MessageError):
    """Raised when a sealed message is modified."""


def _to_int32(value: int) -> int:
    return ((value + (1 << 31)) % (1 << 32)) - (1 << 31)


def _to_uint32(value: int) -> int:
    return value & 0xFFFFFFFF


def _scan_int(text: str, signed: bool) -> int | None:
    match = _INT_RE.match(text)
    if not match:
        return None
    value = int(match.group(2))
    if match.group(1) == "-":
        value = -value
    return _to_int32(value) if signed else _to_uint32(value)


def _convert(entry: str, type_: str) -> Any:
    if type_ == TYPE_STRING:
        return entry
    if type_ in (TYPE_INT32, TYPE_UINT32):
        value = _scan_int(entry, type_ == TYPE_INT32)
        if value is None:
            raise MessageError(f"{entry!r} is not an integer")
        return value
    raise MessageError(f"unsupported type {type_!r}")


def _normalize_peer(peer: str) -> str:
    if peer.startswith("\0"):
        rest = peer[1:].split("\0", 1)[0]
        return "\0" + rest[: PEER_MAX - 1]
    return peer.split("\0", 1)[0][:PEER_MAX]


class WpasMessage:
    """A single event, request or reply on a control socket."""

    def __init__(
        self,
        bus: Any,
        name: str | None = None,
        type_: MessageType = MessageType.UNKNOWN,
        level: int = 0,
    ) -> None:
        if bus is None:
            raise MessageError("message requires a bus")
        self.bus = bus
        self.type = type_
        self.name = name
        self._level = level
        self.argv: list[str] = [name] if name is not None else []
        self.iter = 1 if name is not None else 0
        self.raw: str | None = None
        self.ifname: str | None = None
        self._peer: str | None = None
        self.sealed = False
        # bookkeeping used by the bus while the message is queued
        self.cookie = 0
        self.timeout = 0
        self.callback = None
        self.queued = False
        self.sent = False
        self.removed = False

    def __repr__(self) -> str:
        return (
            f"WpasMessage(type={self.type.name}, name={self.name!r}, "
            f"args={self.args!r}, sealed={self.sealed})"
        )

    @property
    def args(self) -> list[str]:
        """Arguments after the name, if any."""
        return self.argv[1:] if self.name is not None else list(self.argv)

    @property
    def level(self) -> int:
        """Event level, or Level.UNKNOWN for non-events."""
        if self.type == MessageType.EVENT:
            return self._level
        return Level.UNKNOWN

    @property
    def peer(self) -> str | None:
        """Socket address of the peer; abstract addresses start with NUL."""
        return self._peer

    @peer.setter
    def peer(self, value: str | None) -> None:
        if self.sealed:
            raise MessageSealedError("cannot change the peer of a sealed message")
        self._peer = None if value is None else _normalize_peer(value)

    @property
    def has_peer(self) -> bool:
        return self._peer is not None

    def _name_matches(self, name: str | None) -> bool:
        if name is None:
            return True
        return self.name is not None and self.name.lower() == name.lower()

    def is_event(self, name: str | None = None) -> bool:
        """Whether this is an event, optionally with the given name."""
        return self.type == MessageType.EVENT and self._name_matches(name)

    def is_request(self, name: str | None = None) -> bool:
        """Whether this is a request, optionally with the given name."""
        return self.type == MessageType.REQUEST and self._name_matches(name)

    def is_reply(self) -> bool:
        return self.type == MessageType.REPLY

    def is_ok(self) -> bool:
        return self.is_reply() and self.raw == "OK\n"

    def is_fail(self) -> bool:
        return self.is_reply() and self.raw == "FAIL\n"

    def escaped_peer(self) -> str:
        """Printable form of the peer address."""
        if self._peer is None:
            return "<none>"
        if self._peer.startswith("\0"):
            return "@abstract:" + self._peer[1:]
        return self._peer

    def _append_one(self, type_: str, values: Iterator[Any]) -> None:
        def take() -> Any:
            try:
                return next(values)
            except StopIteration:
                raise MessageError(f"missing value for type {type_!r}") from None

        if type_ == TYPE_STRING:
            value = take()
            if value is None:
                raise MessageError("string value must not be None")
            entry = str(value)
        elif type_ in (TYPE_INT32, TYPE_UINT32):
            value = take()
            if isinstance(value, bool) or not isinstance(value, int):
                raise MessageError(f"{value!r} is not an integer")
            entry = str(_to_int32(value) if type_ == TYPE_INT32 else _to_uint32(value))
        elif type_ == TYPE_DICT:
            key = take()
            val = take()
            if key is None or val is None:
                raise MessageError("dict key and value must not be None")
            entry = f"{key}={val}"
        else:
            raise MessageError(f"unsupported type {type_!r}")
        self.argv.append(entry)

    def append_basic(self, type_: str, *args: Any) -> None:
        """Append one argument of the given type."""
        self.append(type_, *args) if len(type_) == 1 else self._bad_type(type_)

    @staticmethod
    def _bad_type(type_: str) -> None:
        raise MessageError(f"unsupported type {type_!r}")

    def append(self, types: str, *args: Any) -> None:
        """Append one argument per character of ``types``, taking values from ``args``."""
        if self.sealed:
            raise MessageSealedError("cannot append to a sealed message")
        values = iter(args)
        for type_ in types:
            self._append_one(type_, values)
        if next(values, _SENTINEL) is not _SENTINEL:
            raise MessageError("too many values for the given types")

    def seal(self) -> None:
        """Build the raw wire form; afterwards the message cannot change."""
        if self.sealed:
            return
        raw = qstr_join(self.argv)
        if self.type == MessageType.EVENT:
            raw = f"<{self._level}>{raw}"
        self.raw = raw
        self.sealed = True

    def _current(self) -> str:
        if self.iter >= len(self.argv):
            raise MessageError("no more arguments")
        return self.argv[self.iter]

    def read_basic(self, type_: str) -> Any:
        """Read the next argument as ``type_`` and advance."""
        entry = self._current()
        if type_ == TYPE_DICT:
            _, sep, value = entry.partition("=")
            if not sep:
                raise MessageError(f"{entry!r} is not a key=value pair")
            result: Any = value
        else:
            result = _convert(entry, type_)
        self.iter += 1
        return result

    def read(self, types: str) -> tuple[Any, ...]:
        """Read one argument per character of ``types``."""
        return tuple(self.read_basic(type_) for type_ in types)

    def skip_basic(self, type_: str) -> None:
        """Validate the next argument as ``type_`` and advance past it."""
        self.read_basic(type_)

    def skip(self, types: str) -> None:
        for type_ in types:
            self.skip_basic(type_)

    def rewind(self) -> None:
        """Restart reading at the first argument."""
        self.iter = 1 if self.name is not None else 0

    def argv_read(self, pos: int, type_: str) -> Any:
        """Read the argument at ``pos`` (not counting the name) as ``type_``."""
        if pos < 0:
            raise MessageError(f"invalid position {pos}")
        if self.name is not None:
            pos += 1
        if pos >= len(self.argv):
            raise MessageError(f"no argument at position {pos}")
        return _convert(self.argv[pos], type_)

    def dict_read(self, name: str, type_: str) -> Any:
        """Read the value of the ``name=value`` argument as ``type_``.

        Raises KeyError if no argument has that key.
        """
        if name is None:
            raise MessageError("dict key must not be None")
        for entry in self.args:
            key, sep, value = entry.partition("=")
            if sep and key == name:
                return _convert(value, type_)
        raise KeyError(name)


_SENTINEL = object()


def _check_name(name: str | None) -> str:
    if not name:
        raise MessageError("message name must not be empty")
    return name


def new_event(bus: Any, name: str, level: int) -> WpasMessage:
    """Create an event message."""
    return WpasMessage(bus, _check_name(name), MessageType.EVENT, _to_uint32(level))


def new_request(bus: Any, name: str) -> WpasMessage:
    """Create a request message."""
    return WpasMessage(bus, _check_name(name), MessageType.REQUEST)


def new_reply(bus: Any) -> WpasMessage:
    """Create an empty reply message."""
    return WpasMessage(bus, None, MessageType.REPLY)


def new_reply_for(bus: Any, request: WpasMessage) -> WpasMessage:
    """Create a reply addressed to the sender of ``request``."""
    if request is None or not request.has_peer:
        raise MessageError("request has no peer to reply to")
    reply = new_reply(bus)
    reply.peer = request.peer
    return reply


def parse_message(
    bus: Any, raw: str | bytes, source: str | None, is_server: bool
) -> WpasMessage:
    """Parse a received datagram into a sealed message.

    Clients split replies on newlines and tokenize events; servers tokenize
    everything as requests.
    """
    if isinstance(raw, bytes):
        raw = raw.decode("utf-8", errors="surrogateescape")
    orig_raw = raw

    ifname = None
    if raw.startswith("IFNAME="):
        rest = raw[len("IFNAME="):]
        ifname, sep, remainder = rest.partition(" ")
        raw = remainder if sep else ""

    is_event = raw.startswith("<")
    if not is_server and not is_event:
        args = strsplit(raw, "\n")
    else:
        args = qstr_tokenize(raw)

    message: WpasMessage | None = None
    if not is_server and is_event:
        if args:
            head = args[0]
            close = head.find(">")
            if close >= 0 and close + 1 < len(head):
                level = _scan_int(head[1:close], True) or 0
                message = new_event(bus, head[close + 1:], level)
                message.append("s" * (len(args) - 1), *args[1:])
    elif not is_server:
        message = new_reply(bus)
        message.append("s" * len(args), *args)
    elif args and args[0]:
        message = new_request(bus, args[0])
        message.append("s" * (len(args) - 1), *args[1:])

    if message is None:
        message = WpasMessage(bus, "")

    message.raw = orig_raw
    message.ifname = ifname
    message._peer = None if source is None else _normalize_peer(source)
    message.sealed = True
    return message