"""Build and send Wi-Fi Display UIBC generic input packets."""

from __future__ import annotations

import logging
import math
import re
import socket
import sys
from collections.abc import Callable
from dataclasses import dataclass
from enum import IntEnum

log = logging.getLogger(__name__)

# Generic input header: UIBC header (4 octets) plus generic body header (3 octets).
GENERIC_HEADER_LEN = 7

# Longest line accepted from standard input, as with a 255-byte line buffer.
MAX_LINE = 254

_ATOI_RE = re.compile(r"\s*([+-]?\d+)")
_KEY_CODE_RE = re.compile(r"\s*0x([0-9a-fA-F]{1,4})")


class UibcMessageType(IntEnum):
    """Generic input event categories."""

    GENERIC_TOUCH_DOWN = 0
    GENERIC_TOUCH_UP = 1
    GENERIC_TOUCH_MOVE = 2
    GENERIC_KEY_DOWN = 3
    GENERIC_KEY_UP = 4
    GENERIC_ZOOM = 5
    GENERIC_VERTICAL_SCROLL = 6
    GENERIC_HORIZONTAL_SCROLL = 7
    GENERIC_ROTATE = 8


@dataclass
class UibcMessage:
    """An encoded UIBC packet."""

    data: bytes = b""
    valid: bool = False

    def __len__(self) -> int:
        return len(self.data)


def _atoi(text: str) -> int:
    match = _ATOI_RE.match(text)
    return int(match.group(1)) if match else 0


def split_fields(text: str, delim: str = ",") -> list[str]:
    """Split ``text`` on the first character of ``delim``.

    Empty fields are kept, but a single trailing empty field after a final
    delimiter is not counted. An empty string yields one empty field.
    """
    if not delim:
        raise ValueError("delimiter must not be empty")
    sep = delim[0]
    fields = text.split(sep)
    if text and text.endswith(sep):
        fields.pop()
    return fields


def int_to_binary(value: int, padding: int) -> str:
    """Render ``value`` as bits from 2**padding down to 1.

    The result has ``padding + 1`` digits, widened if ``value`` needs more.
    """
    min_padding = math.floor(math.log2(value)) if value > 0 else 0
    padding = max(padding, min_padding)
    return "".join("1" if value & (1 << bit) else "0" for bit in range(padding, -1, -1))


def _dump(data: bytes, per_line: int, render: Callable[[int], str]) -> str:
    lines = []
    for start in range(0, len(data), per_line):
        chunk = data[start:start + per_line]
        cells = "".join(render(byte) + " " for byte in chunk)
        lines.append(f"{start:04d}: {cells}\n")
    return "".join(lines)


def hexdump(data: bytes) -> str:
    """Format ``data`` as hex, sixteen bytes per line with a decimal offset."""
    return _dump(bytes(data), 16, lambda byte: f"{byte:02x}")


def binarydump(data: bytes) -> str:
    """Format ``data`` as bits, eight bytes per line with a decimal offset."""
    return _dump(bytes(data), 8, lambda byte: int_to_binary(byte, 8))


def _header(buffer: bytearray, body_len: int, type_id: int, generic_len: int) -> None:
    buffer[0] = 0x00  # version, T bit, reserved
    buffer[1] = 0x00  # reserved, input category
    buffer[2] = (body_len >> 8) & 0xFF
    buffer[3] = body_len & 0xFF
    buffer[4] = type_id & 0xFF
    buffer[5] = (generic_len >> 8) & 0xFF
    buffer[6] = generic_len & 0xFF


def touch_packet(
    event_desc: str, width_ratio: float = 1.0, height_ratio: float = 1.0
) -> UibcMessage:
    """Encode ``"typeId,count,id1,x1,y1,id2,x2,y2,..."`` as a touch packet.

    Coordinates are divided by the given ratios. Raises ValueError for a
    malformed description.
    """
    log.info("touch packet (%s)", event_desc)
    fields = split_fields(event_desc, ",")
    size = len(fields)
    if size - 5 < 0 or (size - 5) % 3 != 0:
        log.error("touch packet (%s): bad input event", event_desc)
        raise ValueError(f"bad touch event: {event_desc!r}")

    type_id = _atoi(fields[0])
    pointers = _atoi(fields[1])
    if pointers < 0 or 2 + pointers * 3 > size:
        log.error("touch packet (%s): bad pointer count", event_desc)
        raise ValueError(f"bad pointer count in touch event: {event_desc!r}")

    generic_len = pointers * 5 + 1
    body_len = generic_len + GENERIC_HEADER_LEN
    if body_len % 2:
        body_len += 1

    buffer = bytearray(body_len)
    _header(buffer, body_len, type_id, generic_len)
    buffer[7] = pointers & 0xFF

    log.info("touch packet pointers=[%d]", pointers)
    for index in range(pointers):
        pointer_id, x_text, y_text = fields[2 + index * 3:5 + index * 3]
        offset = 8 + index * 5
        pointer = _atoi(pointer_id)
        x = int(_atoi(x_text) / width_ratio)
        y = int(_atoi(y_text) / height_ratio)
        log.info("touch packet pointer=[%d] x=[%d] y=[%d]", pointer, x, y)
        buffer[offset] = pointer & 0xFF
        buffer[offset + 1] = (x >> 8) & 0xFF
        buffer[offset + 2] = x & 0xFF
        buffer[offset + 3] = (y >> 8) & 0xFF
        buffer[offset + 4] = y & 0xFF

    log.debug("touch packet:\n%s", binarydump(buffer))
    return UibcMessage(bytes(buffer), True)


def _scan_key_code(text: str) -> int | None:
    match = _KEY_CODE_RE.match(text)
    return int(match.group(1), 16) if match else None


def key_packet(event_desc: str) -> UibcMessage:
    """Encode ``"typeId,0xKEY1,0xKEY2"`` as a key packet.

    A key code that cannot be read repeats the previous one. Raises
    ValueError if the field count is not a multiple of three.
    """
    log.info("key packet (%s)", event_desc)
    fields = split_fields(event_desc, ",")
    if len(fields) % 3 != 0:
        log.error("key packet (%s): bad input event", event_desc)
        raise ValueError(f"bad key event: {event_desc!r}")

    generic_len = 5
    body_len = generic_len + GENERIC_HEADER_LEN
    buffer = bytearray(body_len)
    _header(buffer, body_len, _atoi(fields[0]), generic_len)
    buffer[7] = 0x00  # reserved

    code = 0
    for index, slot in ((1, 8), (2, 10)):
        scanned = _scan_key_code(fields[index])
        if scanned is not None:
            code = scanned
        log.info("key packet key code %d=[%d]", index, code)
        buffer[slot] = (code >> 8) & 0xFF
        buffer[slot + 1] = code & 0xFF

    log.debug("key packet:\n%s", binarydump(buffer))
    return UibcMessage(bytes(buffer), True)


def zoom_packet(event_desc: str) -> UibcMessage:
    """Encode ``"typeId,x,y,integer,fraction"`` as a zoom packet.

    The y coordinate is read but, as on the wire format's reference sender,
    not written; its two octets stay zero.
    """
    log.info("zoom packet (%s)", event_desc)
    fields = split_fields(event_desc, ",")
    generic_len = 6
    body_len = generic_len + GENERIC_HEADER_LEN
    buffer = bytearray(body_len)
    _header(buffer, body_len, _atoi(fields[0]), generic_len)

    if len(fields) > 1:
        x = _atoi(fields[1])
        buffer[7] = (x >> 8) & 0xFF
        buffer[8] = x & 0xFF
        log.info("zoom packet x=[%d]", x)
    if len(fields) > 2:
        log.info("zoom packet y=[%d]", _atoi(fields[2]))
    if len(fields) > 3:
        buffer[11] = _atoi(fields[3]) & 0xFF
    if len(fields) > 4:
        buffer[12] = _atoi(fields[4]) & 0xFF
    return UibcMessage(bytes(buffer), True)


def scale_packet(event_desc: str) -> UibcMessage:
    """Encode ``"typeId,unit,direction,amount"`` as a scroll packet."""
    log.info("scale packet (%s)", event_desc)
    fields = split_fields(event_desc, ",")
    generic_len = 2
    body_len = generic_len + GENERIC_HEADER_LEN
    buffer = bytearray(body_len)
    _header(buffer, body_len, _atoi(fields[0]), generic_len)

    if len(fields) > 1:
        buffer[7] = (_atoi(fields[1]) >> 8) & 0xFF
    if len(fields) > 2:
        buffer[7] |= (_atoi(fields[2]) >> 10) & 0xFF
    if len(fields) > 3:
        amount = _atoi(fields[3])
        buffer[7] |= (amount >> 12) & 0xFF
        buffer[8] = amount & 0xFF
    return UibcMessage(bytes(buffer), True)


def rotate_packet(event_desc: str) -> UibcMessage:
    """Encode ``"typeId,integer,fraction"`` as a rotate packet."""
    log.info("rotate packet (%s)", event_desc)
    fields = split_fields(event_desc, ",")
    generic_len = 2
    body_len = generic_len + GENERIC_HEADER_LEN
    buffer = bytearray(body_len)
    _header(buffer, body_len, _atoi(fields[0]), generic_len)

    if len(fields) > 1:
        buffer[7] = _atoi(fields[1]) & 0xFF
    if len(fields) > 2:
        buffer[8] = _atoi(fields[2]) & 0xFF
    return UibcMessage(bytes(buffer), True)


def build_uibc_message(
    type_: UibcMessageType,
    event_desc: str,
    width_ratio: float = 1.0,
    height_ratio: float = 1.0,
) -> UibcMessage:
    """Encode ``event_desc`` according to the event category ``type_``."""
    type_ = UibcMessageType(type_)
    if type_ in (
        UibcMessageType.GENERIC_TOUCH_DOWN,
        UibcMessageType.GENERIC_TOUCH_UP,
        UibcMessageType.GENERIC_TOUCH_MOVE,
    ):
        return touch_packet(event_desc, width_ratio, height_ratio)
    if type_ in (UibcMessageType.GENERIC_KEY_DOWN, UibcMessageType.GENERIC_KEY_UP):
        return key_packet(event_desc)
    if type_ == UibcMessageType.GENERIC_ZOOM:
        return zoom_packet(event_desc)
    if type_ in (
        UibcMessageType.GENERIC_VERTICAL_SCROLL,
        UibcMessageType.GENERIC_HORIZONTAL_SCROLL,
    ):
        return scale_packet(event_desc)
    return rotate_packet(event_desc)


def send_uibc_message(message: UibcMessage, sock: socket.socket) -> int:
    """Write the packet to ``sock`` and return the number of bytes sent."""
    print(f"sending {len(message.data)} bytes")
    sock.sendall(message.data)
    return len(message.data)


_TOUCH_TYPES = "01"
_KEY_TYPES = "34"


def main(argv: list[str] | None = None) -> int:
    """Read events from standard input and send them to a UIBC server."""
    logging.basicConfig(level=logging.INFO)
    args = sys.argv[1:] if argv is None else list(argv)

    if len(args) < 2:
        print("Usage:", file=sys.stderr)
        print("   miracle-uibcctl <hostname> <port>", file=sys.stderr)
        return 1

    host = args[0]
    try:
        address = socket.gethostbyname(host)
    except (OSError, UnicodeError):
        address = None
    port = _atoi(args[1])
    log.info("server %s port %d", host, port)

    if address is None:
        print("ERROR, no such host", file=sys.stderr)
        return 0

    try:
        sock = socket.create_connection((address, port & 0xFFFF))
    except OSError as exc:
        print(f"ERROR connecting: {exc.strerror or exc}", file=sys.stderr)
        return 1

    with sock:
        while True:
            line = sys.stdin.readline(MAX_LINE)
            if not line:
                break
            kind = line[0]
            if kind in _TOUCH_TYPES:
                type_ = UibcMessageType.GENERIC_TOUCH_DOWN
            elif kind in _KEY_TYPES:
                type_ = UibcMessageType.GENERIC_KEY_DOWN
            else:
                continue

            try:
                message = build_uibc_message(type_, line, 1, 1)
            except ValueError:
                message = UibcMessage()

            try:
                send_uibc_message(message, sock)
            except OSError as exc:
                print(f"ERROR writing to socket: {exc.strerror or exc}", file=sys.stderr)
                return 1
    return 0