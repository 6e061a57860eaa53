"""String, number, path and time helpers shared by the control tools."""

from __future__ import annotations

import errno
import os
import re
import stat
import string
import time
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field

ULLONG_MAX = (1 << 64) - 1

_SLASHES = re.compile(r"/*")
_COMPONENT = re.compile(r"[^/]*")

_UNESCAPES = {
    "a": "\a",
    "b": "\b",
    "f": "\f",
    "n": "\n",
    "r": "\r",
    "t": "\t",
    "v": "\v",
    '"': '"',
    "'": "'",
    "\\": "\\",
}

_QUOTE_TRIGGERS = frozenset(" \t\n\v")


def _digit(ch: str, base: int) -> int | None:
    if len(ch) != 1:
        return None
    if ch in string.digits:
        value = ord(ch) - ord("0")
    elif ch in string.ascii_lowercase:
        value = ord(ch) - ord("a") + 10
    elif ch in string.ascii_uppercase:
        value = ord(ch) - ord("A") + 10
    else:
        return None
    return value if value < base else None


def ctoi(ch: str, base: int) -> int:
    """Return the value of the single digit ``ch`` in ``base``.

    Raises ValueError if ``ch`` is not a valid digit for that base.
    """
    value = _digit(ch, base)
    if value is None:
        raise ValueError(f"{ch!r} is not a digit in base {base}")
    return value


def _skip_base(text: str) -> tuple[int, int]:
    if len(text) > 1 and text[0] == "0" and _digit(text[1], 8) is not None:
        return 8, 1
    if len(text) > 2 and text.startswith("0x") and _digit(text[2], 16) is not None:
        return 16, 2
    return 10, 0


def parse_unsigned(
    text: str, base: int = 10, maximum: int = ULLONG_MAX
) -> tuple[int, int]:
    """Strictly parse an unsigned integer from the start of ``text``.

    No whitespace or signs are accepted. With ``base`` 0 a leading ``0``
    selects octal and ``0x`` hexadecimal. Returns ``(value, end)`` where
    ``end`` is the index of the first character not consumed. Raises
    ValueError for a base above 36 and OverflowError if the value exceeds
    ``maximum`` (or 64 bits).
    """
    if base < 0 or base > 36:
        raise ValueError(f"invalid base {base}")

    start = 0
    if base == 0:
        base, start = _skip_base(text)

    value = 0
    end = start
    for ch in text[start:]:
        digit = _digit(ch, base)
        if digit is None:
            break
        value = value * base + digit
        end += 1

    if value > min(maximum, ULLONG_MAX):
        raise OverflowError(
            f"{text[:end]!r} exceeds {min(maximum, ULLONG_MAX)} (parsed up to {end})"
        )
    return value, end


def strsplit(text: str | None, sep: str) -> list[str]:
    """Split ``text`` on any character of ``sep``, dropping empty tokens."""
    if sep is None:
        raise ValueError("separator set is required")
    tokens: list[str] = []
    current: list[str] = []
    for ch in text or "":
        if ch in sep:
            if current:
                tokens.append("".join(current))
                current = []
        else:
            current.append(ch)
    if current:
        tokens.append("".join(current))
    return tokens


def qstr_unescape_char(ch: str) -> str | None:
    """Return the character an escape ``\\ch`` stands for, or None."""
    return _UNESCAPES.get(ch)


def qstr_decode(text: str) -> str:
    """Remove quoting and resolve backslash escapes in one token."""
    out: list[str] = []
    quoted = ""
    escaped = False

    for ch in text:
        if escaped:
            escaped = False
            unescaped = qstr_unescape_char(ch)
            if unescaped is not None:
                out.append(unescaped)
            elif ch != "\0":
                out.append("\\")
                out.append(ch)
        elif quoted:
            if ch == "\\":
                escaped = True
            elif ch == quoted:
                quoted = ""
            elif ch != "\0":
                out.append(ch)
        else:
            if ch == "\\":
                escaped = True
            elif ch in "\"'":
                quoted = ch
            elif ch != "\0":
                out.append(ch)

    if escaped:
        out.append("\\")
    return "".join(out)


def qstr_tokenize(text: str | None) -> list[str]:
    """Split ``text`` on unquoted, unescaped spaces and decode each token."""
    raw_tokens: list[str] = []
    current: list[str] = []
    quoted = ""
    escaped = False

    for ch in text or "":
        if escaped:
            escaped = False
        elif ch == "\\":
            escaped = True
        elif quoted:
            if ch == quoted:
                quoted = ""
        elif ch in "\"'":
            quoted = ch
        elif ch == " ":
            if current:
                raw_tokens.append("".join(current))
                current = []
            continue
        current.append(ch)

    if current:
        raw_tokens.append("".join(current))
    return [qstr_decode(token) for token in raw_tokens]


def _qstr_encode(item: str) -> str:
    item = item.split("\0", 1)[0]
    need_quote = any(ch in _QUOTE_TRIGGERS for ch in item)
    body = "".join("\\" + ch if ch in '\\"' else ch for ch in item)
    return f'"{body}"' if need_quote else body


def qstr_join(items: Iterable[str]) -> str:
    """Join strings with spaces, quoting and escaping them for tokenizing."""
    return " ".join(_qstr_encode(item) for item in items)


def path_startswith(path: str | None, prefix: str | None) -> str | None:
    """Return the rest of ``path`` after the components of ``prefix``.

    Components are compared whole and repeated slashes are ignored. Returns
    None if ``path`` does not start with ``prefix``.
    """
    if path is None:
        return None
    if prefix is None:
        return path
    if path.startswith("/") != prefix.startswith("/"):
        return None

    p = q = 0
    while True:
        p = _SLASHES.match(path, p).end()
        q = _SLASHES.match(prefix, q).end()
        if q == len(prefix):
            return path[p:]
        if p == len(path):
            return None
        p_end = _COMPONENT.match(path, p).end()
        q_end = _COMPONENT.match(prefix, q).end()
        if path[p:p_end] != prefix[q:q_end]:
            return None
        p, q = p_end, q_end


def _is_dir(path: str) -> bool | None:
    try:
        st = os.stat(path)
    except OSError:
        return None
    return stat.S_ISDIR(st.st_mode)


def _mkdir_parents(prefix: str | None, path: str, mode: int) -> None:
    if path_startswith(path, prefix) is None:
        raise NotADirectoryError(errno.ENOTDIR, "path is outside the prefix", path)

    last = path.rfind("/")
    if last <= 0:
        return

    parent_is_dir = _is_dir(path[:last])
    if parent_is_dir:
        return
    if parent_is_dir is False:
        raise NotADirectoryError(errno.ENOTDIR, "not a directory", path[:last])

    pos = _SLASHES.match(path, 0).end()
    while True:
        end = _COMPONENT.match(path, pos).end()
        pos = _SLASHES.match(path, end).end()
        if pos == len(path):
            return
        partial = path[:end]
        if prefix and path_startswith(prefix, partial) is not None:
            continue
        try:
            os.mkdir(partial, mode)
        except FileExistsError:
            pass


def _mkdir_p(prefix: str | None, path: str, mode: int) -> None:
    _mkdir_parents(prefix, path, mode)
    try:
        os.mkdir(path, mode)
    except FileExistsError:
        if not _is_dir(path):
            raise


def mkdir_p(path: str | os.PathLike, mode: int = 0o777) -> None:
    """Create ``path`` and any missing parent directories."""
    _mkdir_p(None, os.fspath(path), mode)


def mkdir_p_prefix(
    prefix: str | os.PathLike, path: str | os.PathLike, mode: int = 0o777
) -> None:
    """Create ``path`` and its parents below ``prefix``, which must contain it."""
    _mkdir_p(os.fspath(prefix), os.fspath(path), mode)


def now_usec() -> int:
    """Return the monotonic clock in microseconds."""
    return time.monotonic_ns() // 1000


@dataclass
class RateLimit:
    """Allow at most ``burst`` events per ``interval`` microseconds."""

    interval: int
    burst: int
    begin: int = 0
    num: int = 0
    clock: Callable[[], int] = field(default=now_usec, repr=False, compare=False)

    def test(self) -> bool:
        """Record an event and return whether it is within the limit."""
        if self.interval <= 0 or self.burst <= 0:
            return True

        ts = self.clock()
        if self.begin <= 0 or self.begin + self.interval < ts:
            self.begin = ts
            self.num = 0
        elif self.num >= self.burst:
            return False

        self.num += 1
        return True

    def reset(self) -> None:
        """Forget all recorded events."""
        self.num = 0
        self.begin = 0