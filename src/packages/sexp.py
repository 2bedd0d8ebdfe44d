"""Reader and printer for the Lisp data used by package metadata.

Covers the subset that appears in archive indexes, description files and
autoload files: integers, floats, strings, symbols (keywords included),
proper and dotted lists, vectors, quote and function-quote shorthands,
character literals and line comments.

Mapping to Python:

- ``nil`` reads as ``None``; ``t`` reads as the symbol ``t``
- symbols read as :class:`Symbol` (a ``str`` subclass)
- proper lists read as ``list``, vectors as ``tuple``
- improper lists read as :class:`DottedList`
- ``'x`` reads as ``[Symbol("quote"), x]``; backquote, ``,`` and ``,@``
  read the same way with the symbols ``BACKQUOTE``, ``UNQUOTE``, ``SPLICE``
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, List, Tuple

from common.errors import DescriptorError


class SexpError(DescriptorError):
    """Malformed s-expression text."""

    def __init__(self, message: str, position: int):
        self.position = position
        super().__init__(f"{message} at offset {position}")


class Symbol(str):
    """A Lisp symbol."""

    __slots__ = ()

    @property
    def is_keyword(self) -> bool:
        return self.startswith(":")

    def __repr__(self) -> str:
        return f"Symbol({str(self)!r})"


@dataclass(frozen=True)
class DottedList:
    """An improper list ``(a b . tail)``."""

    items: Tuple[Any, ...]
    tail: Any


QUOTE = Symbol("quote")
FUNCTION = Symbol("function")
BACKQUOTE = Symbol("`")
UNQUOTE = Symbol(",")
SPLICE = Symbol(",@")

_PREFIXES = {QUOTE: "'", BACKQUOTE: "`", UNQUOTE: ",", SPLICE: ",@"}

_DELIMITERS = set("()[]\"';`,")
_STRING_ESCAPES = {"n": "\n", "t": "\t", "r": "\r", "e": "\x1b", "a": "\a", "f": "\f"}


def _skip_ws(text: str, pos: int) -> int:
    length = len(text)
    while pos < length:
        ch = text[pos]
        if ch.isspace():
            pos += 1
        elif ch == ";":
            end = text.find("\n", pos)
            pos = length if end == -1 else end + 1
        else:
            break
    return pos


def _read_string(text: str, pos: int) -> Tuple[str, int]:
    out: List[str] = []
    pos += 1
    length = len(text)
    while pos < length:
        ch = text[pos]
        if ch == '"':
            return "".join(out), pos + 1
        if ch == "\\":
            pos += 1
            if pos >= length:
                break
            esc = text[pos]
            if esc == "\n":
                pass
            else:
                out.append(_STRING_ESCAPES.get(esc, esc))
            pos += 1
            continue
        out.append(ch)
        pos += 1
    raise SexpError("Unterminated string", pos)


def _read_char(text: str, pos: int) -> Tuple[int, int]:
    # ?a, ?\n, ?\\
    pos += 1
    if pos >= len(text):
        raise SexpError("Incomplete character literal", pos)
    if text[pos] == "\\" and pos + 1 < len(text):
        esc = text[pos + 1]
        return ord(_STRING_ESCAPES.get(esc, esc)), pos + 2
    return ord(text[pos]), pos + 1


def _read_atom(text: str, pos: int) -> Tuple[Any, int]:
    start = pos
    chars: List[str] = []
    length = len(text)
    while pos < length:
        ch = text[pos]
        if ch.isspace() or ch in _DELIMITERS:
            break
        if ch == "\\" and pos + 1 < length:
            chars.append(text[pos + 1])
            pos += 2
            continue
        chars.append(ch)
        pos += 1
    token = "".join(chars)
    if not token:
        raise SexpError(f"Unexpected character {text[start]!r}", start)
    if token == "nil":
        return None, pos
    try:
        return int(token), pos
    except ValueError:
        pass
    if any(c.isdigit() for c in token):
        try:
            return float(token), pos
        except ValueError:
            pass
    return Symbol(token), pos


def _read_sequence(text: str, pos: int, closer: str) -> Tuple[Any, int]:
    items: List[Any] = []
    start = pos
    pos += 1
    while True:
        pos = _skip_ws(text, pos)
        if pos >= len(text):
            raise SexpError("Unbalanced parentheses", start)
        ch = text[pos]
        if ch == closer:
            if closer == "]":
                return tuple(items), pos + 1
            return items, pos + 1
        if ch in ")]":
            raise SexpError(f"Unexpected {ch!r}", pos)
        if closer == ")" and ch == "." and items:
            nxt = pos + 1
            if nxt >= len(text) or text[nxt].isspace() or text[nxt] in "()":
                tail, pos = _read_form(text, nxt)
                pos = _skip_ws(text, pos)
                if pos >= len(text) or text[pos] != ")":
                    raise SexpError("Malformed dotted list", pos)
                if isinstance(tail, list):
                    return items + tail, pos + 1
                if tail is None:
                    return items, pos + 1
                return DottedList(tuple(items), tail), pos + 1
        value, pos = _read_form(text, pos)
        items.append(value)


def _read_form(text: str, pos: int) -> Tuple[Any, int]:
    pos = _skip_ws(text, pos)
    if pos >= len(text):
        raise SexpError("End of input", pos)
    ch = text[pos]
    if ch == "(":
        return _read_sequence(text, pos, ")")
    if ch == "[":
        return _read_sequence(text, pos, "]")
    if ch in ")]":
        raise SexpError(f"Unexpected {ch!r}", pos)
    if ch == '"':
        return _read_string(text, pos)
    if ch == "'":
        value, end = _read_form(text, pos + 1)
        return [QUOTE, value], end
    if ch == "`":
        value, end = _read_form(text, pos + 1)
        return [BACKQUOTE, value], end
    if ch == ",":
        if text.startswith(",@", pos):
            value, end = _read_form(text, pos + 2)
            return [SPLICE, value], end
        value, end = _read_form(text, pos + 1)
        return [UNQUOTE, value], end
    if ch == "#":
        if text.startswith("#'", pos):
            value, end = _read_form(text, pos + 2)
            return [FUNCTION, value], end
        raise SexpError("Unsupported reader syntax '#'", pos)
    if ch == "?":
        return _read_char(text, pos)
    return _read_atom(text, pos)


def read_from(text: str, pos: int = 0) -> Tuple[Any, int]:
    """Read one form starting at ``pos``; return it and the end offset.

    Raises:
        SexpError: Malformed input, including nesting too deep to read.
    """
    try:
        return _read_form(text, pos)
    except RecursionError:
        raise SexpError("Forms nested too deeply", pos) from None


def read(text: str) -> Any:
    """Read the first form of ``text``."""
    value, _ = read_from(text, 0)
    return value


def read_all(text: str) -> List[Any]:
    """Read every top-level form of ``text``."""
    forms: List[Any] = []
    pos = _skip_ws(text, 0)
    while pos < len(text):
        value, pos = read_from(text, pos)
        forms.append(value)
        pos = _skip_ws(text, pos)
    return forms


def unquote(value: Any) -> Any:
    """Strip a leading ``quote``/``function`` wrapper if present."""
    if isinstance(value, list) and len(value) == 2 and value[0] in (QUOTE, FUNCTION):
        return value[1]
    return value


def _dump_string(value: str) -> str:
    escaped = value.replace("\\", "\\\\").replace('"', '\\"')
    return f'"{escaped}"'


def dumps(value: Any) -> str:
    """Print ``value`` as readable Lisp data."""
    if value is None or value is False:
        return "nil"
    if value is True:
        return "t"
    if isinstance(value, Symbol):
        return str(value)
    if isinstance(value, str):
        return _dump_string(value)
    if isinstance(value, (int, float)):
        return repr(value)
    if isinstance(value, DottedList):
        head = " ".join(dumps(v) for v in value.items)
        return f"({head} . {dumps(value.tail)})"
    if isinstance(value, tuple):
        return "[" + " ".join(dumps(v) for v in value) + "]"
    if isinstance(value, list):
        if len(value) == 2 and isinstance(value[0], Symbol) and value[0] in _PREFIXES:
            return _PREFIXES[value[0]] + dumps(value[1])
        if not value:
            return "nil"
        return "(" + " ".join(dumps(v) for v in value) + ")"
    raise TypeError(f"Cannot print {type(value).__name__} as Lisp data")
