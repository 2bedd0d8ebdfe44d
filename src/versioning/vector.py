"""Comparable version vectors.

A version is an ordered sequence of integers. Release-type tags are stored
as negative integers so that plain integer comparison yields the expected
ordering: snapshot < alpha < beta < pre < release < numeric-suffixed release.
Missing trailing elements compare as zero, so ``1.0`` equals ``1.0.0``.
"""
from __future__ import annotations

import functools
import re
from enum import Enum
from typing import Iterable, Tuple, Union

from common.errors import InvalidVersionError


class ReleaseType(Enum):
    """Release-type tag values as they appear inside a vector."""

    SNAPSHOT = -4
    ALPHA = -3
    BETA = -2
    PRE = -1
    RELEASE = 0


# Non-numeric separators between components, matched in order.
_TAG_PATTERNS = [
    (re.compile(r"^[-._+ ]?snapshot$", re.IGNORECASE), ReleaseType.SNAPSHOT.value),
    (re.compile(r"^[-._+]$"), ReleaseType.SNAPSHOT.value),
    (re.compile(r"^[-._+ ]?(cvs|git|bzr|svn|hg|darcs)$", re.IGNORECASE), ReleaseType.SNAPSHOT.value),
    (re.compile(r"^[-._+ ]?unknown$", re.IGNORECASE), ReleaseType.SNAPSHOT.value),
    (re.compile(r"^[-._+ ]?alpha$", re.IGNORECASE), ReleaseType.ALPHA.value),
    (re.compile(r"^[-._+ ]?beta$", re.IGNORECASE), ReleaseType.BETA.value),
    (re.compile(r"^[-._+ ]?(pre|rc)$", re.IGNORECASE), ReleaseType.PRE.value),
]

_TAG_NAMES = {
    ReleaseType.SNAPSHOT.value: "snapshot",
    ReleaseType.ALPHA.value: "alpha",
    ReleaseType.BETA.value: "beta",
    ReleaseType.PRE.value: "pre",
}

_TOKEN_RE = re.compile(r"(\d+)|(\D+)")


@functools.total_ordering
class VersionVector:
    """Immutable, totally ordered version representation."""

    __slots__ = ("_parts",)

    def __init__(self, parts: Iterable[int] = ()):
        values = tuple(int(p) for p in parts)
        for value in values:
            if value < ReleaseType.SNAPSHOT.value:
                raise InvalidVersionError(repr(values), f"component {value} out of range")
        self._parts: Tuple[int, ...] = values

    @classmethod
    def parse(cls, text: str) -> "VersionVector":
        """Parse a version string such as ``1.0``, ``2.3pre1`` or ``1.2-beta``."""
        if not isinstance(text, str):
            raise InvalidVersionError(repr(text), "not a string")
        ver = text.strip()
        if not ver:
            raise InvalidVersionError(text, "empty")
        if not ver[0].isdigit():
            raise InvalidVersionError(text, "must start with a number")

        parts = []
        tokens = [m.group(0) for m in _TOKEN_RE.finditer(ver)]
        for index, token in enumerate(tokens):
            if token.isdigit():
                parts.append(int(token))
                continue
            is_last = index == len(tokens) - 1
            if token == ".":
                if is_last:
                    raise InvalidVersionError(text, "trailing separator")
                continue
            for pattern, value in _TAG_PATTERNS:
                if pattern.match(token):
                    parts.append(value)
                    break
            else:
                raise InvalidVersionError(text, f"unknown version tag '{token}'")
        return cls(parts)

    @classmethod
    def coerce(cls, value: Union["VersionVector", str, Iterable[int], None]) -> "VersionVector":
        """Accept a vector, a version string or an integer sequence."""
        if value is None:
            return cls(())
        if isinstance(value, VersionVector):
            return value
        if isinstance(value, str):
            return cls.parse(value)
        if isinstance(value, int):
            return cls((value,))
        try:
            return cls(value)
        except TypeError as exc:
            raise InvalidVersionError(repr(value), "not a version") from exc

    @property
    def parts(self) -> Tuple[int, ...]:
        return self._parts

    @property
    def release_type(self) -> ReleaseType:
        """The last release-type tag in the vector, RELEASE when untagged."""
        for value in reversed(self._parts):
            if value < 0:
                return ReleaseType(value)
        return ReleaseType.RELEASE

    def _normalized(self) -> Tuple[int, ...]:
        parts = list(self._parts)
        while parts and parts[-1] == 0:
            parts.pop()
        return tuple(parts)

    def _compare(self, other: "VersionVector") -> int:
        left, right = self._parts, other._parts
        for index in range(max(len(left), len(right))):
            a = left[index] if index < len(left) else 0
            b = right[index] if index < len(right) else 0
            if a != b:
                return -1 if a < b else 1
        return 0

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, VersionVector):
            return NotImplemented
        return self._compare(other) == 0

    def __lt__(self, other: "VersionVector") -> bool:
        if not isinstance(other, VersionVector):
            return NotImplemented
        return self._compare(other) < 0

    def __hash__(self) -> int:
        return hash(self._normalized())

    def __iter__(self):
        return iter(self._parts)

    def __len__(self) -> int:
        return len(self._parts)

    def __repr__(self) -> str:
        return f"VersionVector({list(self._parts)!r})"

    def __str__(self) -> str:
        if not self._parts:
            return "0"
        out = [str(self._parts[0])]
        for value in self._parts[1:]:
            if value >= 0:
                if out[-1] not in _TAG_NAMES.values():
                    out.append(".")
                out.append(str(value))
            else:
                out.append(_TAG_NAMES[value])
        return "".join(out)


ZERO = VersionVector(())
