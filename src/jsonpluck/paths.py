from __future__ import annotations

import json
from collections.abc import Sequence
from dataclasses import dataclass

from jsonpluck.errors import PathSyntaxError, UnreachableStateError

_SEPARATOR = "."
_ESCAPE = "\\"


@dataclass(frozen=True)
class PathSpec:
    """Ordered key segments naming the array to stream, e.g. ``root.items``.

    Segments are split on ``.``; write ``\\.`` for a dot that belongs to a key
    and ``\\\\`` for a literal backslash.
    """

    segments: tuple[str, ...]

    @classmethod
    def parse(cls, text: str) -> PathSpec:
        if not text:
            raise PathSyntaxError("Path expression is empty.")

        segments: list[str] = []
        current: list[str] = []
        chars = iter(text)
        for char in chars:
            if char == _ESCAPE:
                escaped = next(chars, None)
                if escaped is None:
                    raise PathSyntaxError(
                        f"Dangling escape at end of path expression: {text!r}"
                    )
                current.append(escaped)
            elif char == _SEPARATOR:
                segments.append("".join(current))
                current = []
            else:
                current.append(char)
        segments.append("".join(current))
        return cls(tuple(segments))

    @classmethod
    def coerce(cls, path: str | Sequence[str] | PathSpec) -> PathSpec:
        if isinstance(path, PathSpec):
            return path
        if isinstance(path, str):
            return cls.parse(path)
        segments = tuple(path)
        if not segments:
            raise PathSyntaxError("Path needs at least one key segment.")
        for segment in segments:
            if not isinstance(segment, str):
                raise PathSyntaxError(f"Path segment must be a string: {segment!r}")
        return cls(segments)

    def __str__(self) -> str:
        return _SEPARATOR.join(
            s.replace(_ESCAPE, _ESCAPE * 2).replace(_SEPARATOR, _ESCAPE + _SEPARATOR)
            for s in self.segments
        )


def decode_key(raw: bytes) -> str:
    """Turn the raw bytes between a key's quotes into the key string."""
    if b"\\" in raw:
        return json.loads(b'"' + raw + b'"')
    return raw.decode("utf-8")


class KeyPathTracker:
    """Stack of the object keys enclosing the byte being scanned."""

    def __init__(self, target: PathSpec) -> None:
        self.target = target
        self._target = list(target.segments)
        self._stack: list[str] = []

    @property
    def depth(self) -> int:
        return len(self._stack)

    @property
    def keys(self) -> tuple[str, ...]:
        return tuple(self._stack)

    def push(self, key: str) -> None:
        self._stack.append(key)

    def pop(self) -> str:
        if not self._stack:
            raise UnreachableStateError("Key stack popped while empty.")
        return self._stack.pop()

    def matches(self) -> bool:
        return self._stack == self._target

    def __repr__(self) -> str:
        return f"KeyPathTracker(keys={self.keys!r}, target={str(self.target)!r})"


__all__ = ["PathSpec", "KeyPathTracker", "decode_key"]
