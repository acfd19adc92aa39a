from __future__ import annotations

from typing import Any, Generic, TypeVar

import ijson
import msgspec

from jsonpluck.errors import DecodeError

T = TypeVar("T")

_JSON_ERRORS = (ijson.JSONError, ValueError)
_LOCATION_MARK = " - at `"


def _type_name(target) -> str:
    return getattr(target, "__name__", None) or repr(target)


def convert(value, target):
    """Shape a parsed JSON value into ``target``, raising DecodeError on mismatch."""
    if target is object or target is Any:
        return value
    try:
        return msgspec.convert(value, type=target)
    except msgspec.ValidationError as exc:
        message, found, where = str(exc).partition(_LOCATION_MARK)
        raise DecodeError(message, where.rstrip("`") if found else "$") from exc


class ElementFeed(Generic[T]):
    """Incremental decode of one JSON value pushed in byte pieces."""

    def __init__(self, decoder: JsonDecoder[T]) -> None:
        self._decoder = decoder
        self._values = ijson.sendable_list()
        self._parser = ijson.items_coro(self._values, "", use_float=decoder.use_float)
        self._error: DecodeError | None = None

    def feed(self, data: bytes) -> None:
        if self._error is not None:
            return
        try:
            self._parser.send(data)
        except _JSON_ERRORS as exc:
            self._error = DecodeError(f"Malformed element: {exc}")

    def finish(self) -> T:
        if self._error is None:
            try:
                self._parser.close()
            except _JSON_ERRORS as exc:
                self._error = DecodeError(f"Malformed element: {exc}")
        if self._error is not None:
            raise self._error
        if not self._values:
            raise DecodeError("Element contained no JSON value")
        return self._decoder.convert(self._values[0])


class JsonDecoder(Generic[T]):
    """Parse JSON bytes with ijson and shape the result into ``target`` with msgspec."""

    def __init__(self, target: type[T] | Any = object, *, use_float: bool = True):
        self.target = target
        self.use_float = use_float

    def start(self) -> ElementFeed[T]:
        return ElementFeed(self)

    def decode(self, data: bytes) -> T:
        feed = self.start()
        feed.feed(data)
        return feed.finish()

    def convert(self, value) -> T:
        return convert(value, self.target)

    def __repr__(self) -> str:
        return f"JsonDecoder(target={_type_name(self.target)})"


__all__ = ["JsonDecoder", "ElementFeed", "convert"]
