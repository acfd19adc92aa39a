from __future__ import annotations

import logging
from collections.abc import Iterable, Iterator, Sequence
from dataclasses import dataclass
from enum import Enum

from jsonpluck.errors import (
    MalformedDocumentError,
    ReadError,
    UnexpectedCharacterError,
    UnreachableStateError,
)
from jsonpluck.paths import KeyPathTracker, PathSpec, decode_key

logger = logging.getLogger(__name__)

_WHITESPACE = frozenset(b" \t\n\r")
_SCALAR_START = frozenset(b"-0123456789tf")
_QUOTE = ord('"')
_BACKSLASH = ord("\\")
_COLON = ord(":")
_COMMA = ord(",")
_OBJECT_OPEN = ord("{")
_OBJECT_CLOSE = ord("}")
_ARRAY_OPEN = ord("[")
_ARRAY_CLOSE = ord("]")
_NULL_START = ord("n")


class ScanState(Enum):
    AWAIT_ROOT = "await_root"
    IN_OBJECT = "in_object"
    IN_OBJECT_KEY = "in_object_key"
    EXPECT_COLON = "expect_colon"
    EXPECT_VALUE = "expect_value"
    IN_VALUE = "in_value"
    EMITTING = "emitting"
    DONE = "done"


class ValueKind(Enum):
    STRING = "string"
    NUMBER = "number"
    NULL = "null"
    MAP = "map"
    ARRAY = "array"


class EventType(Enum):
    SKIP = "skip"
    ITEM_BYTE = "item_byte"
    ELEMENT_START = "element_start"
    ELEMENT_END = "element_end"
    STOP = "stop"


@dataclass(frozen=True)
class ScanEvent:
    type: EventType
    byte: int | None = None
    kind: ValueKind | None = None


SKIP = ScanEvent(EventType.SKIP)
STOP = ScanEvent(EventType.STOP)


@dataclass
class EmissionState:
    """Bookkeeping inside the target array, relative to its opening bracket."""

    object_depth: int = 0
    array_depth: int = 1
    element: ValueKind | None = None
    in_string: bool = False
    escape: bool = False


class Scanner:
    """Single-pass state machine that finds the array at a key path.

    Outside the target only enough JSON is lexed to keep the key stack right:
    object keys are collected, strings and skipped arrays are walked with
    escape and bracket tracking, and bare scalars end on a separator or on the
    closing brace of their object. Once the key stack equals the target path
    and an array opens, every byte is classified relative to the array's
    elements and reported as one ``ScanEvent``.
    """

    def __init__(self, path: str | Sequence[str] | PathSpec) -> None:
        self.path = PathSpec.coerce(path)
        self.tracker = KeyPathTracker(self.path)
        self.state = ScanState.AWAIT_ROOT
        self.value_kind: ValueKind | None = None
        self.emission: EmissionState | None = None
        self.position = 0
        self._key = bytearray()
        self._escape = False
        self._in_string = False
        self._object_depth = 0
        self._skip_depth = 0

    @property
    def finished(self) -> bool:
        return self.state is ScanState.DONE

    @property
    def emitting(self) -> bool:
        return self.emission is not None

    def step(self, byte: int) -> ScanEvent:
        """Consume one byte and report what it was."""
        state = self.state
        if state is ScanState.DONE:
            return STOP
        self.position += 1

        if state is ScanState.EMITTING:
            return self._emit(byte)
        if state is ScanState.IN_VALUE:
            return self._in_value(byte)
        if state is ScanState.IN_OBJECT_KEY:
            return self._in_object_key(byte)
        if state is ScanState.IN_OBJECT:
            return self._in_object(byte)
        if state is ScanState.EXPECT_COLON:
            return self._expect_colon(byte)
        if state is ScanState.EXPECT_VALUE:
            return self._expect_value(byte)
        if state is ScanState.AWAIT_ROOT:
            return self._await_root(byte)
        raise UnreachableStateError(f"Scanner in unknown state {state!r}.")

    def events(self, symbols: Iterable[int]) -> Iterator[ScanEvent]:
        for byte in symbols:
            event = self.step(byte)
            yield event
            if self.state is ScanState.DONE:
                return
        raise ReadError(
            f"Input ended after {self.position} bytes before the scan finished."
        )

    def _finish(self) -> ScanEvent:
        self.state = ScanState.DONE
        return STOP

    def _unexpected(self, byte: int, expected: str) -> UnexpectedCharacterError:
        return UnexpectedCharacterError(byte, self.position, expected)

    def _await_root(self, byte: int) -> ScanEvent:
        if byte in _WHITESPACE:
            return SKIP
        if byte == _OBJECT_OPEN:
            self._object_depth = 1
            self.state = ScanState.IN_OBJECT
            return SKIP
        if byte == _ARRAY_OPEN:
            raise MalformedDocumentError(
                "Top-level arrays are not supported; the document must be an object."
            )
        raise MalformedDocumentError(
            f"Document must start with '{{' but got {chr(byte)!r} "
            f"at position {self.position}."
        )

    def _in_object(self, byte: int) -> ScanEvent:
        if byte == _QUOTE:
            self._key.clear()
            self._escape = False
            self.state = ScanState.IN_OBJECT_KEY
            return SKIP
        if byte == _OBJECT_CLOSE:
            return self._close_object()
        if byte == _COMMA or byte in _WHITESPACE:
            return SKIP
        raise self._unexpected(byte, "an object key or '}'")

    def _close_object(self) -> ScanEvent:
        self._object_depth -= 1
        if self._object_depth == 0:
            logger.debug("Document closed without an array at %s", self.path)
            return self._finish()
        self.tracker.pop()
        self.state = ScanState.IN_OBJECT
        return SKIP

    def _in_object_key(self, byte: int) -> ScanEvent:
        if self._escape:
            self._escape = False
        elif byte == _BACKSLASH:
            self._escape = True
        elif byte == _QUOTE:
            try:
                key = decode_key(bytes(self._key))
            except ValueError as exc:
                raise MalformedDocumentError(
                    f"Invalid object key ending at position {self.position}: {exc}"
                ) from exc
            self.tracker.push(key)
            self._key.clear()
            self.state = ScanState.EXPECT_COLON
            return SKIP
        self._key.append(byte)
        return SKIP

    def _expect_colon(self, byte: int) -> ScanEvent:
        if byte == _COLON:
            self.state = ScanState.EXPECT_VALUE
            return SKIP
        if byte in _WHITESPACE:
            return SKIP
        raise self._unexpected(byte, "':'")

    def _expect_value(self, byte: int) -> ScanEvent:
        if byte in _WHITESPACE:
            return SKIP
        if self.tracker.matches():
            return self._enter_target(byte)

        self.state = ScanState.IN_VALUE
        if byte == _QUOTE:
            self.value_kind = ValueKind.STRING
            self._escape = False
        elif byte == _OBJECT_OPEN:
            # nested objects keep their key pushed until the matching '}'
            self._object_depth += 1
            self.value_kind = None
            self.state = ScanState.IN_OBJECT
        elif byte == _ARRAY_OPEN:
            self.value_kind = ValueKind.ARRAY
            self._skip_depth = 1
            self._in_string = False
            self._escape = False
        elif byte == _NULL_START:
            self.value_kind = ValueKind.NULL
        elif byte in _SCALAR_START:
            self.value_kind = ValueKind.NUMBER
        else:
            raise self._unexpected(byte, "a JSON value")
        return SKIP

    def _end_value(self) -> ScanEvent:
        self.tracker.pop()
        self.value_kind = None
        self.state = ScanState.IN_OBJECT
        return SKIP

    def _in_value(self, byte: int) -> ScanEvent:
        kind = self.value_kind
        if kind is ValueKind.STRING:
            if self._escape:
                self._escape = False
            elif byte == _BACKSLASH:
                self._escape = True
            elif byte == _QUOTE:
                return self._end_value()
            return SKIP

        if kind is ValueKind.ARRAY:
            if self._in_string:
                if self._escape:
                    self._escape = False
                elif byte == _BACKSLASH:
                    self._escape = True
                elif byte == _QUOTE:
                    self._in_string = False
            elif byte == _QUOTE:
                self._in_string = True
            elif byte == _ARRAY_OPEN:
                self._skip_depth += 1
            elif byte == _ARRAY_CLOSE:
                self._skip_depth -= 1
                if self._skip_depth == 0:
                    return self._end_value()
            return SKIP

        # bare number, literal or null
        if byte == _COMMA or byte in _WHITESPACE:
            return self._end_value()
        if byte == _OBJECT_CLOSE:
            self._end_value()
            return self._close_object()
        if byte == _ARRAY_CLOSE:
            raise self._unexpected(byte, "',' or '}' after a value")
        return SKIP

    def _enter_target(self, byte: int) -> ScanEvent:
        if byte == _ARRAY_OPEN:
            logger.debug("Matched %s at position %d", self.path, self.position)
            self.emission = EmissionState()
            self.state = ScanState.EMITTING
            return SKIP
        logger.debug(
            "Value at %s is not an array (starts with %r)", self.path, chr(byte)
        )
        return self._finish()

    def _start(self, kind: ValueKind, byte: int) -> ScanEvent:
        self.emission.element = kind
        return ScanEvent(EventType.ELEMENT_START, byte, kind)

    def _end(self, byte: int | None) -> ScanEvent:
        emission = self.emission
        kind = emission.element
        emission.element = None
        return ScanEvent(EventType.ELEMENT_END, byte, kind)

    def _emit(self, byte: int) -> ScanEvent:
        emission = self.emission
        element = emission.element

        if element is None:
            if byte == _COMMA or byte in _WHITESPACE:
                return SKIP
            if byte == _ARRAY_CLOSE:
                logger.debug("Reached the end of %s", self.path)
                return self._finish()
            if byte == _OBJECT_OPEN:
                emission.object_depth = 1
                return self._start(ValueKind.MAP, byte)
            if byte == _ARRAY_OPEN:
                emission.array_depth = 2
                return self._start(ValueKind.ARRAY, byte)
            if byte == _QUOTE:
                emission.in_string = True
                emission.escape = False
                return self._start(ValueKind.STRING, byte)
            if byte == _NULL_START:
                return self._start(ValueKind.NULL, byte)
            if byte in _SCALAR_START:
                return self._start(ValueKind.NUMBER, byte)
            if byte == _OBJECT_CLOSE:
                logger.warning(
                    "Unexpected '}' inside %s at position %d; ending the stream",
                    self.path,
                    self.position,
                )
                return self._finish()
            raise self._unexpected(byte, "an array element, ',' or ']'")

        if element is ValueKind.NUMBER or element is ValueKind.NULL:
            if byte == _COMMA or byte in _WHITESPACE:
                return self._end(None)
            if byte == _ARRAY_CLOSE or byte == _OBJECT_CLOSE:
                event = self._end(None)
                self.state = ScanState.DONE
                return event
            return ScanEvent(EventType.ITEM_BYTE, byte)

        if emission.in_string:
            if emission.escape:
                emission.escape = False
            elif byte == _BACKSLASH:
                emission.escape = True
            elif byte == _QUOTE:
                emission.in_string = False
                if element is ValueKind.STRING:
                    return self._end(byte)
            return ScanEvent(EventType.ITEM_BYTE, byte)

        if byte == _QUOTE:
            emission.in_string = True
        elif byte == _OBJECT_OPEN:
            emission.object_depth += 1
        elif byte == _ARRAY_OPEN:
            emission.array_depth += 1
        elif byte == _OBJECT_CLOSE or byte == _ARRAY_CLOSE:
            if byte == _OBJECT_CLOSE:
                emission.object_depth -= 1
            else:
                emission.array_depth -= 1
            if emission.object_depth == 0 and emission.array_depth == 1:
                return self._end(byte)
        return ScanEvent(EventType.ITEM_BYTE, byte)


def iter_events(
    symbols: Iterable[int], path: str | Sequence[str] | PathSpec
) -> Iterator[ScanEvent]:
    """Scan ``symbols`` for the array at ``path``, one event per byte."""
    return Scanner(path).events(symbols)


__all__ = [
    "ScanState",
    "ValueKind",
    "EventType",
    "ScanEvent",
    "EmissionState",
    "Scanner",
    "iter_events",
]
