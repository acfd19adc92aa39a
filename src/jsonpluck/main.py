from __future__ import annotations

import io
import logging
from collections.abc import AsyncIterable, Iterable, Iterator, Sequence
from dataclasses import dataclass
from enum import Enum
from itertools import takewhile
from typing import Any, Generic, TypeVar

from jsonpluck.core import EventType, ScanEvent, Scanner
from jsonpluck.decode import ElementFeed, JsonDecoder
from jsonpluck.errors import (
    DecodeError,
    JsonPluckError,
    ReadError,
    ScanError,
    UnreachableStateError,
)
from jsonpluck.paths import PathSpec

logger = logging.getLogger(__name__)

T = TypeVar("T")

PathLike = str | Sequence[str] | PathSpec

_SINGLE_BYTES = [bytes((i,)) for i in range(256)]
_DEFAULT_CHUNK_SIZE = 1 << 16
_FLUSH_SIZE = 4096


@dataclass(frozen=True)
class ItemResult(Generic[T]):
    """Outcome for one array element, or the terminal error of a scan."""

    index: int
    value: T | None = None
    error: JsonPluckError | None = None

    @property
    def ok(self) -> bool:
        return self.error is None

    def unwrap(self) -> T:
        if self.error is not None:
            raise self.error
        return self.value


def _as_bytes(chunk) -> bytes:
    if isinstance(chunk, str):
        return chunk.encode("utf-8")
    if isinstance(chunk, int):
        return _SINGLE_BYTES[chunk]
    return bytes(chunk)


def iter_symbols(source, *, chunk_size: int = _DEFAULT_CHUNK_SIZE) -> Iterator[int]:
    """Adapt bytes, text, a reader or an iterable of chunks to a byte sequence."""
    if isinstance(source, (bytes, bytearray, memoryview, str)):
        yield from _as_bytes(source)
        return

    if hasattr(source, "read"):
        while True:
            try:
                chunk = source.read(chunk_size)
            except OSError as exc:
                raise ReadError(f"Reading the source failed: {exc}") from exc
            if not chunk:
                return
            yield from _as_bytes(chunk)

    try:
        for chunk in source:
            if isinstance(chunk, int):
                yield chunk
            else:
                yield from _as_bytes(chunk)
    except OSError as exc:
        raise ReadError(f"Reading the source failed: {exc}") from exc


class ByteReader:
    """Single-byte reads over a binary or text reader."""

    def __init__(self, raw) -> None:
        if isinstance(raw, (bytes, bytearray, memoryview)):
            raw = io.BytesIO(raw)
        elif isinstance(raw, str):
            raw = io.BytesIO(raw.encode("utf-8"))
        self._raw = raw
        self._pending = b""
        self.position = 0

    def read_byte(self) -> int:
        if not self._pending:
            try:
                data = self._raw.read(1)
            except OSError as exc:
                raise ReadError(f"Reading the source failed: {exc}") from exc
            if not data:
                raise ReadError(
                    f"Input ended after {self.position} bytes before the scan finished."
                )
            # text readers hand back a character that may span several bytes
            self._pending = _as_bytes(data)
        byte = self._pending[0]
        self._pending = self._pending[1:]
        self.position += 1
        return byte


class Assembler(Generic[T]):
    """Buffers each element's bytes and decodes it once the element closes."""

    def __init__(self, decoder: JsonDecoder[T]) -> None:
        self.decoder = decoder
        self.index = 0
        self._buffer = bytearray()

    def push(self, event: ScanEvent) -> ItemResult[T] | None:
        kind = event.type
        if kind is EventType.SKIP:
            return None
        if kind is EventType.ITEM_BYTE:
            self._buffer.append(event.byte)
            return None
        if kind is EventType.ELEMENT_START:
            self._buffer.clear()
            self._buffer.append(event.byte)
            return None
        if kind is EventType.ELEMENT_END:
            if event.byte is not None:
                self._buffer.append(event.byte)
            fragment = bytes(self._buffer)
            self._buffer.clear()
            return self._decode(fragment)
        raise UnreachableStateError(f"{kind.name} event reached the assembler.")

    def _decode(self, fragment: bytes) -> ItemResult[T]:
        index = self.index
        self.index += 1
        try:
            return ItemResult(index, value=self.decoder.decode(fragment))
        except DecodeError as exc:
            logger.debug("Element %d failed to decode: %s", index, exc)
            return ItemResult(index, error=exc)

    def fold(self, events: Iterable[ScanEvent]) -> Iterator[ItemResult[T]]:
        try:
            for event in events:
                result = self.push(event)
                if result is not None:
                    yield result
        except (ReadError, ScanError) as exc:
            logger.debug("Scan stopped after %d elements: %s", self.index, exc)
            yield ItemResult(self.index, error=exc)


class _DirectSink(Generic[T]):
    """Feeds element bytes into the decoder in small batches, never whole elements."""

    def __init__(self, decoder: JsonDecoder[T], *, flush_size: int = _FLUSH_SIZE) -> None:
        self.decoder = decoder
        self.index = 0
        self.flush_size = flush_size
        self._feed: ElementFeed[T] | None = None
        self._pending = bytearray()

    def _flush(self) -> None:
        if self._pending:
            self._feed.feed(bytes(self._pending))
            self._pending.clear()

    def push(self, event: ScanEvent) -> ItemResult[T] | None:
        kind = event.type
        if kind is EventType.SKIP:
            return None
        if kind is EventType.ELEMENT_START:
            self._feed = self.decoder.start()
            self._pending.clear()
            self._pending.append(event.byte)
            return None
        if kind is EventType.ITEM_BYTE:
            self._pending.append(event.byte)
            if len(self._pending) >= self.flush_size:
                self._flush()
            return None
        if kind is EventType.ELEMENT_END:
            if event.byte is not None:
                self._pending.append(event.byte)
            self._flush()
            feed, self._feed = self._feed, None
            index = self.index
            self.index += 1
            try:
                return ItemResult(index, value=feed.finish())
            except DecodeError as exc:
                logger.debug("Element %d failed to decode: %s", index, exc)
                return ItemResult(index, error=exc)
        raise UnreachableStateError(f"{kind.name} event reached the decoder sink.")


class _Phase(Enum):
    NOT_STARTED = "not_started"
    STARTED = "started"
    ENDED = "ended"


class StreamIterator(Generic[T]):
    """Reader-coupled iterator over the elements of the array at ``path``.

    Bytes are pulled one at a time from ``reader`` and only as far as the
    next element boundary, so the reader is left right after the last byte
    that was needed. Element bytes reach the ijson push parser in small batches.
    """

    def __init__(
        self,
        reader,
        path: PathLike,
        target: Any = object,
        *,
        decoder: JsonDecoder[T] | None = None,
    ) -> None:
        self._reader = reader if isinstance(reader, ByteReader) else ByteReader(reader)
        self._scanner = Scanner(path)
        self._sink = _DirectSink(decoder or JsonDecoder(target))
        self._phase = _Phase.NOT_STARTED

    @property
    def path(self) -> PathSpec:
        return self._scanner.path

    @property
    def started(self) -> bool:
        return self._phase is not _Phase.NOT_STARTED

    @property
    def ended(self) -> bool:
        return self._phase is _Phase.ENDED

    def __iter__(self) -> StreamIterator[T]:
        return self

    def __next__(self) -> ItemResult[T]:
        if self._phase is _Phase.ENDED:
            raise StopIteration
        try:
            result = self._next_item()
        except (ReadError, ScanError) as exc:
            self._phase = _Phase.ENDED
            logger.debug("Stream over %s ended with error: %s", self.path, exc)
            return ItemResult(self._sink.index, error=exc)
        if result is None:
            self._phase = _Phase.ENDED
            raise StopIteration
        if self._scanner.finished:
            self._phase = _Phase.ENDED
        return result

    def _next_item(self) -> ItemResult[T] | None:
        scanner = self._scanner
        while True:
            event = scanner.step(self._reader.read_byte())
            if event.type is EventType.STOP:
                return None
            if self._phase is _Phase.NOT_STARTED and scanner.emitting:
                self._phase = _Phase.STARTED
            result = self._sink.push(event)
            if result is not None:
                return result


def iter_results(
    source,
    path: PathLike,
    target: Any = object,
    *,
    decoder: JsonDecoder[T] | None = None,
    chunk_size: int = _DEFAULT_CHUNK_SIZE,
) -> Iterator[ItemResult[T]]:
    """Lazily decode every element of the array at ``path`` in ``source``."""
    events = Scanner(path).events(iter_symbols(source, chunk_size=chunk_size))
    assembler = Assembler(decoder or JsonDecoder(target))
    return assembler.fold(takewhile(lambda e: e.type is not EventType.STOP, events))


def items_at(
    source,
    path: PathLike,
    target: Any = object,
    *,
    decoder: JsonDecoder[T] | None = None,
    chunk_size: int = _DEFAULT_CHUNK_SIZE,
) -> Iterator[T]:
    """Like ``iter_results`` but yields plain values and raises the first error."""
    for result in iter_results(
        source, path, target, decoder=decoder, chunk_size=chunk_size
    ):
        yield result.unwrap()


async def aiter_results(
    source: AsyncIterable,
    path: PathLike,
    target: Any = object,
    *,
    decoder: JsonDecoder[T] | None = None,
):
    """Async counterpart of ``iter_results`` for chunked async sources."""
    scanner = Scanner(path)
    sink = _DirectSink(decoder or JsonDecoder(target))
    try:
        async for chunk in source:
            for byte in _as_bytes(chunk):
                event = scanner.step(byte)
                if event.type is EventType.STOP:
                    return
                result = sink.push(event)
                if result is not None:
                    yield result
                if scanner.finished:
                    return
    except OSError as exc:
        yield ItemResult(sink.index, error=ReadError(f"Reading the source failed: {exc}"))
        return
    except ScanError as exc:
        yield ItemResult(sink.index, error=exc)
        return
    yield ItemResult(
        sink.index,
        error=ReadError(
            f"Input ended after {scanner.position} bytes before the scan finished."
        ),
    )


def pluck(source, path: PathLike, target: Any = object, **kwargs):
    """Stream the array at ``path`` out of ``source``.

    With an async source, returns an async iterator:

        async for result in pluck(llm_stream(), "data.rows", Row):
            handle(result.unwrap())

    With a reader, returns a reader-coupled ``StreamIterator`` that stops
    reading at the end of the array:

        with open("dump.json", "rb") as f:
            for result in pluck(f, "root.items"):
                ...

    With bytes, text or an iterable of chunks, returns ``iter_results``.
    """
    if hasattr(source, "__aiter__"):
        return aiter_results(source, path, target, **kwargs)
    if hasattr(source, "read"):
        return StreamIterator(source, path, target, **kwargs)
    return iter_results(source, path, target, **kwargs)


__all__ = [
    "ItemResult",
    "ByteReader",
    "Assembler",
    "StreamIterator",
    "iter_symbols",
    "iter_results",
    "items_at",
    "aiter_results",
    "pluck",
]
