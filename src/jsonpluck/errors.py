from __future__ import annotations


class JsonPluckError(Exception):
    """Base class for everything raised or reported by jsonpluck."""


class ReadError(JsonPluckError):
    """The source failed or ran out before the scan finished."""


class DecodeError(JsonPluckError):
    def __init__(self, message: str, location: str = "$") -> None:
        super().__init__(f"{message} (at {location})")
        self.location = location


class ScanError(JsonPluckError):
    """The scanner met input it cannot track boundaries through."""


class UnexpectedCharacterError(ScanError):
    def __init__(self, byte: int, position: int, expected: str) -> None:
        super().__init__(
            f"Expected {expected} at position {position} but got {chr(byte)!r}"
        )
        self.byte = byte
        self.position = position
        self.expected = expected


class MalformedDocumentError(ScanError):
    pass


class UnreachableStateError(JsonPluckError, AssertionError):
    pass


class PathSyntaxError(JsonPluckError, ValueError):
    pass


__all__ = [
    "JsonPluckError",
    "ReadError",
    "DecodeError",
    "ScanError",
    "UnexpectedCharacterError",
    "MalformedDocumentError",
    "UnreachableStateError",
    "PathSyntaxError",
]
