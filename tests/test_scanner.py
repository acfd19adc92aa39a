from __future__ import annotations

import logging

import pytest

from jsonpluck.core import EventType, Scanner, ScanState, ValueKind, iter_events
from jsonpluck.errors import (
    MalformedDocumentError,
    ReadError,
    UnexpectedCharacterError,
)

S = EventType.SKIP
I = EventType.ITEM_BYTE
B = EventType.ELEMENT_START
E = EventType.ELEMENT_END
X = EventType.STOP


def _types(data: bytes, path: str) -> list[EventType]:
    return [e.type for e in iter_events(data, path)]


def _fragments(data: bytes, path: str) -> list[bytes]:
    out = []
    buf = bytearray()
    for event in iter_events(data, path):
        if event.type is B:
            buf = bytearray([event.byte])
        elif event.type is I:
            buf.append(event.byte)
        elif event.type is E:
            if event.byte is not None:
                buf.append(event.byte)
            out.append(bytes(buf))
    return out


class TestEventSequence:
    def test_one_event_per_symbol_and_stop_on_close(self):
        data = b'{"a":[{"b":1}]}'
        assert _types(data, "a") == [S] * 6 + [B] + [I] * 5 + [E, X]

    def test_target_bracket_is_not_content(self):
        events = list(iter_events(b'{"a":[{"b":1}]}', "a"))
        start = next(e for e in events if e.type is B)
        assert start.byte == ord("{")
        assert start.kind is ValueKind.MAP

    def test_empty_array_stops_without_elements(self):
        assert _types(b'{"a":[]}', "a") == [S] * 6 + [X]

    def test_trailing_input_is_not_consumed(self):
        data = b'{"a":[1],"b":"never read"}'
        events = list(iter_events(data, "a"))
        assert len(events) == data.index(b"]") + 1
        assert events[-1].type is E

    def test_separators_are_skipped(self):
        types = _types(b'{"a":[ {} , {} ]}', "a")
        assert types.count(B) == 2
        assert types.count(E) == 2
        assert types[-1] is X


class TestElementBoundaries:
    def test_map_elements(self):
        data = b'{"root":{"items":[{"name":"hello1","op":[{"a":"a"}]},{"name":"hello2","op":[{"a":"a"}]}]}}'
        assert _fragments(data, "root.items") == [
            b'{"name":"hello1","op":[{"a":"a"}]}',
            b'{"name":"hello2","op":[{"a":"a"}]}',
        ]

    def test_number_elements(self):
        assert _fragments(b'{"array":[1,22,-3.5e2]}', "array") == [
            b"1",
            b"22",
            b"-3.5e2",
        ]

    def test_numbers_with_whitespace(self):
        assert _fragments(b'{"a": [ 1 , 2 ] }', "a") == [b"1", b"2"]

    def test_string_elements_with_escapes(self):
        data = rb'{"a":["x\"]","y\\"]}'
        assert _fragments(data, "a") == [rb'"x\"]"', rb'"y\\"']

    def test_literals(self):
        assert _fragments(b'{"a":[true,null,false]}', "a") == [
            b"true",
            b"null",
            b"false",
        ]

    def test_nested_array_elements(self):
        assert _fragments(b'{"m":[[1,[2]],[]]}', "m") == [b"[1,[2]]", b"[]"]

    def test_braces_inside_strings_do_not_split(self):
        data = b'{"a":[{"t":"} ] {"},{"t":"\\"}"}]}'
        assert _fragments(data, "a") == [b'{"t":"} ] {"}', b'{"t":"\\"}"}']

    def test_mixed_kinds(self):
        data = b'{"a":[1,"s",{"k":[]},[null]]}'
        assert _fragments(data, "a") == [b"1", b'"s"', b'{"k":[]}', b"[null]"]


class TestPathTracking:
    def test_multi_level_path(self):
        assert _fragments(b'{"a":{"b":{"c":[4,5,6]}}}', "a.b.c") == [b"4", b"5", b"6"]

    def test_scalar_before_closing_brace_pops_key(self):
        data = b'{"meta":{"n":1},"a":[7]}'
        assert _fragments(data, "a") == [b"7"]

    def test_sibling_with_same_name_deeper_is_ignored(self):
        data = b'{"x":{"a":[1]},"a":[2]}'
        assert _fragments(data, "a") == [b"2"]

    def test_skipped_arrays_with_nested_brackets_and_strings(self):
        data = b'{"skip":[[1],["]"],{"a":[9]}],"a":[3]}'
        assert _fragments(data, "a") == [b"3"]

    def test_skipped_strings_with_escaped_quotes(self):
        data = b'{"s":"say \\"a\\": [1]","a":[5]}'
        assert _fragments(data, "a") == [b"5"]

    def test_escaped_quote_in_key(self):
        data = b'{"we\\"ird":[1],"a":[2]}'
        assert _fragments(data, 'we"ird') == [b"1"]
        assert _fragments(data, "a") == [b"2"]

    def test_dotted_key(self):
        data = b'{"a.b":[1],"a":{"b":[2]}}'
        assert _fragments(data, r"a\.b") == [b"1"]
        assert _fragments(data, "a.b") == [b"2"]

    def test_null_and_literal_values_outside(self):
        data = b'{"x":null,"y":true,"z":false,"a":[1]}'
        assert _fragments(data, "a") == [b"1"]

    def test_absent_path_stops_at_root_close(self):
        data = b'{"x":{"y":1}}  trailing'
        types = _types(data, "a")
        assert types[-1] is X
        assert len(types) == data.index(b"}}") + 2

    def test_non_array_value_at_path_yields_nothing(self):
        assert _fragments(b'{"a":{"b":[1]}}', "a") == []
        assert _fragments(b'{"a":null,"b":[1]}', "a") == []

    def test_leading_whitespace(self):
        assert _fragments(b' \n\t{ "a" : [1] }', "a") == [b"1"]


class TestScannerErrors:
    def test_top_level_array_is_malformed(self):
        with pytest.raises(MalformedDocumentError, match="Top-level arrays"):
            list(iter_events(b"[1,2]", "a"))

    def test_non_object_document_is_malformed(self):
        with pytest.raises(MalformedDocumentError, match="must start"):
            list(iter_events(b'"hi"', "a"))

    def test_missing_colon(self):
        with pytest.raises(UnexpectedCharacterError, match="':'") as info:
            list(iter_events(b'{"a" 1}', "a"))
        assert info.value.position == 6

    def test_garbage_between_elements(self):
        with pytest.raises(UnexpectedCharacterError):
            list(iter_events(b'{"a":[1,:]}', "a"))

    def test_truncated_input(self):
        with pytest.raises(ReadError, match="ended"):
            list(iter_events(b'{"a":[1,2', "a"))

    def test_empty_input(self):
        with pytest.raises(ReadError):
            list(iter_events(b"", "a"))

    def test_stray_brace_ends_stream(self):
        assert _fragments(b'{"a":[1,2}', "a") == [b"1", b"2"]

    def test_stray_brace_between_elements_logs_warning(self, caplog):
        with caplog.at_level(logging.WARNING, logger="jsonpluck.core"):
            assert _fragments(b'{"a":[{"k":1}}', "a") == [b'{"k":1}']
        assert any(
            r.levelno == logging.WARNING and "Unexpected '}'" in r.getMessage()
            for r in caplog.records
        )

    def test_bad_escape_in_key_is_malformed(self):
        with pytest.raises(MalformedDocumentError, match="Invalid object key") as info:
            list(iter_events(b'{"x\\q":1,"a":[1]}', "a"))
        assert isinstance(info.value.__cause__, ValueError)

    def test_invalid_utf8_in_key_is_malformed(self):
        with pytest.raises(MalformedDocumentError, match="ending at position 5"):
            list(iter_events(b'{"x\xff":1,"a":[1]}', "a"))


class TestScannerState:
    def test_step_after_done_returns_stop(self):
        scanner = Scanner("a")
        for byte in b'{"a":[]}':
            scanner.step(byte)
            if scanner.finished:
                break
        assert scanner.state is ScanState.DONE
        assert scanner.step(ord("x")).type is X

    def test_emitting_after_target_bracket(self):
        scanner = Scanner("a")
        for byte in b'{"a":[':
            scanner.step(byte)
        assert scanner.emitting
        assert scanner.tracker.keys == ("a",)
        assert scanner.position == 6

    def test_scanning_twice_gives_same_events(self):
        data = b'{"a":[{"x":1},2,"three"]}'
        assert list(iter_events(data, "a")) == list(iter_events(data, "a"))
