"""Tests for StreamParser and ResultAccumulator."""
from __future__ import annotations

import json

import pytest

from agent_bridge.engine.accumulator import NO_OUTPUT_TEXT, ResultAccumulator
from agent_bridge.engine.errors import ProcessExitError
from agent_bridge.engine.models import RecordKind, StreamRecord
from agent_bridge.engine.stream_parser import StreamParser, classify


def _line(obj) -> bytes:
    return (json.dumps(obj) + "\n").encode()


def _assistant(text, delta=True):
    obj = {"type": "assistant", "message": {"content": [{"type": "text", "text": text}]}}
    if delta:
        obj["timestamp_ms"] = 1700000000000
    return obj


def test_partial_lines_are_buffered_across_chunks():
    parser = StreamParser()
    raw = _line({"type": "result", "result": "DONE"})
    assert parser.feed(raw[:10]) == []
    assert parser.feed(raw[10:-1]) == []
    records = parser.feed(raw[-1:])
    assert records == [StreamRecord(RecordKind.RESULT, "DONE")]


def test_several_lines_in_one_chunk():
    parser = StreamParser()
    records = parser.feed(_line(_assistant("a")) + _line(_assistant("b")))
    assert [r.value for r in records] == ["a", "b"]
    assert all(r.kind == RecordKind.DELTA for r in records)


def test_malformed_lines_are_dropped():
    parser = StreamParser()
    records = parser.feed(b"Loading...\n{broken\n" + _line(_assistant("ok")))
    assert records == [StreamRecord(RecordKind.DELTA, "ok")]
    assert parser.lines_dropped == 2


def test_flush_parses_unterminated_tail():
    parser = StreamParser()
    assert parser.feed(json.dumps({"type": "result", "result": "x"}).encode()) == []
    assert parser.flush() == [StreamRecord(RecordKind.RESULT, "x")]
    assert parser.flush() == []


def test_utf8_split_across_chunks():
    parser = StreamParser()
    raw = _line(_assistant("héllo"))
    cut = raw.index("é".encode()) + 1
    assert parser.feed(raw[:cut]) == []
    assert parser.feed(raw[cut:]) == [StreamRecord(RecordKind.DELTA, "héllo")]


def test_session_id_then_result_from_one_line():
    records = classify({"type": "result", "result": "fin", "session_id": "s-9"})
    assert records == [
        StreamRecord(RecordKind.SESSION_ID, "s-9"),
        StreamRecord(RecordKind.RESULT, "fin"),
    ]


@pytest.mark.parametrize("field", ["session_id", "sessionId", "chat_id", "chatId"])
def test_session_id_field_variants(field):
    assert classify({"type": "system", field: "abc"}) == [
        StreamRecord(RecordKind.SESSION_ID, "abc"),
    ]


def test_full_text_without_delta_marker():
    assert classify(_assistant("Hi there", delta=False)) == [
        StreamRecord(RecordKind.FULL_TEXT, "Hi there"),
    ]


def test_unrecognized_lines():
    assert classify({"type": "tool_call", "subtype": "started"}) == [
        StreamRecord(RecordKind.UNRECOGNIZED),
    ]
    assert classify({"type": "result", "result": ""}) == [
        StreamRecord(RecordKind.UNRECOGNIZED),
    ]


def test_deltas_append():
    acc = ResultAccumulator()
    assert acc.apply(StreamRecord(RecordKind.DELTA, "He"))
    assert acc.apply(StreamRecord(RecordKind.DELTA, "llo"))
    assert acc.text == "Hello"


def test_full_text_replaces():
    acc = ResultAccumulator()
    acc.apply(StreamRecord(RecordKind.FULL_TEXT, "Hi"))
    acc.apply(StreamRecord(RecordKind.FULL_TEXT, "Hi there"))
    assert acc.text == "Hi there"
    assert acc.apply(StreamRecord(RecordKind.FULL_TEXT, "Hi there")) is False


def test_result_wins_over_deltas():
    acc = ResultAccumulator()
    for part in ("lots ", "of ", "deltas"):
        acc.apply(StreamRecord(RecordKind.DELTA, part))
    acc.apply(StreamRecord(RecordKind.RESULT, "DONE"))
    acc.apply(StreamRecord(RecordKind.DELTA, " late"))
    assert acc.finalize(0) == "DONE"


def test_last_session_id_wins():
    acc = ResultAccumulator()
    assert acc.apply(StreamRecord(RecordKind.SESSION_ID, "a")) is False
    acc.apply(StreamRecord(RecordKind.SESSION_ID, "b"))
    assert acc.session_id == "b"


def test_finalize_fallbacks():
    acc = ResultAccumulator("chan")
    assert acc.finalize(0) == NO_OUTPUT_TEXT

    acc.apply(StreamRecord(RecordKind.FULL_TEXT, "partial"))
    assert acc.finalize(1) == "partial"


def test_finalize_nonzero_exit_without_text_raises():
    acc = ResultAccumulator("chan")
    with pytest.raises(ProcessExitError) as info:
        acc.finalize(3, "boom")
    assert info.value.exit_code == 3
    assert info.value.channel_key == "chan"
    assert "boom" in str(info.value)
