"""Incremental parser for the agent's stream-json output.

The agent writes one JSON object per line on stdout. Chunks from the
pipe do not respect line boundaries, so partial lines are buffered
until their newline arrives. Each complete line is decoded and
classified into zero or more StreamRecords:

    {"type":"system","session_id":"abc"}                 -> SESSION_ID
    {"type":"assistant","message":{...},"timestamp_ms":1} -> DELTA
    {"type":"assistant","message":{...}}                  -> FULL_TEXT
    {"type":"result","result":"done","session_id":"abc"}  -> SESSION_ID, RESULT

Undecodable lines are dropped. Nothing in here raises.
"""
from __future__ import annotations

import json
import logging
from typing import Any

from .models import RecordKind, StreamRecord

logger = logging.getLogger(__name__)

SESSION_ID_FIELDS = ("session_id", "sessionId", "chat_id", "chatId")
DELTA_MARKER = "timestamp_ms"


class StreamParser:
    """Buffers byte chunks and yields classified records per complete line."""

    def __init__(self) -> None:
        self._buffer = b""
        self.lines_seen = 0
        self.lines_dropped = 0

    def feed(self, chunk: bytes) -> list[StreamRecord]:
        """Consume a chunk and return records for every completed line."""
        if not chunk:
            return []
        self._buffer += chunk
        *lines, self._buffer = self._buffer.split(b"\n")
        records: list[StreamRecord] = []
        for line in lines:
            records.extend(self.parse_line(line))
        return records

    def flush(self) -> list[StreamRecord]:
        """Parse whatever is left in the buffer (stream closed without newline)."""
        tail, self._buffer = self._buffer, b""
        if not tail.strip():
            return []
        return self.parse_line(tail)

    def parse_line(self, raw: bytes | str) -> list[StreamRecord]:
        if isinstance(raw, bytes):
            raw = raw.decode("utf-8", errors="replace")
        line = raw.strip()
        if not line:
            return []
        self.lines_seen += 1
        try:
            data = json.loads(line)
        except ValueError:
            self.lines_dropped += 1
            logger.debug("Dropping non-JSON line: %.120s", line)
            return []
        if not isinstance(data, dict):
            self.lines_dropped += 1
            return [StreamRecord(RecordKind.UNRECOGNIZED)]
        return classify(data)


def classify(data: dict[str, Any]) -> list[StreamRecord]:
    """Classify one decoded line. May yield several records, in order."""
    records: list[StreamRecord] = []

    session_id = _session_id(data)
    if session_id:
        records.append(StreamRecord(RecordKind.SESSION_ID, session_id))

    kind = data.get("type")
    if kind == "result":
        result = data.get("result")
        if isinstance(result, str) and result:
            records.append(StreamRecord(RecordKind.RESULT, result))
    elif kind == "assistant":
        text = _assistant_text(data)
        if text:
            if DELTA_MARKER in data:
                records.append(StreamRecord(RecordKind.DELTA, text))
            else:
                records.append(StreamRecord(RecordKind.FULL_TEXT, text))

    if not records:
        records.append(StreamRecord(RecordKind.UNRECOGNIZED))
    return records


def _session_id(data: dict[str, Any]) -> str | None:
    for name in SESSION_ID_FIELDS:
        value = data.get(name)
        if isinstance(value, str) and value:
            return value
    return None


def _assistant_text(data: dict[str, Any]) -> str:
    """Join the text parts of an assistant message."""
    message = data.get("message")
    if not isinstance(message, dict):
        return ""
    content = message.get("content")
    if isinstance(content, str):
        return content
    if not isinstance(content, list):
        return ""
    parts = []
    for block in content:
        if isinstance(block, dict) and block.get("type") == "text":
            text = block.get("text")
            if isinstance(text, str):
                parts.append(text)
    return "".join(parts)
