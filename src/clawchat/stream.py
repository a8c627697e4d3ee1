"""Incremental decoder for server-sent chat completion streams.

The gateway streams lines of the form ``data: <json>`` terminated by
``data: [DONE]``. Network chunks carry no alignment guarantee, so both
multi-byte UTF-8 sequences and partial lines are buffered between feeds.
"""

import codecs
import json
import logging

logger = logging.getLogger(__name__)

EVENT_MARKER = "data: "
DONE_PAYLOAD = "[DONE]"


class DecodeError(Exception):
    pass


def parse_delta(payload: str) -> str | None:
    """Return the first choice's delta text from one event payload.

    Raises DecodeError when the payload is not a completion chunk.
    """
    try:
        record = json.loads(payload)
    except json.JSONDecodeError as e:
        raise DecodeError(f"Invalid JSON payload: {e}") from e

    if not isinstance(record, dict):
        raise DecodeError("Payload is not an object")
    choices = record.get("choices")
    if not isinstance(choices, list):
        raise DecodeError("Payload has no choices list")
    if not choices:
        return None

    first = choices[0]
    if not isinstance(first, dict):
        raise DecodeError("Choice is not an object")
    delta = first.get("delta")
    if not isinstance(delta, dict):
        return None
    content = delta.get("content")
    if isinstance(content, str) and content:
        return content
    return None


def decode_event_line(line: str) -> str | None:
    line = line.rstrip("\r")
    if not line.startswith(EVENT_MARKER):
        return None
    payload = line[len(EVENT_MARKER):]
    if payload == DONE_PAYLOAD:
        return None
    try:
        return parse_delta(payload)
    except DecodeError as e:
        logger.debug(f"Skipping malformed stream record: {e}")
        return None


class StreamDecoder:
    def __init__(self, encoding: str = "utf-8"):
        self._decoder = codecs.getincrementaldecoder(encoding)(errors="replace")
        self._buffer = ""
        self.done = False

    def feed(self, chunk: bytes) -> list[str]:
        self._buffer += self._decoder.decode(chunk)
        if "\n" not in self._buffer:
            return []
        *lines, self._buffer = self._buffer.split("\n")
        return self._consume(lines)

    def close(self) -> list[str]:
        self._buffer += self._decoder.decode(b"", final=True)
        remainder, self._buffer = self._buffer, ""
        if not remainder:
            return []
        return self._consume([remainder])

    def _consume(self, lines: list[str]) -> list[str]:
        deltas: list[str] = []
        for line in lines:
            if line.rstrip("\r") == EVENT_MARKER + DONE_PAYLOAD:
                self.done = True
                continue
            delta = decode_event_line(line)
            if delta:
                deltas.append(delta)
        return deltas
