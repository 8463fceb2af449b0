"""
Incremental decoder for a raw server-sent-events byte feed.

Used by backends whose responses we read as bytes rather than lines.
Network reads do not respect line boundaries, so bytes are buffered and
only text up to the last newline is treated as complete; the remainder
waits for the next read.
"""

from __future__ import annotations

import json
import logging

logger = logging.getLogger(__name__)


class SSEDecoder:
    """
    Turns arbitrary byte chunks into decoded JSON payloads.

    feed() returns the payloads completed by that chunk. Once the sentinel
    arrives `done` is set and everything after it is ignored. Lines that are
    not events (comments, `event:` lines, blanks) are skipped; event lines
    whose payload is not valid JSON are dropped.
    """

    def __init__(self, prefix: str = "data:", sentinel: str = "[DONE]"):
        self.prefix = prefix.encode()
        self.sentinel = sentinel
        self.done = False
        self.dropped = 0
        self._buffer = b""

    def feed(self, chunk: bytes) -> list[dict]:
        if self.done or not chunk:
            return []
        self._buffer += chunk
        *lines, self._buffer = self._buffer.split(b"\n")
        return self._decode_lines(lines)

    def flush(self) -> list[dict]:
        """Decode whatever is left once the connection has closed."""
        if self.done or not self._buffer:
            return []
        remainder, self._buffer = self._buffer, b""
        return self._decode_lines([remainder])

    def _decode_lines(self, lines: list[bytes]) -> list[dict]:
        events = []
        for raw in lines:
            payload = self._payload(raw)
            if payload is None:
                continue
            if payload == self.sentinel:
                self.done = True
                self._buffer = b""
                break
            try:
                events.append(json.loads(payload))
            except json.JSONDecodeError:
                self.dropped += 1
                logger.debug("Dropping malformed SSE payload: %.80s", payload)
        return events

    def _payload(self, raw: bytes) -> str | None:
        line = raw.rstrip(b"\r")
        if not line.startswith(self.prefix):
            return None
        try:
            payload = line[len(self.prefix):].decode("utf-8")
        except UnicodeDecodeError:
            self.dropped += 1
            return None
        payload = payload.strip()
        return payload or None
