"""
Tests for the incremental SSE byte decoder.
Run with: pytest tests/test_sse.py
"""

from switchboard.backends.sse import SSEDecoder


def test_line_split_across_reads_is_reassembled():
    d = SSEDecoder()
    assert d.feed(b'data: {"delta":"He') == []
    assert d.feed(b'llo"}\n') == [{"delta": "Hello"}]


def test_multiple_events_in_one_read():
    d = SSEDecoder()
    events = d.feed(b'data: {"n":1}\n\ndata: {"n":2}\n\n')
    assert events == [{"n": 1}, {"n": 2}]


def test_sentinel_ends_stream_and_ignores_rest():
    d = SSEDecoder()
    events = d.feed(b'data: {"n":1}\ndata: [DONE]\ndata: {"n":2}\n')
    assert events == [{"n": 1}]
    assert d.done
    assert d.feed(b'data: {"n":3}\n') == []
    assert d.flush() == []


def test_malformed_line_is_dropped_and_next_line_resumes():
    d = SSEDecoder()
    events = d.feed(b'data: {"broken\ndata: {"ok":true}\n')
    assert events == [{"ok": True}]
    assert d.dropped == 1


def test_non_event_lines_are_skipped():
    d = SSEDecoder()
    events = d.feed(b': keep-alive\nevent: message\n\ndata: {"x":1}\n')
    assert events == [{"x": 1}]
    assert d.dropped == 0


def test_crlf_line_endings():
    d = SSEDecoder()
    assert d.feed(b'data: {"x":1}\r\n\r\n') == [{"x": 1}]


def test_multibyte_character_split_between_reads():
    payload = 'data: {"text":"café"}\n'.encode("utf-8")
    cut = payload.index(b"\xc3") + 1
    d = SSEDecoder()
    assert d.feed(payload[:cut]) == []
    assert d.feed(payload[cut:]) == [{"text": "café"}]


def test_flush_decodes_unterminated_last_line():
    d = SSEDecoder()
    assert d.feed(b'data: {"last":1}') == []
    assert d.flush() == [{"last": 1}]


def test_one_byte_at_a_time():
    raw = b'data: {"a":1}\ndata: {"b":2}\ndata: [DONE]\n'
    d = SSEDecoder()
    events = []
    for i in range(len(raw)):
        events.extend(d.feed(raw[i:i + 1]))
    assert events == [{"a": 1}, {"b": 2}]
    assert d.done


def test_custom_prefix_and_sentinel():
    d = SSEDecoder(prefix="event-data:", sentinel="END")
    assert d.feed(b'event-data: {"x":1}\nevent-data: END\n') == [{"x": 1}]
    assert d.done
