"""Unit tests for the incremental SSE decoder."""

import pytest

from portal.services.sse import SSEDecoder, SSEEvent, extract_response_text

TWO_EVENTS = b'data: {"response": "Hel"}\n\ndata: {"response": "lo"}\n\n'


def _decode_in_pieces(payload: bytes, split_at: list[int]) -> list[SSEEvent]:
    decoder = SSEDecoder()
    events = []
    start = 0
    for idx in split_at + [len(payload)]:
        events.extend(decoder.feed(payload[start:idx]))
        start = idx
    events.extend(decoder.flush())
    return events


class TestSSEDecoder:
    def test_single_complete_event(self):
        events = SSEDecoder().feed(b'data: {"response": "hi"}\n\n')
        assert events == [SSEEvent(data='{"response": "hi"}')]

    def test_two_events_in_one_chunk(self):
        events = SSEDecoder().feed(TWO_EVENTS)
        assert [e.data for e in events] == ['{"response": "Hel"}', '{"response": "lo"}']

    def test_incomplete_event_is_held_back(self):
        decoder = SSEDecoder()
        assert decoder.feed(b'data: {"response": "Hel"}\n') == []
        assert decoder.feed(b"\n") == [SSEEvent(data='{"response": "Hel"}')]

    def test_event_split_at_every_byte_boundary(self):
        expected = SSEDecoder().feed(TWO_EVENTS)
        for i in range(1, len(TWO_EVENTS)):
            assert _decode_in_pieces(TWO_EVENTS, [i]) == expected, f"split at {i}"

    def test_multibyte_character_split_across_chunks(self):
        payload = 'data: {"response": "你好"}\n\n'.encode()
        cut = payload.index("你".encode()) + 1  # inside the 3-byte sequence
        events = _decode_in_pieces(payload, [cut])
        assert extract_response_text(events[0]) == "你好"

    def test_crlf_line_endings(self):
        events = SSEDecoder().feed(b'data: {"response": "a"}\r\n\r\ndata: {"response": "b"}\r\n\r\n')
        assert [extract_response_text(e) for e in events] == ["a", "b"]

    def test_crlf_split_between_cr_and_lf(self):
        payload = b'data: {"response": "a"}\r\n\r\n'
        events = _decode_in_pieces(payload, [len(payload) - 1])
        assert len(events) == 1

    def test_crlf_split_emits_event_without_waiting(self):
        decoder = SSEDecoder()
        assert len(decoder.feed(b'data: {"response": "a"}\r\n\r')) == 1
        assert decoder.feed(b"\ndata: {\"response\": \"b\"}\r\n\r\n") == [SSEEvent(data='{"response": "b"}')]

    def test_bare_cr_line_endings(self):
        events = SSEDecoder().feed(b'data: {"response": "a"}\r\rdata: {"response": "b"}\r\r')
        assert [extract_response_text(e) for e in events] == ["a", "b"]

    def test_bare_cr_split_across_chunks(self):
        payload = b'event: message\rdata: {"response": "a"}\r\rdata: {"response": "b"}\r\r'
        for i in range(1, len(payload)):
            events = _decode_in_pieces(payload, [i])
            assert [extract_response_text(e) for e in events] == ["a", "b"], f"split at {i}"
            assert events[0].event == "message"

    def test_fields_comments_and_multiline_data(self):
        raw = b": keep-alive\nevent: message\nid: 7\ndata: line one\ndata: line two\n\n"
        events = SSEDecoder().feed(raw)
        assert events == [SSEEvent(data="line one\nline two", event="message", id="7")]

    def test_data_without_space_after_colon(self):
        events = SSEDecoder().feed(b'data:{"response": "x"}\n\n')
        assert events[0].data == '{"response": "x"}'

    def test_comment_only_block_emits_nothing(self):
        assert SSEDecoder().feed(b": ping\n\n") == []

    def test_flush_emits_unterminated_trailing_event(self):
        decoder = SSEDecoder()
        assert decoder.feed(b'data: {"response": "tail"}') == []
        assert [e.data for e in decoder.flush()] == ['{"response": "tail"}']

    def test_flush_on_empty_buffer(self):
        assert SSEDecoder().flush() == []


class TestExtractResponseText:
    def test_response_field(self):
        assert extract_response_text(SSEEvent(data='{"response": "chunk"}')) == "chunk"

    def test_done_sentinel(self):
        assert extract_response_text(SSEEvent(data="[DONE]")) is None

    def test_event_without_response_field(self):
        assert extract_response_text(SSEEvent(data='{"usage": {"tokens": 3}}')) is None

    def test_non_object_payload(self):
        assert extract_response_text(SSEEvent(data="[1, 2]")) is None

    def test_malformed_json_raises_value_error(self):
        with pytest.raises(ValueError):
            extract_response_text(SSEEvent(data="{not json"))
