"""Incremental server-sent-events decoder.

Bytes are fed in whatever chunks the network delivers; events are emitted
only once their terminating blank line has arrived, so an event split across
chunk boundaries (even inside a multibyte character) decodes the same as an
unsplit one.
"""

import codecs
import json
from dataclasses import dataclass

EVENT_DELIMITER = "\n\n"
DONE_SENTINEL = "[DONE]"


@dataclass
class SSEEvent:
    data: str
    event: str | None = None
    id: str | None = None


class SSEDecoder:
    def __init__(self) -> None:
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self._buffer = ""
        self._after_cr = False

    def feed(self, chunk: bytes) -> list[SSEEvent]:
        """Consume a chunk and return every event it completed."""
        text = self._decoder.decode(chunk)
        # A "\r" ending the previous chunk already ended its line; drop the "\n" of a split "\r\n"
        if self._after_cr and text.startswith("\n"):
            text = text[1:]
            self._after_cr = False
        if text:
            self._after_cr = text.endswith("\r")
        self._buffer += _normalize_newlines(text)

        events = []
        while EVENT_DELIMITER in self._buffer:
            raw, self._buffer = self._buffer.split(EVENT_DELIMITER, 1)
            event = self._parse(raw)
            if event is not None:
                events.append(event)
        return events

    def flush(self) -> list[SSEEvent]:
        """Emit a trailing event that was never terminated by a blank line."""
        self._buffer += self._decoder.decode(b"", final=True)
        raw = _normalize_newlines(self._buffer).strip("\n")
        self._buffer = ""
        self._after_cr = False
        if not raw:
            return []
        event = self._parse(raw)
        return [event] if event is not None else []

    @staticmethod
    def _parse(raw: str) -> SSEEvent | None:
        data_lines = []
        event_type = None
        event_id = None
        for line in raw.split("\n"):
            if not line or line.startswith(":"):
                continue
            field, _, value = line.partition(":")
            if value.startswith(" "):
                value = value[1:]
            if field == "data":
                data_lines.append(value)
            elif field == "event":
                event_type = value
            elif field == "id":
                event_id = value
        if not data_lines:
            return None
        return SSEEvent(data="\n".join(data_lines), event=event_type, id=event_id)


def _normalize_newlines(text: str) -> str:
    return text.replace("\r\n", "\n").replace("\r", "\n")


def extract_response_text(event: SSEEvent) -> str | None:
    """Pull the generated text fragment out of an AI search event.

    Returns None for the end-of-stream sentinel and for events without a text
    ``response`` field. Raises ValueError on malformed JSON.
    """
    if event.data.strip() == DONE_SENTINEL:
        return None
    try:
        payload = json.loads(event.data)
    except json.JSONDecodeError as e:
        raise ValueError(f"Malformed event data: {e.msg}") from e
    if not isinstance(payload, dict):
        return None
    text = payload.get("response")
    return text if isinstance(text, str) else None
