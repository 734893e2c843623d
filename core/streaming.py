# =============================================================================
# core/streaming.py  -  Stream Decoder for Server-Sent Events
# =============================================================================
#
# WHAT THIS MODULE DOES:
#   Turns the raw bytes of a streamed chat response into typed StreamEvents.
#
# WIRE FORMAT (what Coze sends):
#
#     event:conversation.message.delta
#     data:{"conversation_id":"…","chat_id":"…","content":"Hel"}
#
#     event:conversation.chat.completed
#     data:{"id":"…","conversation_id":"…","usage":{…}}
#
#     event:done
#     data:"[DONE]"
#
#   Frames end with a blank line.  A network chunk can hold half a frame,
#   or several frames, or split a multi-byte UTF-8 character.  SseDecoder
#   buffers across chunks so none of that matters to the caller.
#
# KIND RESOLUTION:
#   The body's "event" field wins, then the envelope's "event" field, then
#   the SSE "event:" line.  Dots and underscores are equivalent, and the
#   "conversation.chat." prefix is optional.  Unknown kinds yield nothing.
# =============================================================================

import codecs
import json
from typing import AsyncIterable, AsyncIterator, Optional

from core.errors import InvalidResponseFormatError, StreamBusinessError
from core.models import StreamEvent, StreamEventKind
from core.normalizer import as_dict, as_int, as_str, first_present

DONE_SENTINEL = "[DONE]"

_KIND_ALIASES: dict[str, StreamEventKind] = {
    "conversation_message_delta": StreamEventKind.MESSAGE_DELTA,
    "message_delta": StreamEventKind.MESSAGE_DELTA,
    "conversation_chat_created": StreamEventKind.CHAT_IN_PROGRESS,
    "conversation_chat_in_progress": StreamEventKind.CHAT_IN_PROGRESS,
    "chat_in_progress": StreamEventKind.CHAT_IN_PROGRESS,
    "in_progress": StreamEventKind.CHAT_IN_PROGRESS,
    "conversation_chat_completed": StreamEventKind.CHAT_COMPLETED,
    "chat_completed": StreamEventKind.CHAT_COMPLETED,
    "conversation_chat_failed": StreamEventKind.CHAT_FAILED,
    "chat_failed": StreamEventKind.CHAT_FAILED,
    "failed": StreamEventKind.CHAT_FAILED,
    "conversation_chat_requires_action": StreamEventKind.REQUIRES_ACTION,
    "requires_action": StreamEventKind.REQUIRES_ACTION,
    "done": StreamEventKind.DONE,
    "error": StreamEventKind.ERROR,
}

_CHAT_KINDS = {
    StreamEventKind.CHAT_IN_PROGRESS,
    StreamEventKind.CHAT_COMPLETED,
    StreamEventKind.CHAT_FAILED,
    StreamEventKind.REQUIRES_ACTION,
}


def resolve_kind(name: Optional[str]) -> Optional[StreamEventKind]:
    if not name:
        return None
    return _KIND_ALIASES.get(name.strip().lower().replace(".", "_"))


def parse_frame(event_name: Optional[str], payload: str) -> Optional[StreamEvent]:
    """Decode one complete SSE frame (event name + joined data lines)."""
    text = payload.strip()
    if text.strip('"') == DONE_SENTINEL:
        return StreamEvent(kind=StreamEventKind.DONE)
    if not text:
        kind = resolve_kind(event_name)
        return StreamEvent(kind=kind) if kind is StreamEventKind.DONE else None

    try:
        envelope = json.loads(text)
    except ValueError as err:
        raise InvalidResponseFormatError(f"malformed stream frame: {text[:200]}") from err
    if not isinstance(envelope, dict):
        return None

    code = envelope.get("code")
    if code not in (None, 0, "0"):
        message = envelope.get("msg") or envelope.get("message") or "stream error"
        raise StreamBusinessError(code, str(message))

    body = as_dict(envelope.get("data")) or envelope
    kind = (
        resolve_kind(as_str(body.get("event")))
        or resolve_kind(as_str(envelope.get("event")))
        or resolve_kind(event_name)
    )
    if kind is None:
        return None

    delta = as_dict(body.get("delta")) or {}
    content = as_str(delta.get("content"))
    if content is None:
        content = as_str(body.get("content"))

    chat_id = as_str(body.get("chat_id"))
    if chat_id is None and kind in _CHAT_KINDS:
        chat_id = as_str(body.get("id"))

    error = as_dict(body.get("last_error"))
    if kind is StreamEventKind.ERROR and error is None:
        error = body
    if error is not None and as_int(error.get("code")) == 0 and not error.get("msg"):
        error = None

    return StreamEvent(
        kind=kind,
        content=content,
        usage=as_dict(first_present(body, "usage")),
        error=error,
        conversation_id=as_str(body.get("conversation_id")),
        chat_id=chat_id,
    )


class SseDecoder:
    """Incremental SSE decoder: feed() bytes in, get StreamEvents out."""

    def __init__(self):
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self._buffer = ""
        self._event_name: Optional[str] = None
        self._data_lines: list[str] = []

    def feed(self, chunk: bytes) -> list[StreamEvent]:
        self._buffer += self._decoder.decode(chunk)
        return self._drain_lines()

    def flush(self) -> list[StreamEvent]:
        """Finish the stream: decode leftovers and dispatch any open frame."""
        self._buffer += self._decoder.decode(b"", final=True)
        events = self._drain_lines()
        if self._buffer:
            self._handle_line(self._buffer)
            self._buffer = ""
        event = self._dispatch()
        if event is not None:
            events.append(event)
        return events

    def _drain_lines(self) -> list[StreamEvent]:
        events = []
        while True:
            index = self._buffer.find("\n")
            if index < 0:
                break
            line = self._buffer[:index].rstrip("\r")
            self._buffer = self._buffer[index + 1:]
            if line:
                self._handle_line(line)
                continue
            event = self._dispatch()
            if event is not None:
                events.append(event)
        return events

    def _handle_line(self, line: str) -> None:
        if line.startswith(":"):
            return
        field, _, value = line.partition(":")
        if value.startswith(" "):
            value = value[1:]
        if field == "event":
            self._event_name = value
        elif field == "data":
            self._data_lines.append(value)

    def _dispatch(self) -> Optional[StreamEvent]:
        event_name, data_lines = self._event_name, self._data_lines
        self._event_name, self._data_lines = None, []
        if not data_lines and event_name is None:
            return None
        return parse_frame(event_name, "\n".join(data_lines))


async def iter_stream_events(chunks: AsyncIterable[bytes]) -> AsyncIterator[StreamEvent]:
    """Decode a byte stream, stopping after the first terminal event."""
    decoder = SseDecoder()
    async for chunk in chunks:
        for event in decoder.feed(chunk):
            yield event
            if event.kind.is_terminal:
                return
    for event in decoder.flush():
        yield event
        if event.kind.is_terminal:
            return
