"""SSE parsing for ``/ask/stream`` responses.

The service answers with lines of the form ``data: {"type": "chunk", "text": ...}``
terminated by ``data: {"type": "end"}``, separated by blank lines. Framing by
blank lines is not relied upon: every newline-delimited line is inspected on
its own, and anything that is not a usable ``data:`` frame is skipped.
"""
import json
from typing import Iterable, Iterator, List, Optional

from loguru import logger
from pydantic import ValidationError

from gamerag_client.schemas.errors import FrameDecodeSkipped
from gamerag_client.schemas.npc import StreamChunk, StreamEnd, StreamEvent

DATA_PREFIX = "data:"


def decode_frame(line: str) -> Optional[StreamEvent]:
    """
    Decode a single body line.

    Returns:
        The event carried by the line, or None for lines that carry no frame
        (blank separators, comments, other SSE fields, heartbeats).

    Raises:
        FrameDecodeSkipped: the line is a ``data:`` frame that cannot be used
    """
    line = line.strip()
    if not line.startswith(DATA_PREFIX):
        return None
    data = line[len(DATA_PREFIX):].strip()
    if not data:
        return None

    try:
        frame = json.loads(data)
    except (ValueError, RecursionError) as exc:
        raise FrameDecodeSkipped(f"invalid JSON frame: {exc}") from exc
    if not isinstance(frame, dict):
        raise FrameDecodeSkipped("frame is not a JSON object")

    event_type = frame.get("type")
    if event_type == "chunk":
        text = frame.get("text")
        try:
            return StreamChunk(text="" if text is None else text)
        except ValidationError as exc:
            raise FrameDecodeSkipped("chunk text is not a string") from exc
    if event_type == "end":
        try:
            return StreamEnd(
                sources=frame.get("sources") or [],
                from_cloud=frame.get("fromCloud") or False,
            )
        except ValidationError:
            # the stream still ends; only the metadata is unusable
            logger.debug("End frame carried invalid metadata; ending without it")
            return StreamEnd()
    raise FrameDecodeSkipped(f"unrecognised event type {event_type!r}")


def _scan(lines: Iterable[str]) -> Iterator[StreamEvent]:
    for line in lines:
        try:
            event = decode_frame(line)
        except FrameDecodeSkipped as exc:
            logger.debug("Skipping stream frame: {}", exc)
            continue
        if event is None:
            continue
        yield event
        if isinstance(event, StreamEnd):
            return


def _iter_lines(body: str) -> Iterator[str]:
    start = 0
    while True:
        end = body.find("\n", start)
        if end < 0:
            yield body[start:]
            return
        yield body[start:end]
        start = end + 1


def parse_stream_events(body: str) -> Iterator[StreamEvent]:
    """
    Lazily parse a complete stream body into events.

    Pure function of ``body``: parsing the same body twice yields the same
    sequence. A final line without a trailing newline is still parsed.
    Never raises; a body without usable frames yields nothing.
    """
    return _scan(_iter_lines(body))


class IncrementalEventParser:
    """
    Parser for a body that arrives in pieces.

    Each character is scanned once: ``feed`` keeps the unterminated tail
    line between calls, and ``advance`` keeps a cursor into a buffer that
    the caller keeps appending to. Use one of the two per instance, and one
    instance per request. After an end frame every call returns nothing.
    """

    def __init__(self) -> None:
        self._pending: List[str] = []
        self._cursor = 0
        self.finished = False

    @property
    def cursor(self) -> int:
        """Offset just past the last complete line consumed by ``advance``."""
        return self._cursor

    def _take(self, lines: Iterable[str]) -> List[StreamEvent]:
        events = list(_scan(lines))
        if events and isinstance(events[-1], StreamEnd):
            self.finished = True
            self._pending.clear()
        return events

    def feed(self, fragment: str) -> List[StreamEvent]:
        """Consume the next transport fragment; return the events it completed."""
        if self.finished or not fragment:
            return []
        cut = fragment.rfind("\n")
        if cut < 0:
            self._pending.append(fragment)
            return []
        self._pending.append(fragment[:cut])
        complete = "".join(self._pending)
        self._pending = [fragment[cut + 1:]]
        return self._take(_iter_lines(complete))

    def advance(self, buffer: str) -> List[StreamEvent]:
        """Consume complete lines of ``buffer`` beyond the cursor."""
        if self.finished:
            return []
        if len(buffer) < self._cursor:
            raise ValueError("stream buffer shrank below the parse cursor")
        cut = buffer.rfind("\n", self._cursor)
        if cut < 0:
            return []
        complete = buffer[self._cursor:cut]
        self._cursor = cut + 1
        return self._take(_iter_lines(complete))

    def close(self, buffer: Optional[str] = None) -> List[StreamEvent]:
        """
        Flush a trailing line that never got its newline.

        Pass the accumulated ``buffer`` when driving the parser with
        ``advance``; leave it out when driving it with ``feed``.
        """
        if self.finished:
            return []
        if buffer is not None:
            tail = buffer[self._cursor:]
            self._cursor = len(buffer)
        else:
            tail = "".join(self._pending)
            self._pending.clear()
        return self._take([tail]) if tail else []
