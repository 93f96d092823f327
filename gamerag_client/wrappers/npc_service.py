from __future__ import annotations

from enum import Enum
from typing import Callable, Dict, Iterator, List, Optional

from loguru import logger
from pydantic import ValidationError

from gamerag_client.bridge.http_transport import RequestsTransport, StreamResponse, Transport
from gamerag_client.config.settings import Settings, get_settings
from gamerag_client.schemas.common import HealthStatus
from gamerag_client.schemas.errors import (
    NpcClientError,
    RequestCancelled,
    RequestValidationError,
    TransportFailure,
)
from gamerag_client.schemas.npc import NpcAnswer, QuestionRequest, StreamChunk, StreamEnd, StreamEvent
from gamerag_client.services.response_decoder import decode_answer
from gamerag_client.services.streaming_service import IncrementalEventParser

PROTOCOL_HEADER = "X-GameRAG-Protocol"
API_KEY_HEADER = "X-API-Key"


class RequestState(str, Enum):
    IDLE = "idle"
    SENT = "sent"
    STREAMING = "streaming"
    COMPLETED = "completed"
    ENDED = "ended"
    FAILED = "failed"


class DialogueListener:
    """Callback interface for hosts that prefer notifications over return values.

    Override the hooks you need; the defaults do nothing.
    """

    def on_response(self, answer: NpcAnswer) -> None:
        pass

    def on_chunk(self, text: str) -> None:
        pass

    def on_complete(self, end: StreamEnd) -> None:
        pass

    def on_error(self, error: NpcClientError) -> None:
        pass


class StreamSession:
    """
    One streaming request: ``Idle -> Sent -> Streaming -> Ended | Failed``.

    Iterating the session sends the request and yields events in arrival
    order. Accumulated chunk text is available as ``text`` and the end frame
    as ``end``. A session can be iterated once.
    """

    def __init__(self, request: QuestionRequest, opener: Callable[[], StreamResponse]) -> None:
        self.request = request
        self.state = RequestState.IDLE
        self.end: Optional[StreamEnd] = None
        self.error: Optional[NpcClientError] = None
        self._opener = opener
        self._parser = IncrementalEventParser()
        self._parts: List[str] = []
        self._response: Optional[StreamResponse] = None
        self._cancelled = False
        self._started = False

    @property
    def text(self) -> str:
        return "".join(self._parts)

    def __iter__(self) -> Iterator[StreamEvent]:
        if self._started:
            raise RuntimeError("stream session has already been consumed")
        self._started = True
        return self._events()

    def cancel(self) -> None:
        """Abort the request. The session ends in ``Failed`` with :class:`RequestCancelled`."""
        if self.state in (RequestState.ENDED, RequestState.FAILED):
            return
        self._cancelled = True
        self._fail(RequestCancelled())
        if self._response is not None:
            self._response.close()

    def collect(self) -> str:
        """Drain the stream and return the full answer text."""
        for _ in self:
            pass
        return self.text

    def _fail(self, error: NpcClientError) -> None:
        self.state = RequestState.FAILED
        if self.error is None:
            self.error = error

    def _deliver(self, events: List[StreamEvent]) -> Iterator[StreamEvent]:
        for event in events:
            if self._cancelled:
                return
            if isinstance(event, StreamChunk):
                self._parts.append(event.text)
            else:
                self.end = event
                self.state = RequestState.ENDED
            yield event

    def _events(self) -> Iterator[StreamEvent]:
        if self._cancelled:
            raise self.error  # type: ignore[misc]
        self.state = RequestState.SENT
        response = self._opener()
        self._response = response

        if response.status_code != 200:
            message = None
            if response.status_code is None:
                message = f"Streaming request failed: {response.error or 'Connection error'}"
            error = TransportFailure(response.status_code, message)
            self._fail(error)
            raise error

        self.state = RequestState.STREAMING
        try:
            for fragment in response.fragments:
                if self._cancelled:
                    break
                yield from self._deliver(self._parser.feed(fragment))
                if self._parser.finished:
                    break
            if not self._cancelled:
                yield from self._deliver(self._parser.close())
        except GeneratorExit:
            if self.state is RequestState.STREAMING:
                self._cancelled = True
                self._fail(RequestCancelled("Stream abandoned before it ended"))
            raise
        except TransportFailure as exc:
            if self._cancelled:
                raise self.error from exc
            self._fail(exc)
            raise
        except Exception as exc:
            if self._cancelled:
                raise self.error from exc
            self._fail(TransportFailure(None, f"Streaming request failed: {exc}"))
            raise
        finally:
            response.close()

        if self._cancelled:
            raise self.error  # type: ignore[misc]
        if self.state is RequestState.STREAMING:
            # body exhausted without an end frame
            self.state = RequestState.ENDED


class NpcDialogueClient:
    """
    Client for a GameRAG NPC server.

    Construct it explicitly, and ``close()`` it (or use it as a context
    manager) when the host shuts down. The client keeps no per-request
    state, so one instance may serve many NPCs at once.
    """

    def __init__(self, settings: Optional[Settings] = None, transport: Optional[Transport] = None) -> None:
        self.settings = settings or get_settings()
        self.transport = transport or RequestsTransport()
        logger.debug("NPC client initialized. Server: {}", self.settings.server_url)

    def __enter__(self) -> "NpcDialogueClient":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    def close(self) -> None:
        self.transport.close()

    def _url(self, path: str) -> str:
        return f"{self.settings.server_url.rstrip('/')}{path}"

    def _headers(self, accept: str = "application/json", json_body: bool = True) -> Dict[str, str]:
        headers = {"Accept": accept}
        if json_body:
            headers["Content-Type"] = "application/json"
        if self.settings.protocol_version:
            headers[PROTOCOL_HEADER] = self.settings.protocol_version
        if self.settings.api_key:
            headers[API_KEY_HEADER] = self.settings.api_key
        return headers

    def build_request(self, npc: str, question: str, importance: Optional[float] = None) -> QuestionRequest:
        """Validate caller input. Raises :class:`RequestValidationError` on empty npc/question."""
        if importance is None:
            importance = self.settings.default_importance
        try:
            return QuestionRequest(npc=npc, question=question, importance=importance)
        except ValidationError as exc:
            detail = "; ".join(err["msg"] for err in exc.errors())
            raise RequestValidationError(f"Invalid question request: {detail}") from exc

    def ask(self, npc: str, question: str, importance: Optional[float] = None) -> NpcAnswer:
        """
        Ask an NPC and wait for the complete answer.

        Raises:
            RequestValidationError: empty npc or question, nothing was sent
            TransportFailure: no response or a non-200 status
            MalformedResponse: the 200 body was not an answer object
        """
        request = self.build_request(npc, question, importance)
        logger.debug("Asking {}: {}", request.npc, request.question)

        response = self.transport.post_json(
            self._url("/ask"), request.to_payload(), self._headers(), self.settings.request_timeout
        )
        try:
            if response.status_code is None:
                raise TransportFailure(None, f"Request failed: {response.error or 'Connection error'}")
            answer = decode_answer(response.status_code, response.body)
        except NpcClientError as exc:
            logger.error("Ask {} failed: {}", request.npc, exc)
            raise

        if self.settings.log_responses:
            logger.info("NPC '{}' responded: {}", request.npc, answer.answer)
            logger.info(
                "From cloud: {}, time: {}ms, sources: {}",
                answer.from_cloud,
                answer.response_time_ms,
                ", ".join(answer.sources),
            )
        return answer

    def ask_stream(self, npc: str, question: str, importance: Optional[float] = None) -> StreamSession:
        """
        Prepare a streaming ask. Validation happens now; the request is sent
        when the returned session is first iterated.
        """
        request = self.build_request(npc, question, importance)

        def opener() -> StreamResponse:
            logger.debug("Asking {} (streaming): {}", request.npc, request.question)
            return self.transport.open_stream(
                self._url("/ask/stream"),
                request.to_payload(),
                self._headers(accept="text/event-stream"),
                self.settings.request_timeout,
            )

        return StreamSession(request, opener)

    def ask_with_listener(
        self,
        npc: str,
        question: str,
        listener: DialogueListener,
        importance: Optional[float] = None,
    ) -> RequestState:
        """Single-shot ask reporting through ``listener``. Returns the terminal state."""
        try:
            answer = self.ask(npc, question, importance)
        except NpcClientError as exc:
            listener.on_error(exc)
            return RequestState.FAILED
        listener.on_response(answer)
        return RequestState.COMPLETED

    def stream_with_listener(
        self,
        npc: str,
        question: str,
        listener: DialogueListener,
        importance: Optional[float] = None,
    ) -> RequestState:
        """
        Streaming ask reporting through ``listener``.

        Chunks go to ``on_chunk`` in order, then ``on_complete`` once. Any
        failure produces a single ``on_error`` and no further chunks.
        """
        try:
            session = self.ask_stream(npc, question, importance)
            for event in session:
                if isinstance(event, StreamChunk):
                    listener.on_chunk(event.text)
        except NpcClientError as exc:
            logger.error("Streaming ask {} failed: {}", npc, exc)
            listener.on_error(exc)
            return RequestState.FAILED

        if self.settings.log_responses:
            logger.info("Streaming complete: NPC '{}' sent {} chars", session.request.npc, len(session.text))
        listener.on_complete(session.end or StreamEnd())
        return session.state

    def health_status(self) -> HealthStatus:
        """GET /health. Never raises; any failure is reported as unhealthy."""
        try:
            response = self.transport.get(
                self._url("/health"), self._headers(json_body=False), self.settings.request_timeout
            )
        except Exception as exc:
            logger.warning("Health check failed: {}", exc)
            return HealthStatus(healthy=False)
        healthy = response.status_code == 200
        if self.settings.log_responses:
            logger.info("Server health: {}", "OK" if healthy else "FAILED")
        return HealthStatus(healthy=healthy, status_code=response.status_code)

    def check_health(self) -> bool:
        return self.health_status().healthy
