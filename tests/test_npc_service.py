import pytest

from gamerag_client.bridge.http_transport import TransportResponse
from gamerag_client.schemas.errors import (
    MalformedResponse,
    RequestCancelled,
    RequestValidationError,
    TransportFailure,
)
from gamerag_client.schemas.npc import StreamChunk, StreamEnd
from gamerag_client.wrappers.npc_service import DialogueListener, NpcDialogueClient, RequestState


class RecordingListener(DialogueListener):
    def __init__(self):
        self.calls = []

    def on_response(self, answer):
        self.calls.append(("response", answer))

    def on_chunk(self, text):
        self.calls.append(("chunk", text))

    def on_complete(self, end):
        self.calls.append(("complete", end))

    def on_error(self, error):
        self.calls.append(("error", error))


def _failing_fragments():
    yield 'data: {"type":"chunk","text":"Hel"}\n\n'
    raise TransportFailure(None, "Streaming request failed: connection reset")


def test_ask_posts_request_and_decodes(settings, make_transport):
    transport = make_transport(
        response=TransportResponse(200, '{"answer": "Halt!", "sources": ["gate.md"], "fromCloud": true}')
    )
    client = NpcDialogueClient(settings=settings, transport=transport)

    answer = client.ask("guard-north-gate", "Who goes there?", importance=0.8)

    assert answer.answer == "Halt!"
    assert answer.from_cloud is True
    method, url, payload, headers = transport.calls[0]
    assert method == "POST"
    assert url == "http://npc.test/ask"
    assert payload == {"npc": "guard-north-gate", "question": "Who goes there?", "importance": 0.8}
    assert headers["X-GameRAG-Protocol"] == "1"
    assert "X-API-Key" not in headers


def test_api_key_header_sent_when_configured(settings, make_transport):
    transport = make_transport()
    client = NpcDialogueClient(settings=settings.model_copy(update={"api_key": "k-123"}), transport=transport)
    client.ask("guard", "hello")
    client.check_health()
    assert all(call[3]["X-API-Key"] == "k-123" for call in transport.calls)


def test_default_importance_comes_from_settings(settings, make_transport):
    transport = make_transport()
    client = NpcDialogueClient(settings=settings.model_copy(update={"default_importance": 0.6}), transport=transport)
    client.ask("guard", "hello")
    assert transport.calls[0][2]["importance"] == 0.6


@pytest.mark.parametrize("npc, question", [("", "hello"), ("guard", "  ")])
def test_validation_error_before_any_network_call(settings, make_transport, npc, question):
    transport = make_transport()
    client = NpcDialogueClient(settings=settings, transport=transport)
    with pytest.raises(RequestValidationError):
        client.ask(npc, question)
    with pytest.raises(RequestValidationError):
        client.ask_stream(npc, question)
    assert transport.calls == []


def test_ask_connection_error(settings, make_transport):
    transport = make_transport(response=TransportResponse(None, error="connection refused"))
    client = NpcDialogueClient(settings=settings, transport=transport)
    with pytest.raises(TransportFailure) as exc_info:
        client.ask("guard", "hello")
    assert exc_info.value.status_code is None
    assert "connection refused" in str(exc_info.value)


def test_ask_malformed_body(settings, make_transport):
    client = NpcDialogueClient(settings=settings, transport=make_transport(response=TransportResponse(200, "<html>")))
    with pytest.raises(MalformedResponse):
        client.ask("guard", "hello")


def test_stream_session_happy_path(settings, make_transport):
    fragments = ['data: {"type":"chu', 'nk","text":"Hel"}\n\ndata: {"type":"chunk","text":"lo"}\n', '\ndata: {"type":"end","sources":["keep.md"]}\n\n']
    transport = make_transport(fragments=fragments)
    client = NpcDialogueClient(settings=settings, transport=transport)

    session = client.ask_stream("guard", "Tell me about the keep")
    assert session.state is RequestState.IDLE
    assert transport.calls == []

    events = list(session)

    assert events == [StreamChunk(text="Hel"), StreamChunk(text="lo"), StreamEnd(sources=["keep.md"])]
    assert session.text == "Hello"
    assert session.state is RequestState.ENDED
    assert session.end.sources == ["keep.md"]
    assert transport.calls[0][1] == "http://npc.test/ask/stream"
    assert transport.calls[0][3]["Accept"] == "text/event-stream"
    assert transport.stream_closed


def test_stream_without_end_frame_ends_when_body_is_exhausted(settings, make_transport):
    transport = make_transport(fragments=['data: {"type":"chunk","text":"only"}'])
    session = NpcDialogueClient(settings=settings, transport=transport).ask_stream("guard", "hi")
    assert session.collect() == "only"
    assert session.state is RequestState.ENDED
    assert session.end is None


def test_stream_session_can_only_be_iterated_once(settings, make_transport):
    session = NpcDialogueClient(settings=settings, transport=make_transport()).ask_stream("guard", "hi")
    session.collect()
    with pytest.raises(RuntimeError):
        iter(session)


@pytest.mark.parametrize("status", [None, 401, 500])
def test_stream_open_failure(settings, make_transport, status):
    session = NpcDialogueClient(settings=settings, transport=make_transport(stream_status=status)).ask_stream("guard", "hi")
    with pytest.raises(TransportFailure) as exc_info:
        list(session)
    assert exc_info.value.status_code == status
    assert session.state is RequestState.FAILED
    assert session.error is exc_info.value


def test_stream_failure_after_partial_chunks(settings, make_transport):
    transport = make_transport(fragments=_failing_fragments())
    session = NpcDialogueClient(settings=settings, transport=transport).ask_stream("guard", "hi")
    received = []
    with pytest.raises(TransportFailure):
        for event in session:
            received.append(event)
    assert received == [StreamChunk(text="Hel")]
    assert session.state is RequestState.FAILED
    assert transport.stream_closed


def test_cancel_mid_stream(settings, make_transport):
    fragments = [
        'data: {"type":"chunk","text":"one"}\n',
        'data: {"type":"chunk","text":"two"}\n',
        'data: {"type":"end"}\n',
    ]
    transport = make_transport(fragments=fragments)
    session = NpcDialogueClient(settings=settings, transport=transport).ask_stream("guard", "hi")
    events = iter(session)

    assert next(events) == StreamChunk(text="one")
    session.cancel()

    with pytest.raises(RequestCancelled):
        next(events)
    assert session.state is RequestState.FAILED
    assert isinstance(session.error, RequestCancelled)
    assert session.text == "one"
    assert transport.stream_closed


def test_abandoned_stream_counts_as_cancelled(settings, make_transport):
    fragments = ['data: {"type":"chunk","text":"one"}\n', 'data: {"type":"end"}\n']
    session = NpcDialogueClient(settings=settings, transport=make_transport(fragments=fragments)).ask_stream("guard", "hi")
    events = iter(session)
    next(events)
    events.close()
    assert session.state is RequestState.FAILED
    assert isinstance(session.error, RequestCancelled)


def test_cancel_after_end_is_a_no_op(settings, make_transport):
    session = NpcDialogueClient(settings=settings, transport=make_transport()).ask_stream("guard", "hi")
    session.collect()
    session.cancel()
    assert session.state is RequestState.ENDED
    assert session.error is None


def test_ask_with_listener(settings, make_transport):
    listener = RecordingListener()
    client = NpcDialogueClient(settings=settings, transport=make_transport())
    assert client.ask_with_listener("guard", "hello", listener) is RequestState.COMPLETED
    assert [name for name, _ in listener.calls] == ["response"]
    assert listener.calls[0][1].answer == "hi"


def test_ask_with_listener_reports_single_error(settings, make_transport):
    listener = RecordingListener()
    client = NpcDialogueClient(settings=settings, transport=make_transport(response=TransportResponse(500, "")))
    assert client.ask_with_listener("guard", "hello", listener) is RequestState.FAILED
    assert len(listener.calls) == 1
    assert listener.calls[0][0] == "error"
    assert listener.calls[0][1].status_code == 500


def test_stream_with_listener(settings, make_transport):
    listener = RecordingListener()
    client = NpcDialogueClient(settings=settings, transport=make_transport())
    assert client.stream_with_listener("guard", "hello", listener) is RequestState.ENDED
    assert listener.calls == [("chunk", "Hel"), ("chunk", "lo"), ("complete", StreamEnd())]


def test_stream_with_listener_failure_stops_chunks(settings, make_transport):
    listener = RecordingListener()
    client = NpcDialogueClient(settings=settings, transport=make_transport(fragments=_failing_fragments()))
    assert client.stream_with_listener("guard", "hello", listener) is RequestState.FAILED
    assert [name for name, _ in listener.calls] == ["chunk", "error"]


def test_stream_with_listener_validation_error(settings, make_transport):
    listener = RecordingListener()
    client = NpcDialogueClient(settings=settings, transport=make_transport())
    assert client.stream_with_listener("", "hello", listener) is RequestState.FAILED
    assert isinstance(listener.calls[0][1], RequestValidationError)


@pytest.mark.parametrize(
    "health, expected",
    [
        (TransportResponse(200, "ok"), True),
        (TransportResponse(500, "boom"), False),
        (TransportResponse(None, error="refused"), False),
        (ConnectionError("refused"), False),
    ],
)
def test_check_health(settings, make_transport, health, expected):
    transport = make_transport(health=health)
    client = NpcDialogueClient(settings=settings, transport=transport)
    assert client.check_health() is expected
    assert transport.calls[0][1] == "http://npc.test/health"


def test_health_status_detail(settings, make_transport):
    client = NpcDialogueClient(settings=settings, transport=make_transport(health=TransportResponse(503, "")))
    status = client.health_status()
    assert status.healthy is False
    assert status.status_code == 503


def test_client_context_manager_closes_transport(settings, make_transport):
    transport = make_transport()
    with NpcDialogueClient(settings=settings, transport=transport) as client:
        client.ask("guard", "hello")
    assert transport.closed


def test_unexpected_fragment_error_fails_the_session(settings, make_transport):
    def broken_fragments():
        yield 'data: {"type":"chunk","text":"Hel"}\n'
        raise RuntimeError("socket went away")

    transport = make_transport(fragments=broken_fragments())
    session = NpcDialogueClient(settings=settings, transport=transport).ask_stream("guard", "hi")
    with pytest.raises(RuntimeError):
        list(session)
    assert session.state is RequestState.FAILED
    assert isinstance(session.error, TransportFailure)
    assert "socket went away" in str(session.error)
    assert transport.stream_closed
