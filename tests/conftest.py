from typing import Iterable, List, Optional, Union

import pytest

from gamerag_client.bridge.http_transport import StreamResponse, TransportResponse
from gamerag_client.config.settings import Settings

STREAM_BODY = (
    'data: {"type":"chunk","text":"Hel"}\n\n'
    'data: {"type":"chunk","text":"lo"}\n\n'
    'data: {"type":"end"}\n\n'
)


class FakeTransport:
    """In-memory transport recording every call."""

    def __init__(
        self,
        response: Optional[TransportResponse] = None,
        fragments: Optional[Iterable[str]] = None,
        stream_status: Optional[int] = 200,
        health: Union[TransportResponse, Exception, None] = None,
    ) -> None:
        self.response = response or TransportResponse(200, '{"answer": "hi", "fromCloud": false}')
        self.fragments = fragments if fragments is not None else [STREAM_BODY]
        self.stream_status = stream_status
        self.health = health or TransportResponse(200, '{"status": "ok"}')
        self.calls: List[tuple] = []
        self.stream_closed = False
        self.closed = False

    def post_json(self, url, payload, headers, timeout):
        self.calls.append(("POST", url, payload, headers))
        return self.response

    def open_stream(self, url, payload, headers, timeout):
        self.calls.append(("STREAM", url, payload, headers))
        if self.stream_status != 200:
            return StreamResponse(status_code=self.stream_status, error="connection refused")

        def close() -> None:
            self.stream_closed = True

        return StreamResponse(status_code=200, fragments=iter(self.fragments), close=close)

    def get(self, url, headers, timeout):
        self.calls.append(("GET", url, None, headers))
        if isinstance(self.health, Exception):
            raise self.health
        return self.health

    def close(self):
        self.closed = True


@pytest.fixture
def settings():
    return Settings(
        _env_file=None,
        server_url="http://npc.test/",
        api_key=None,
        protocol_version="1",
        request_timeout=5.0,
        default_importance=0.3,
        log_responses=True,
    )


@pytest.fixture
def make_transport():
    return FakeTransport
