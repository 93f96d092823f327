from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterator, Optional, Protocol

import requests
from loguru import logger

from gamerag_client.schemas.errors import TransportFailure


def _noop() -> None:
    return None


@dataclass(frozen=True)
class TransportResponse:
    """Outcome of a buffered call. ``status_code`` is None when nothing came back."""

    status_code: Optional[int]
    body: str = ""
    error: Optional[str] = None


@dataclass(frozen=True)
class StreamResponse:
    """Outcome of opening a streaming call.

    ``fragments`` yields body text as it arrives and raises
    :class:`TransportFailure` if the connection breaks mid-stream.
    """

    status_code: Optional[int]
    fragments: Iterator[str] = field(default_factory=lambda: iter(()))
    body: str = ""
    error: Optional[str] = None
    close: Callable[[], None] = _noop


class Transport(Protocol):
    def post_json(
        self, url: str, payload: Dict[str, Any], headers: Dict[str, str], timeout: float
    ) -> TransportResponse: ...

    def open_stream(
        self, url: str, payload: Dict[str, Any], headers: Dict[str, str], timeout: float
    ) -> StreamResponse: ...

    def get(self, url: str, headers: Dict[str, str], timeout: float) -> TransportResponse: ...

    def close(self) -> None: ...


class RequestsTransport:
    """
    HTTP bridge built on a shared ``requests.Session``.

    - Connection errors and timeouts are reported as a missing status code,
      never as a raised ``requests`` exception.
    - Streaming bodies are decoded as UTF-8 unless the server names a charset.
    """

    def __init__(self, session: Optional[requests.Session] = None) -> None:
        self.session = session or requests.Session()

    def post_json(
        self, url: str, payload: Dict[str, Any], headers: Dict[str, str], timeout: float
    ) -> TransportResponse:
        logger.debug("POST {} npc={}", url, payload.get("npc"))
        try:
            resp = self.session.post(url, json=payload, headers=headers, timeout=timeout)
        except requests.RequestException as exc:
            logger.warning("POST {} failed: {}", url, exc)
            return TransportResponse(status_code=None, error=str(exc))
        logger.debug("POST {} -> {} ({} bytes)", url, resp.status_code, len(resp.content))
        return TransportResponse(status_code=resp.status_code, body=resp.text)

    def open_stream(
        self, url: str, payload: Dict[str, Any], headers: Dict[str, str], timeout: float
    ) -> StreamResponse:
        logger.debug("POST {} (stream) npc={}", url, payload.get("npc"))
        try:
            resp = self.session.post(
                url, json=payload, headers=headers, timeout=timeout, stream=True
            )
        except requests.RequestException as exc:
            logger.warning("POST {} failed: {}", url, exc)
            return StreamResponse(status_code=None, error=str(exc))

        if resp.status_code != 200:
            body = resp.text
            resp.close()
            logger.debug("POST {} -> {}", url, resp.status_code)
            return StreamResponse(status_code=resp.status_code, body=body)

        if "charset" not in resp.headers.get("Content-Type", "").lower():
            resp.encoding = "utf-8"
        return StreamResponse(status_code=200, fragments=self._fragments(resp), close=resp.close)

    @staticmethod
    def _fragments(resp: requests.Response) -> Iterator[str]:
        try:
            for fragment in resp.iter_content(chunk_size=None, decode_unicode=True):
                if fragment:
                    yield fragment
        except requests.RequestException as exc:
            raise TransportFailure(None, f"Streaming request failed: {exc}") from exc
        finally:
            resp.close()

    def get(self, url: str, headers: Dict[str, str], timeout: float) -> TransportResponse:
        try:
            resp = self.session.get(url, headers=headers, timeout=timeout)
        except requests.RequestException as exc:
            logger.debug("GET {} failed: {}", url, exc)
            return TransportResponse(status_code=None, error=str(exc))
        return TransportResponse(status_code=resp.status_code, body=resp.text)

    def close(self) -> None:
        self.session.close()
