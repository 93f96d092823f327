"""Client error taxonomy."""
from __future__ import annotations

from typing import Optional


class NpcClientError(Exception):
    """Base class for every error raised by the NPC client."""


class RequestValidationError(NpcClientError, ValueError):
    """Caller supplied an empty npc or question. Raised before any network call."""


class TransportFailure(NpcClientError):
    """No response, connection error or non-200 status.

    ``status_code`` is None when no response was received at all.
    """

    def __init__(self, status_code: Optional[int], message: Optional[str] = None) -> None:
        self.status_code = status_code
        if message is None:
            message = (
                "Request failed: Connection error"
                if status_code is None
                else f"Request failed: HTTP {status_code}"
            )
        super().__init__(message)


class RequestCancelled(TransportFailure):
    """An in-flight request was cancelled by the caller."""

    def __init__(self, message: str = "Request cancelled") -> None:
        super().__init__(None, message)


class MalformedResponse(NpcClientError):
    """HTTP 200 whose body is not a usable answer object."""


class FrameDecodeSkipped(NpcClientError):
    """A single streaming frame could not be used. Never leaves the parser."""
