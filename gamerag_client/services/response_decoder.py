"""Decoding of single-shot ``/ask`` responses."""
from __future__ import annotations

import json
from typing import Any, Dict, Optional

from loguru import logger
from pydantic import ValidationError

from gamerag_client.schemas.common import ErrorPayload
from gamerag_client.schemas.errors import MalformedResponse, TransportFailure
from gamerag_client.schemas.npc import NpcAnswer


def _error_message(body: Optional[str]) -> Optional[str]:
    """Pull the ``{"error": ...}`` message out of a failed response, if any."""
    if not body:
        return None
    try:
        return ErrorPayload.model_validate_json(body).error
    except ValidationError:
        return None


def _load_object(body: str) -> Dict[str, Any]:
    try:
        payload = json.loads(body)
    except (TypeError, ValueError, RecursionError) as exc:
        raise MalformedResponse(f"Failed to parse response: {exc}") from exc
    if not isinstance(payload, dict):
        raise MalformedResponse(
            f"Failed to parse response: expected a JSON object, got {type(payload).__name__}"
        )
    return payload


def decode_answer(status_code: Optional[int], body: Optional[str]) -> NpcAnswer:
    """
    Turn a raw ``/ask`` response into an :class:`NpcAnswer`.

    Args:
        status_code: HTTP status, or None when no response was received
        body: Response body text

    Raises:
        TransportFailure: no response or any status other than 200
        MalformedResponse: 200 but the body is not an answer object
    """
    if status_code != 200:
        detail = _error_message(body)
        if detail and status_code is not None:
            raise TransportFailure(status_code, f"Request failed: HTTP {status_code} ({detail})")
        raise TransportFailure(status_code)

    payload = _load_object(body or "")

    answer = payload.get("answer")
    if not isinstance(answer, str):
        raise MalformedResponse("Failed to parse response: missing 'answer' field")

    try:
        result = NpcAnswer.from_payload(payload)
    except ValidationError as exc:
        raise MalformedResponse(f"Failed to parse response: {exc.error_count()} invalid field(s)") from exc

    logger.debug(
        "Decoded answer: {} chars, {} sources, {} scores, from_cloud={}",
        len(result.answer),
        len(result.sources),
        len(result.scores),
        result.from_cloud,
    )
    return result
