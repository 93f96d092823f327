"""NPC ask request/response models."""
from __future__ import annotations

import math
from typing import Any, Dict, List, Literal, Mapping, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationInfo, field_validator


DEFAULT_IMPORTANCE = 0.3


class QuestionRequest(BaseModel):
    """Request body for ``/ask`` and ``/ask/stream``.

    ``importance`` is an advisory routing hint (higher prefers the cloud
    tier); values outside [0, 1] are clamped rather than rejected.
    """

    model_config = ConfigDict(frozen=True)

    npc: str
    question: str
    importance: float = DEFAULT_IMPORTANCE

    @field_validator("npc", "question")
    @classmethod
    def _not_blank(cls, value: str, info: ValidationInfo) -> str:
        if not value.strip():
            raise ValueError(f"{info.field_name} must not be empty")
        return value

    @field_validator("importance")
    @classmethod
    def _clamp_importance(cls, value: float) -> float:
        if math.isnan(value):
            raise ValueError("importance must be a number")
        return min(max(value, 0.0), 1.0)

    def to_payload(self) -> Dict[str, Any]:
        return {"npc": self.npc, "question": self.question, "importance": self.importance}


class NpcAnswer(BaseModel):
    """Single-shot answer returned by ``/ask``.

    ``sources`` and ``scores`` share an ordering but their lengths are not
    guaranteed to match, so they are kept as two independent lists.
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    answer: str = ""
    sources: List[str] = Field(default_factory=list)
    scores: List[float] = Field(default_factory=list)
    from_cloud: bool = Field(False, alias="fromCloud")
    response_time_ms: int = Field(0, alias="responseTimeMs")

    @field_validator("sources", mode="before")
    @classmethod
    def _sources_as_strings(cls, value: Any) -> List[str]:
        if not isinstance(value, (list, tuple)):
            raise ValueError("sources must be an array")
        return ["" if item is None else str(item) for item in value]

    @field_validator("response_time_ms", mode="before")
    @classmethod
    def _non_negative_millis(cls, value: Any) -> int:
        try:
            millis = int(float(value))
        except (TypeError, ValueError, OverflowError) as exc:
            raise ValueError("responseTimeMs must be a number") from exc
        return max(millis, 0)

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> "NpcAnswer":
        """Build an answer from a decoded JSON object, defaulting absent fields."""
        return cls(
            answer=payload.get("answer") or "",
            sources=payload.get("sources") or [],
            scores=payload.get("scores") or [],
            from_cloud=payload.get("fromCloud") or False,
            response_time_ms=payload.get("responseTimeMs") or 0,
        )

    def to_payload(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True)


class StreamChunk(BaseModel):
    """A fragment of the answer text, to be appended in arrival order."""

    model_config = ConfigDict(frozen=True)

    type: Literal["chunk"] = "chunk"
    text: str = ""


class StreamEnd(BaseModel):
    """Terminal stream frame. Nothing after it belongs to the request."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    type: Literal["end"] = "end"
    sources: List[str] = Field(default_factory=list)
    from_cloud: bool = Field(False, alias="fromCloud")


StreamEvent = Union[StreamChunk, StreamEnd]
