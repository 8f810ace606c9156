"""Records written onto the platflow output stream and their SSE framing."""

from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field

from schemas.platflow import CamelModel


ProgressLabel = Literal["builder", "summary", "response"]
ProgressStatus = Literal["in-progress", "complete"]


class ProgressAnnotation(CamelModel):
    """Lifecycle update for one pipeline stage."""

    kind: Literal["progress"] = "progress"
    label: ProgressLabel
    status: ProgressStatus
    order: int = Field(..., ge=1)
    message: str


class ContextSummaryAnnotation(CamelModel):
    kind: Literal["context-summary"] = "context-summary"
    summary: str
    chat_id: str


class BuilderResultAnnotation(CamelModel):
    """Builder response; ``summary`` holds the JSON-serialized payload."""

    kind: Literal["builder-result"] = "builder-result"
    summary: str
    chat_id: str


class TruncationAnnotation(CamelModel):
    """Emitted whenever generation stops because of the output token limit."""

    kind: Literal["truncation"] = "truncation"
    segment: int
    max_segments: int
    continued: bool


class UsageTotals(CamelModel):
    completion_tokens: int = 0
    prompt_tokens: int = 0
    total_tokens: int = 0


class UsageAnnotation(CamelModel):
    kind: Literal["usage"] = "usage"
    value: UsageTotals


StreamAnnotation = (
    ContextSummaryAnnotation
    | BuilderResultAnnotation
    | TruncationAnnotation
    | UsageAnnotation
)


class PlatflowSseEvent(BaseModel):
    """Canonical SSE envelope for the platflow stream.

    ``progress`` and ``annotation`` events carry the camelCase record as
    ``data``; ``message.delta`` carries one raw content fragment; ``error``
    is only written when the stream terminates abnormally.
    """

    event: Literal["progress", "annotation", "message.delta", "error"]
    data: dict[str, Any] = Field(default_factory=dict)

    model_config = ConfigDict(extra="forbid")

    def to_sse(self) -> str:
        """Serialize event to SSE format."""
        return f"data: {self.model_dump_json()}\n\n"

    @classmethod
    def for_record(
        cls, record: ProgressAnnotation | StreamAnnotation
    ) -> PlatflowSseEvent:
        event = "progress" if isinstance(record, ProgressAnnotation) else "annotation"
        return cls(event=event, data=record.model_dump(by_alias=True))

    @classmethod
    def delta(cls, text: str) -> PlatflowSseEvent:
        return cls(event="message.delta", data={"delta": text})

    @classmethod
    def error(cls, message: str) -> PlatflowSseEvent:
        return cls(event="error", data={"message": message})
