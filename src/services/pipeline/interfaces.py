"""Protocols for the external collaborators of the stage pipeline.

The orchestrator depends only on these, so tests can inject fakes and the
API layer wires the httpx / pydantic-ai implementations.
"""

from __future__ import annotations

from collections.abc import AsyncGenerator, Callable
from dataclasses import dataclass
from typing import Any, Protocol

from schemas.platflow import BuilderConfig, ChatMessage
from services.pipeline.context import GenerationRequest, PipelineContext


UsageCallback = Callable[[object | None], Any]


@dataclass(slots=True, frozen=True)
class TextDelta:
    text: str


@dataclass(slots=True, frozen=True)
class UsageReported:
    usage: object


@dataclass(slots=True, frozen=True)
class GenerationFinished:
    finish_reason: str | None
    usage: object | None = None


GenerationEvent = TextDelta | UsageReported | GenerationFinished


class BuilderService(Protocol):
    """Protocol for the remote backend builder."""

    async def build(self, config: BuilderConfig, messages: list[ChatMessage]) -> Any:
        """Send the conversation to the builder and return its JSON payload."""
        ...


class SummaryGenerator(Protocol):
    """Protocol for conversation summarisation."""

    async def summarize(
        self, context: PipelineContext, *, on_finish: UsageCallback
    ) -> str:
        """Summarise the conversation, reporting usage through ``on_finish``."""
        ...


class TextGenerator(Protocol):
    """Protocol for streamed answer generation."""

    def prepare(self, context: PipelineContext) -> None:
        """Resolve provider, model, credentials and prompt up front.

        Raises on misconfiguration so the request fails before streaming.
        """
        ...

    def stream(self, request: GenerationRequest) -> AsyncGenerator[GenerationEvent, None]:
        """Yield text deltas, optional usage reports and one final event."""
        ...
