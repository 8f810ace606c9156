"""Shared test fixtures for pytest.

ENVIRONMENT is forced to ``test`` before the app is imported so settings are
built from defaults without reading an env file. The fakes below stand in for
the builder service and the LLM-backed generators.
"""

from __future__ import annotations

import asyncio
import json
import os
from collections.abc import AsyncGenerator, AsyncIterator, Callable
from dataclasses import dataclass, field
from typing import Any

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from pydantic_ai import models


os.environ["ENVIRONMENT"] = "test"

# Block any real model requests in tests
models.ALLOW_MODEL_REQUESTS = False

from core.config import Settings
from dependencies.pipeline import get_orchestrator_factory
from main import app
from schemas.platflow import BuilderConfig, ChatMessage, FileEntry
from services.credentials import RequestCredentials
from services.pipeline import StageOrchestrator
from services.pipeline.context import GenerationRequest, PipelineContext
from services.pipeline.interfaces import GenerationFinished, TextDelta, UsageReported


def parse_sse(text: str) -> list[dict[str, Any]]:
    """Decode ``data: {...}`` frames into their JSON envelopes."""
    return [
        json.loads(line[len("data: ") :])
        for line in text.split("\n")
        if line.startswith("data: ")
    ]


async def collect(output: AsyncIterator[str]) -> list[dict[str, Any]]:
    frames = [frame async for frame in output]
    return parse_sse("".join(frames))


def progress_of(events: list[dict[str, Any]]) -> list[dict[str, Any]]:
    return [e["data"] for e in events if e["event"] == "progress"]


def annotations_of(events: list[dict[str, Any]]) -> list[dict[str, Any]]:
    return [e["data"] for e in events if e["event"] == "annotation"]


def text_of(events: list[dict[str, Any]]) -> str:
    return "".join(e["data"]["delta"] for e in events if e["event"] == "message.delta")


def make_settings(**overrides: Any) -> Settings:
    return Settings(_env_file=None, **overrides)  # type: ignore[call-arg]


def make_messages(count: int) -> list[ChatMessage]:
    roles = ("user", "assistant")
    return [
        ChatMessage(id=f"msg-{i}", role=roles[i % 2], content=f"message {i}")
        for i in range(count)
    ]


def make_context(
    *,
    message_count: int = 1,
    messages: list[ChatMessage] | None = None,
    files: dict[str, FileEntry | None] | None = None,
    context_optimization: bool = False,
    builder_url: str | None = None,
    prompt_id: str = "default",
) -> PipelineContext:
    from services.pipeline.context import get_file_paths

    files = files or {}
    return PipelineContext(
        messages=messages if messages is not None else make_messages(message_count),
        prompt_id=prompt_id,
        context_optimization=context_optimization,
        files=files,
        builder_config=BuilderConfig(backend_url=builder_url) if builder_url else None,
        credentials=RequestCredentials(),
        file_paths=get_file_paths(files),
    )


PROJECT_FILES: dict[str, FileEntry | None] = {
    "/home/project/src": FileEntry(type="folder"),
    "/home/project/src/App.tsx": FileEntry(type="file", content="export {}"),
    "/home/project/package.json": FileEntry(type="file", content="{}"),
}


class FakeBuilder:
    def __init__(
        self,
        payload: Any = None,
        error: Exception | None = None,
        block: bool = False,
    ) -> None:
        self.payload = payload if payload is not None else {"files": ["index.html"]}
        self.error = error
        self.block = block
        self.calls: list[tuple[BuilderConfig, list[ChatMessage]]] = []
        self.cancelled = False

    async def build(self, config: BuilderConfig, messages: list[ChatMessage]) -> Any:
        self.calls.append((config, messages))
        if self.block:
            try:
                await asyncio.Event().wait()
            except asyncio.CancelledError:
                self.cancelled = True
                raise
        if self.error is not None:
            raise self.error
        return self.payload


class FakeSummaryGenerator:
    def __init__(
        self,
        summary: str = "The user is building a todo app.",
        usage: object | None = None,
        error: Exception | None = None,
        delay: float = 0.0,
    ) -> None:
        self.summary = summary
        self.usage = usage
        self.error = error
        self.delay = delay
        self.calls = 0

    async def summarize(
        self, context: PipelineContext, *, on_finish: Callable[[object | None], Any]
    ) -> str:
        self.calls += 1
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        on_finish(self.usage)
        return self.summary


@dataclass
class FakeSegment:
    chunks: list[str]
    finish_reason: str = "stop"
    usage: object | None = None
    error: Exception | None = None
    block: bool = False
    interim_usage: list[object] = field(default_factory=list)


class FakeTextGenerator:
    def __init__(
        self,
        segments: list[FakeSegment] | None = None,
        prepare_error: Exception | None = None,
    ) -> None:
        self.segments = segments or [
            FakeSegment(
                ["Hello", " world"],
                usage={"input_tokens": 20, "output_tokens": 7, "total_tokens": 27},
            )
        ]
        self.prepare_error = prepare_error
        self.prepared: PipelineContext | None = None
        self.requests: list[GenerationRequest] = []
        self.closed = asyncio.Event()

    def prepare(self, context: PipelineContext) -> None:
        if self.prepare_error is not None:
            raise self.prepare_error
        self.prepared = context

    async def stream(self, request: GenerationRequest) -> AsyncGenerator[Any, None]:
        self.requests.append(request)
        segment = self.segments[min(len(self.requests), len(self.segments)) - 1]
        try:
            for usage in segment.interim_usage:
                yield UsageReported(usage)
            for chunk in segment.chunks:
                yield TextDelta(chunk)
            if segment.block:
                await asyncio.Event().wait()
            if segment.error is not None:
                raise segment.error
            yield GenerationFinished(segment.finish_reason, segment.usage)
        finally:
            self.closed.set()


def make_orchestrator(
    *,
    builder: FakeBuilder | None = None,
    summary_generator: FakeSummaryGenerator | None = None,
    text_generator: FakeTextGenerator | None = None,
    settings: Settings | None = None,
) -> StageOrchestrator:
    return StageOrchestrator(
        builder=builder or FakeBuilder(),
        summary_generator=summary_generator or FakeSummaryGenerator(),
        text_generator=text_generator or FakeTextGenerator(),
        settings=settings or make_settings(),
    )


@pytest_asyncio.fixture
async def async_client() -> AsyncGenerator[AsyncClient, None]:
    async with AsyncClient(
        transport=ASGITransport(app=app), base_url="http://test"
    ) as client:
        yield client
    app.dependency_overrides.clear()


@pytest.fixture
def use_fakes() -> Callable[..., None]:
    """Route the platflow endpoint to an orchestrator built from fakes."""

    def install(**kwargs: Any) -> None:
        app.dependency_overrides[get_orchestrator_factory] = lambda: (
            lambda: make_orchestrator(**kwargs)
        )

    return install
