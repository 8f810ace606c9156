"""Streamed answer generation with pydantic-ai."""

from __future__ import annotations

import logging
import re
from collections.abc import AsyncGenerator

from pydantic_ai import Agent
from pydantic_ai.messages import (
    ModelMessage,
    ModelRequest,
    ModelResponse,
    SystemPromptPart,
    TextPart,
    UserPromptPart,
)
from pydantic_ai.models import Model

from core.config import Settings, get_settings
from schemas.platflow import ChatMessage
from services.ai.model_factory import resolve_model
from services.ai.prompts import PromptTemplate, build_system_prompt, get_prompt
from services.pipeline.context import GenerationRequest, PipelineContext, strip_model_tags
from services.pipeline.interfaces import GenerationEvent, GenerationFinished, TextDelta


logger = logging.getLogger(__name__)

MAX_TOKENS = 8000

_THINK_BLOCK = re.compile(r"<think>.*?</think>", re.DOTALL)


def strip_reasoning(content: str) -> str:
    """Drop ``<think>`` blocks reasoning models leave in earlier answers."""
    return _THINK_BLOCK.sub("", content).strip()


def convert_messages_to_pydantic_ai(messages: list[ChatMessage]) -> list[ModelMessage]:
    """Convert chat turns to PydanticAI ModelMessage format.

    User turns lose their model/provider tags, assistant turns lose any
    reasoning blocks. Empty turns are skipped.
    """
    result: list[ModelMessage] = []
    for msg in messages:
        if msg.role == "user":
            content = strip_model_tags(msg).content
            if content:
                result.append(ModelRequest(parts=[UserPromptPart(content=content)]))
        elif msg.role == "assistant":
            content = strip_reasoning(msg.content)
            if content:
                result.append(
                    ModelResponse(parts=[TextPart(content=content)], model_name="historical")
                )
        elif msg.content:
            result.append(ModelRequest(parts=[SystemPromptPart(content=msg.content)]))
    return result


def _finish_reason(messages: list[ModelMessage]) -> str | None:
    for message in reversed(messages):
        if isinstance(message, ModelResponse):
            return getattr(message, "finish_reason", None)
    return None


class PydanticAITextGenerator:
    """Text generator backed by ``Agent.run_stream``.

    ``prepare()`` resolves the model and prompt for the request; ``stream()``
    must only be called afterwards.
    """

    def __init__(self, settings: Settings | None = None, model: Model | None = None) -> None:
        self.settings = settings or get_settings()
        self._model = model
        self._prompt: PromptTemplate | None = None

    @property
    def model(self) -> Model:
        if self._model is None:
            raise RuntimeError("Text generator has not been prepared")
        return self._model

    def prepare(self, context: PipelineContext) -> None:
        self._prompt = get_prompt(context.prompt_id)
        if self._model is None:
            self._model = resolve_model(
                context.messages, context.credentials, self.settings
            ).model

    async def stream(
        self, request: GenerationRequest
    ) -> AsyncGenerator[GenerationEvent, None]:
        prompt = self._prompt or get_prompt(request.prompt_id)
        agent: Agent[None, str] = Agent(self.model)

        # The agent skips its own system prompt whenever history is passed,
        # so the prompt always travels as the first history message.
        history: list[ModelMessage] = [
            ModelRequest(
                parts=[SystemPromptPart(content=build_system_prompt(prompt, request.summary))]
            ),
            *convert_messages_to_pydantic_ai(request.history()),
        ]
        user_prompt: str | None = None
        if isinstance(history[-1], ModelRequest):
            last = history.pop()
            user_prompt = "".join(
                part.content
                for part in last.parts
                if isinstance(part, UserPromptPart) and isinstance(part.content, str)
            ) or None
            if user_prompt is None:
                history.append(last)

        logger.debug(
            "Starting generation with %d history messages (summary: %s)",
            len(history),
            request.summary is not None,
        )
        async with agent.run_stream(
            user_prompt,
            message_history=history,
            model_settings={"max_tokens": MAX_TOKENS},
        ) as result:
            async for delta in result.stream_text(delta=True):
                if delta:
                    yield TextDelta(delta)
            usage = result.usage()
            finish_reason = _finish_reason(result.all_messages())

        yield GenerationFinished(finish_reason=finish_reason or "stop", usage=usage)
