"""Service for summarising platflow conversations using pydantic-ai."""

from __future__ import annotations

import logging

from pydantic_ai import Agent
from pydantic_ai.models import Model

from core.config import Settings, get_settings
from schemas.platflow import ChatMessage
from services.ai.model_factory import resolve_model
from services.ai.prompts import SUMMARY_SYSTEM_PROMPT
from services.ai.text_generator import strip_reasoning
from services.pipeline.context import PipelineContext, strip_model_tags
from services.pipeline.exceptions import SummaryGenerationError
from services.pipeline.interfaces import UsageCallback


logger = logging.getLogger(__name__)

CONTEXT_SUMMARY_KIND = "context-summary"


def find_previous_summary(messages: list[ChatMessage]) -> tuple[int, str | None]:
    """Locate the most recent assistant turn carrying a context summary.

    Returns the index of the first message after it (0 when there is none)
    and the summary text.
    """
    for index in range(len(messages) - 1, -1, -1):
        for annotation in messages[index].annotations or []:
            if annotation.get("kind") == CONTEXT_SUMMARY_KIND and annotation.get(
                "summary"
            ):
                return index + 1, str(annotation["summary"])
    return 0, None


def format_summary_input(messages: list[ChatMessage]) -> str:
    """Render the part of the conversation that still needs summarising."""
    start, previous_summary = find_previous_summary(messages)
    sections: list[str] = []
    if previous_summary:
        sections.append(f"PREVIOUS SUMMARY:\n---\n{previous_summary}\n---")

    lines: list[str] = []
    for message in messages[start:]:
        if message.role == "user":
            content = strip_model_tags(message).content
        elif message.role == "assistant":
            content = strip_reasoning(message.content)
        else:
            continue
        if content:
            lines.append(f"[{message.role}]: {content}")
    sections.append("CONVERSATION:\n---\n" + "\n\n".join(lines) + "\n---")
    return "\n\n".join(sections)


class PydanticAISummaryGenerator:
    """Summary generator backed by a single ``Agent.run`` call."""

    def __init__(self, settings: Settings | None = None, model: Model | None = None) -> None:
        self.settings = settings or get_settings()
        self._model = model

    def _get_model(self, context: PipelineContext) -> Model:
        if self._model is None:
            self._model = resolve_model(
                context.messages, context.credentials, self.settings
            ).model
        return self._model

    async def summarize(
        self, context: PipelineContext, *, on_finish: UsageCallback
    ) -> str:
        """Summarise the conversation since the last context summary.

        Raises:
            SummaryGenerationError: The model returned an empty summary.
        """
        agent: Agent[None, str] = Agent(
            self._get_model(context), system_prompt=SUMMARY_SYSTEM_PROMPT
        )
        result = await agent.run(format_summary_input(context.messages))
        on_finish(result.usage())

        summary = result.output.strip()
        if not summary:
            raise SummaryGenerationError("Summary model returned no text")
        logger.debug("Generated context summary (%d chars)", len(summary))
        return summary
