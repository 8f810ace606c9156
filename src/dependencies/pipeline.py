"""Stage orchestrator dependency.

Each platflow request gets a fresh orchestrator from the factory returned
here; tests override ``get_orchestrator_factory`` to inject fakes.
"""

from __future__ import annotations

from collections.abc import Callable
from typing import Annotated

from fastapi import Depends

from core.config import Settings, get_settings
from services.ai import PydanticAISummaryGenerator, PydanticAITextGenerator
from services.builder_client import BackendBuilderClient
from services.pipeline import StageOrchestrator


OrchestratorFactory = Callable[[], StageOrchestrator]


def get_orchestrator_factory(
    settings: Annotated[Settings, Depends(get_settings)],
) -> OrchestratorFactory:
    def create_orchestrator() -> StageOrchestrator:
        return StageOrchestrator(
            builder=BackendBuilderClient(timeout=settings.BUILDER_TIMEOUT_SECONDS),
            summary_generator=PydanticAISummaryGenerator(settings),
            text_generator=PydanticAITextGenerator(settings),
            settings=settings,
        )

    return create_orchestrator
