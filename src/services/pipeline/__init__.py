"""Init file for the platflow stage pipeline."""

from .context import GenerationRequest, PipelineContext
from .emitter import ProgressEmitter
from .exceptions import (
    BuilderServiceError,
    PipelineError,
    PipelineSetupError,
    PromptNotFoundError,
    ProviderConfigurationError,
    SummaryGenerationError,
)
from .orchestrator import StageOrchestrator
from .stages import Continue, Degrade, Fail, Stage
from .usage import TokenUsage, UsageAccumulator


__all__ = [
    "BuilderServiceError",
    "Continue",
    "Degrade",
    "Fail",
    "GenerationRequest",
    "PipelineContext",
    "PipelineError",
    "PipelineSetupError",
    "ProgressEmitter",
    "PromptNotFoundError",
    "ProviderConfigurationError",
    "Stage",
    "StageOrchestrator",
    "SummaryGenerationError",
    "TokenUsage",
    "UsageAccumulator",
]
