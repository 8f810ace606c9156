"""Init file for AI services."""

from .model_factory import ResolvedModel, resolve_model
from .summary_generator import PydanticAISummaryGenerator
from .text_generator import PydanticAITextGenerator


__all__ = [
    "PydanticAISummaryGenerator",
    "PydanticAITextGenerator",
    "ResolvedModel",
    "resolve_model",
]
