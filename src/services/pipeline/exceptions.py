"""Domain exceptions for the platflow pipeline.

Each exception carries a stable `error_code` for log and span tagging.
Builder and summary errors are recoverable (the stage is skipped); setup
errors are raised before the output stream exists and become a JSON error
body.
"""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(slots=True)
class PipelineError(Exception):
    """Base class for platflow pipeline errors."""

    message: str
    error_code: str

    def __str__(self) -> str:  # pragma: no cover - trivial
        return f"{self.error_code}: {self.message}"


class BuilderServiceError(PipelineError):
    def __init__(
        self,
        message: str = "Builder server request failed",
        status_code: int | None = None,
    ) -> None:
        super().__init__(message=message, error_code="builder_failed")
        self.status_code = status_code


class SummaryGenerationError(PipelineError):
    def __init__(self, message: str = "Summary generation failed") -> None:
        super().__init__(message=message, error_code="summary_failed")


class PipelineSetupError(PipelineError):
    def __init__(self, message: str = "Failed to prepare the response pipeline") -> None:
        super().__init__(message=message, error_code="setup_failed")


class ProviderConfigurationError(PipelineError):
    def __init__(self, message: str = "LLM provider is not configured") -> None:
        super().__init__(message=message, error_code="provider_config")


class PromptNotFoundError(PipelineError):
    def __init__(self, prompt_id: str) -> None:
        super().__init__(
            message=f"Prompt '{prompt_id}' not found", error_code="prompt_not_found"
        )
        self.prompt_id = prompt_id
