"""Request and response schemas for the platflow endpoints.

Field names are camelCase on the wire (the chat UI posts them that way) and
snake_case in Python.
"""

from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    """Base model accepting both camelCase and snake_case field names."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class ChatMessage(CamelModel):
    """A single role-tagged conversation turn."""

    id: str | None = None
    role: Literal["user", "assistant", "system"]
    content: str
    annotations: list[dict[str, Any]] | None = None


class FileEntry(CamelModel):
    """Entry of the client's file map; folders carry no content."""

    type: Literal["file", "folder"] = "file"
    content: str | None = None
    is_binary: bool = False


class BuilderConfig(CamelModel):
    """Optional backend builder service configuration."""

    backend_url: str | None = None
    api_key: str | None = None
    options: dict[str, Any] | None = None


class PlatflowRequest(CamelModel):
    """Body of ``POST /api/v1/platflow``."""

    messages: list[ChatMessage] = Field(..., min_length=1)
    files: dict[str, FileEntry | None] | None = None
    prompt_id: str | None = None
    context_optimization: bool = False
    builder_config: BuilderConfig | None = None


class ProviderSetting(CamelModel):
    """Per-provider settings carried in the ``providers`` cookie."""

    enabled: bool | None = None
    base_url: str | None = None


class PromptRequest(CamelModel):
    """Body of ``POST /api/v1/platflow/prompt``."""

    prompt: str | None = None
    template: str | None = None
    api_key: str | None = None


class PromptResponse(CamelModel):
    """Redirect target for a prompt handed off by an external caller."""

    success: bool = True
    session_id: str
    redirect_url: str
