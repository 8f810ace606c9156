"""Centralized AI model factory for platflow generation.

Builds a pydantic-ai ``Model`` for the provider and model picked by the user
(``[Provider: x]`` / ``[Model: y]`` tags on the last user message) or, when
untagged, by configuration. API keys come from the ``apiKeys`` cookie first
and fall back to settings.

Usage:
    from services.ai.model_factory import resolve_model

    resolved = resolve_model(messages, credentials)
    agent = Agent(resolved.model)
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, cast

from pydantic_ai.models import Model
from pydantic_ai.models.anthropic import AnthropicModel
from pydantic_ai.models.google import GoogleModel
from pydantic_ai.models.openai import OpenAIChatModel
from pydantic_ai.providers.anthropic import AnthropicProvider
from pydantic_ai.providers.google import GoogleProvider
from pydantic_ai.providers.openai import OpenAIProvider

from core.config import Settings, get_settings
from schemas.platflow import ChatMessage
from services.credentials import RequestCredentials
from services.pipeline.context import extract_model_selection, last_user_message
from services.pipeline.exceptions import ProviderConfigurationError


if TYPE_CHECKING:
    from httpx import AsyncClient

logger = logging.getLogger(__name__)

GOOGLE = "Google"
OPENAI = "OpenAI"
ANTHROPIC = "Anthropic"
AZURE_OPENAI = "AzureOpenAI"

SUPPORTED_PROVIDERS = (GOOGLE, OPENAI, ANTHROPIC, AZURE_OPENAI)

# Used when the user picks a provider other than LLM_PROVIDER without a model
DEFAULT_MODELS: dict[str, str] = {
    GOOGLE: "gemini-2.5-flash",
    OPENAI: "gpt-4o-mini",
    ANTHROPIC: "claude-sonnet-4-5",
}

# OpenAI reasoning models that support reasoning_effort parameter
REASONING_MODELS = {
    "gpt-5-mini",
    "gpt-5-nano",
    "o1-mini",
    "o1",
    "o3-mini",
}


@dataclass(frozen=True, slots=True)
class ResolvedModel:
    provider: str
    model_name: str
    model: Model


def _normalize_azure_endpoint(endpoint: str) -> str:
    """Normalize Azure OpenAI endpoint.

    Trailing slashes can lead to `//openai/...` URLs, which Azure may treat as
    a different path and return 404.
    """
    return endpoint.rstrip("/")


def _settings_api_key(provider: str, settings: Settings) -> str | None:
    return {
        GOOGLE: settings.GEMINI_API_KEY,
        OPENAI: settings.OPENAI_API_KEY,
        ANTHROPIC: settings.ANTHROPIC_API_KEY,
        AZURE_OPENAI: settings.AZURE_OPENAI_API_KEY,
    }.get(provider)


def select_provider_and_model(
    messages: list[ChatMessage], settings: Settings
) -> tuple[str, str]:
    """Return ``(provider, model_name)`` for a conversation."""
    last = last_user_message(messages)
    model_name, provider, _ = extract_model_selection(last.content if last else "")

    provider = provider or settings.LLM_PROVIDER
    if provider not in SUPPORTED_PROVIDERS:
        raise ProviderConfigurationError(f"Unsupported LLM provider '{provider}'")

    if not model_name:
        if provider == settings.LLM_PROVIDER or provider not in DEFAULT_MODELS:
            model_name = settings.CHAT_MODEL
        else:
            model_name = DEFAULT_MODELS[provider]
    return provider, model_name


def _create_azure_model(
    model_name: str,
    api_key: str,
    settings: Settings,
    http_client: AsyncClient | None = None,
) -> Model:
    """Create an Azure OpenAI model with the specified deployment name.

    For reasoning models (o1, o3, gpt-5 series), automatically applies
    low reasoning effort for faster, more cost-effective responses.
    """
    if not settings.AZURE_OPENAI_ENDPOINT or not settings.AZURE_OPENAI_API_VERSION:
        raise ProviderConfigurationError(
            "AzureOpenAI requires AZURE_OPENAI_ENDPOINT and AZURE_OPENAI_API_VERSION"
        )

    from openai import AsyncAzureOpenAI

    azure_client = AsyncAzureOpenAI(
        azure_endpoint=_normalize_azure_endpoint(settings.AZURE_OPENAI_ENDPOINT),
        api_key=api_key,
        api_version=settings.AZURE_OPENAI_API_VERSION,
        http_client=http_client,
    )
    provider = OpenAIProvider(openai_client=azure_client)

    if model_name in REASONING_MODELS:
        logger.info(f"Applying low reasoning effort for reasoning model: {model_name}")
        return OpenAIChatModel(
            model_name,
            provider=provider,
            settings={"openai_reasoning_effort": "low"},
        )
    return OpenAIChatModel(model_name, provider=provider)


def _create_openai_model(
    model_name: str,
    api_key: str,
    base_url: str | None,
    http_client: AsyncClient | None = None,
) -> Model:
    provider = OpenAIProvider(api_key=api_key, base_url=base_url, http_client=http_client)
    return OpenAIChatModel(model_name, provider=provider)


def _create_anthropic_model(
    model_name: str,
    api_key: str,
    base_url: str | None,
    http_client: AsyncClient | None = None,
) -> Model:
    from anthropic import AsyncAnthropic

    client = AsyncAnthropic(api_key=api_key, base_url=base_url, http_client=http_client)
    return AnthropicModel(model_name, provider=AnthropicProvider(anthropic_client=client))


def _create_gemini_model(
    model_name: str,
    api_key: str,
    http_client: AsyncClient | None = None,
) -> Model:
    provider = GoogleProvider(api_key=api_key, http_client=http_client)
    return cast(Model, GoogleModel(model_name, provider=provider))


def resolve_model(
    messages: list[ChatMessage],
    credentials: RequestCredentials,
    settings: Settings | None = None,
    http_client: AsyncClient | None = None,
) -> ResolvedModel:
    """Resolve the chat model for a conversation.

    Raises:
        ProviderConfigurationError: Unknown or disabled provider, or no API key.
    """
    settings = settings or get_settings()
    provider, model_name = select_provider_and_model(messages, settings)

    provider_setting = credentials.setting_for(provider)
    if provider_setting.enabled is False:
        raise ProviderConfigurationError(f"Provider '{provider}' is disabled")

    api_key = credentials.api_key_for(provider) or _settings_api_key(provider, settings)
    if not api_key:
        raise ProviderConfigurationError(f"Missing API key for provider '{provider}'")

    base_url = provider_setting.base_url or None
    if provider == AZURE_OPENAI:
        model = _create_azure_model(model_name, api_key, settings, http_client)
    elif provider == OPENAI:
        model = _create_openai_model(model_name, api_key, base_url, http_client)
    elif provider == ANTHROPIC:
        model = _create_anthropic_model(model_name, api_key, base_url, http_client)
    else:
        if base_url:
            logger.debug("Ignoring base URL override for provider %s", provider)
        model = _create_gemini_model(model_name, api_key, http_client)

    logger.info(f"Using {provider} chat model: {model_name}")
    return ResolvedModel(provider=provider, model_name=model_name, model=model)
