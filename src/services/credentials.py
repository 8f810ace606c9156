"""Read provider API keys and provider settings from request cookies."""

from __future__ import annotations

import json
from collections.abc import Mapping
from dataclasses import dataclass, field
from urllib.parse import unquote

from pydantic import ValidationError

from core.exceptions import InvalidRequestError
from schemas.platflow import ProviderSetting


API_KEYS_COOKIE = "apiKeys"
PROVIDERS_COOKIE = "providers"


@dataclass(slots=True, frozen=True)
class RequestCredentials:
    """Per-request provider credentials supplied by the browser."""

    api_keys: dict[str, str] = field(default_factory=dict)
    provider_settings: dict[str, ProviderSetting] = field(default_factory=dict)

    def api_key_for(self, provider: str) -> str | None:
        key = self.api_keys.get(provider)
        return key or None

    def setting_for(self, provider: str) -> ProviderSetting:
        return self.provider_settings.get(provider) or ProviderSetting()


def _load_json_object(cookies: Mapping[str, str], name: str) -> dict[str, object]:
    raw = cookies.get(name)
    if not raw:
        return {}
    try:
        value = json.loads(unquote(raw))
    except json.JSONDecodeError as e:
        raise InvalidRequestError(f"Cookie '{name}' is not valid JSON") from e
    if not isinstance(value, dict):
        raise InvalidRequestError(f"Cookie '{name}' must be a JSON object")
    return value


def parse_request_credentials(cookies: Mapping[str, str]) -> RequestCredentials:
    """Build ``RequestCredentials`` from the ``apiKeys`` and ``providers`` cookies.

    Cookie values arrive URI-encoded from the browser. Absent cookies yield empty
    mappings; malformed ones raise ``InvalidRequestError``.
    """
    api_keys = {
        str(provider): str(key)
        for provider, key in _load_json_object(cookies, API_KEYS_COOKIE).items()
        if isinstance(key, str)
    }

    provider_settings: dict[str, ProviderSetting] = {}
    for provider, raw_setting in _load_json_object(cookies, PROVIDERS_COOKIE).items():
        if not isinstance(raw_setting, dict):
            continue
        try:
            provider_settings[str(provider)] = ProviderSetting.model_validate(raw_setting)
        except ValidationError as e:
            raise InvalidRequestError(
                f"Invalid settings for provider '{provider}' in cookie"
            ) from e

    return RequestCredentials(api_keys=api_keys, provider_settings=provider_settings)
