"""Load provider API keys from Azure Key Vault at startup."""

from __future__ import annotations

import logging
import os

from azure.identity import DefaultAzureCredential
from azure.keyvault.secrets import SecretClient

from core.config import get_settings


logger = logging.getLogger(__name__)

# Key Vault secret name -> environment variable read by Settings
KEY_VAULT_SECRETS: dict[str, str] = {
    "ANTHROPIC-CLAUDE": "ANTHROPIC_API_KEY",
    "OPENAI-API-KEY": "OPENAI_API_KEY",
}


def load_api_keys_from_key_vault(key_vault_url: str) -> list[str]:
    """Copy provider API keys from Key Vault into the process environment.

    Returns the environment variable names that were set. Any Key Vault
    failure is logged and re-raised so a misconfigured deployment fails at
    startup instead of on the first request.
    """
    try:
        credential = DefaultAzureCredential()
        client = SecretClient(vault_url=key_vault_url, credential=credential)

        loaded: list[str] = []
        for secret_name, env_name in KEY_VAULT_SECRETS.items():
            secret = client.get_secret(secret_name)
            if secret.value:
                os.environ[env_name] = secret.value
                loaded.append(env_name)
    except Exception:
        logger.exception("Failed to initialize API keys from Key Vault")
        raise

    # Settings are cached; drop the cache so the new keys are visible.
    get_settings.cache_clear()
    logger.info("Loaded %d API keys from Azure Key Vault", len(loaded))
    return loaded
