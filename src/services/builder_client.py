"""HTTP client for the backend builder service."""

from __future__ import annotations

import logging
from typing import Any

import httpx

from schemas.platflow import BuilderConfig, ChatMessage
from services.pipeline.exceptions import BuilderServiceError


logger = logging.getLogger(__name__)


class BackendBuilderClient:
    """Posts the conversation to a builder URL and returns its JSON payload.

    One attempt per request; every failure is raised as ``BuilderServiceError``.
    """

    def __init__(
        self,
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.timeout = timeout
        self._transport = transport

    async def build(self, config: BuilderConfig, messages: list[ChatMessage]) -> Any:
        if not config.backend_url:
            raise BuilderServiceError("Builder URL is not configured")

        headers = {"Content-Type": "application/json"}
        if config.api_key:
            headers["Authorization"] = f"Bearer {config.api_key}"

        body = {
            "messages": [
                m.model_dump(by_alias=True, exclude_none=True) for m in messages
            ],
            "builderOptions": config.options or {},
        }

        try:
            async with httpx.AsyncClient(
                timeout=self.timeout, transport=self._transport
            ) as client:
                response = await client.post(
                    config.backend_url, json=body, headers=headers
                )
        except httpx.TimeoutException as e:
            raise BuilderServiceError(
                f"Builder server timed out after {self.timeout:g}s"
            ) from e
        except httpx.HTTPError as e:
            raise BuilderServiceError(f"Builder server request failed: {e}") from e

        if not response.is_success:
            raise BuilderServiceError(
                f"Builder server returned status {response.status_code}",
                status_code=response.status_code,
            )

        try:
            payload = response.json()
        except ValueError as e:
            raise BuilderServiceError("Builder server returned invalid JSON") from e

        logger.debug("Builder server responded with status %s", response.status_code)
        return payload
