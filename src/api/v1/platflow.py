"""Platflow streaming and prompt hand-off endpoints."""

from __future__ import annotations

import logging
import secrets
import uuid
from collections.abc import AsyncGenerator, AsyncIterator
from typing import Annotated
from urllib.parse import quote

from fastapi import APIRouter, Depends, Request, status
from fastapi.responses import JSONResponse, StreamingResponse
from pydantic import ValidationError

from core.config import Settings, get_settings
from core.error_handler import structured_logger
from core.exceptions import InvalidRequestError
from dependencies.pipeline import OrchestratorFactory, get_orchestrator_factory
from schemas.api import PipelineErrorResponse
from schemas.platflow import PlatflowRequest, PromptRequest, PromptResponse
from schemas.streaming import PlatflowSseEvent
from services.credentials import parse_request_credentials
from services.pipeline import PipelineContext, PipelineError, PipelineSetupError


logger = logging.getLogger(__name__)

router = APIRouter(prefix="/platflow", tags=["platflow"])

SSE_HEADERS = {
    "Cache-Control": "no-cache",
    "X-Content-Type-Options": "nosniff",
}

PROMPT_API_KEY_HEADER = "x-api-key"

# Left unescaped in URI components, matching browser encoding
_URI_SAFE = "!*'()"


def _error_response(message: str, status_code: int) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content=PipelineErrorResponse(error=message).model_dump(),
    )


def _get_user_friendly_error_message(exc: BaseException) -> str:
    """Convert technical exceptions to user-friendly error messages.

    Handles common AI API errors like rate limits and overloaded models
    with actionable guidance for users.
    """
    exc_str = str(exc).lower()

    # Provider overload / service unavailable
    if "503" in exc_str or "overloaded" in exc_str or "unavailable" in exc_str:
        return (
            "The AI service is currently experiencing high demand. "
            "Please wait a moment and try again."
        )

    # Rate limiting
    if "429" in exc_str or "rate limit" in exc_str or "quota" in exc_str:
        return (
            "You've sent too many requests. Please wait a minute before trying again."
        )

    # Authentication with the provider
    if "401" in exc_str or "api key" in exc_str or "unauthorized" in exc_str:
        return "The AI provider rejected the API key. Please check your provider settings."

    # Timeout errors
    if "timeout" in exc_str or "timed out" in exc_str:
        return (
            "The request took too long to complete. "
            "Please try a simpler request or try again later."
        )

    # Network/connection errors
    if "connection" in exc_str or "network" in exc_str:
        return (
            "There was a network issue connecting to the AI service. "
            "Please check your connection and try again."
        )

    if isinstance(exc, PipelineError):
        return exc.message

    # Fall back to a generic message for unknown errors
    logger.error(f"Unhandled platflow stream error: {exc}")
    return "Something went wrong. Please try again."


async def _sse_body(output: AsyncGenerator[str, None]) -> AsyncIterator[str]:
    """Relay pipeline frames; a mid-stream failure ends with one error event."""
    try:
        async for frame in output:
            yield frame
    except Exception as exc:
        structured_logger.exception(
            "Platflow stream failed", error_type=exc.__class__.__name__
        )
        yield PlatflowSseEvent.error(_get_user_friendly_error_message(exc)).to_sse()
    finally:
        await output.aclose()


@router.post(
    "",
    response_class=StreamingResponse,
    response_model=None,
    responses={
        status.HTTP_400_BAD_REQUEST: {"model": PipelineErrorResponse},
        status.HTTP_500_INTERNAL_SERVER_ERROR: {"model": PipelineErrorResponse},
    },
)
async def stream_platflow(
    request: Request,
    create_orchestrator: Annotated[OrchestratorFactory, Depends(get_orchestrator_factory)],
    settings: Annotated[Settings, Depends(get_settings)],
) -> StreamingResponse | JSONResponse:
    """Run the builder, summary and generation stages as one SSE stream."""
    try:
        payload = PlatflowRequest.model_validate(await request.json())
        credentials = parse_request_credentials(request.cookies)
    except InvalidRequestError as exc:
        structured_logger.warning("Rejected platflow request", detail=str(exc))
        return _error_response(str(exc), status.HTTP_400_BAD_REQUEST)
    except (ValueError, ValidationError) as exc:
        structured_logger.warning(
            "Rejected platflow request", error_type=exc.__class__.__name__
        )
        return _error_response("Invalid request body", status.HTTP_400_BAD_REQUEST)

    context = PipelineContext.from_request(
        payload, credentials, default_prompt_id=settings.DEFAULT_PROMPT_ID
    )
    structured_logger.info(
        "Platflow request received",
        message_count=len(context.messages),
        word_count=sum(len(m.content.split()) for m in context.messages),
        file_count=len(context.file_paths),
        builder_enabled=context.has_builder,
        context_optimization=context.context_optimization,
    )

    try:
        output = create_orchestrator().open(context)
    except PipelineSetupError as exc:
        structured_logger.error("Platflow setup failed", detail=exc.message)
        return _error_response(exc.message, status.HTTP_500_INTERNAL_SERVER_ERROR)
    except Exception as exc:
        structured_logger.exception(
            "Error in platflow endpoint", error_type=exc.__class__.__name__
        )
        return _error_response(
            "Failed to start the response stream",
            status.HTTP_500_INTERNAL_SERVER_ERROR,
        )

    return StreamingResponse(
        _sse_body(output), media_type="text/event-stream", headers=SSE_HEADERS
    )


def build_redirect_url(prompt: str, session_id: str, template: str | None) -> str:
    """Chat URL that opens a new session pre-filled with ``prompt``."""
    url = f"/new?prompt={quote(prompt, safe=_URI_SAFE)}&sid={session_id}"
    if template:
        url += f"&template={quote(template, safe=_URI_SAFE)}"
    return url


@router.post(
    "/prompt",
    response_model=PromptResponse,
    responses={
        status.HTTP_400_BAD_REQUEST: {"model": PipelineErrorResponse},
        status.HTTP_401_UNAUTHORIZED: {"model": PipelineErrorResponse},
    },
)
async def create_prompt_session(
    request: Request,
    settings: Annotated[Settings, Depends(get_settings)],
) -> PromptResponse | JSONResponse:
    """Accept a prompt from an external caller and return the chat URL for it."""
    try:
        body = PromptRequest.model_validate(await request.json())
    except (ValueError, ValidationError):
        return _error_response("Invalid request body", status.HTTP_400_BAD_REQUEST)

    if not body.prompt:
        return _error_response("Prompt is required", status.HTTP_400_BAD_REQUEST)

    expected_key = settings.PROMPT_API_KEY
    if expected_key:
        supplied_key = request.headers.get(PROMPT_API_KEY_HEADER) or body.api_key or ""
        if not secrets.compare_digest(supplied_key.encode(), expected_key.encode()):
            structured_logger.warning("Prompt hand-off rejected: bad API key")
            return _error_response("Unauthorized", status.HTTP_401_UNAUTHORIZED)

    session_id = str(uuid.uuid4())
    structured_logger.info(
        "Prompt session created",
        prompt_session=session_id,
        prompt_length=len(body.prompt),
        template=body.template,
    )
    return PromptResponse(
        success=True,
        session_id=session_id,
        redirect_url=build_redirect_url(body.prompt, session_id, body.template),
    )
