"""Observability configuration for Azure Monitor and OpenTelemetry.

Call configure_observability() at the very start of application
initialization (before importing FastAPI) so HTTP requests and outbound
httpx calls are instrumented.

PII and Sensitive Data Guidance:
--------------------------------
- NEVER put conversation content, summaries or builder payloads in span
  attributes; record lengths and counts instead
- Provider API keys and builder bearer tokens must never reach a span
- Use correlation IDs to link traces without embedding sensitive content

For production (Azure):
- Set ENABLE_OBSERVABILITY=true and APPLICATIONINSIGHTS_CONNECTION_STRING
- Install the ``observability`` extra (azure-monitor-opentelemetry)
"""

from __future__ import annotations

import logging
import os
from functools import lru_cache

from opentelemetry import trace


logger = logging.getLogger(__name__)

# Environment variable names
_ENV_ENABLE_OBSERVABILITY = "ENABLE_OBSERVABILITY"
_ENV_APP_INSIGHTS_CONN_STRING = "APPLICATIONINSIGHTS_CONNECTION_STRING"
_ENV_OTEL_SERVICE_NAME = "OTEL_SERVICE_NAME"

_DEFAULT_SERVICE_NAME = "platflow-backend"

# Paths to exclude from automatic tracing (reduce noise for health checks)
EXCLUDED_URLS = "health,health/,favicon.ico"


def _is_observability_enabled() -> bool:
    """Check if observability is enabled via environment variable."""
    value = os.getenv(_ENV_ENABLE_OBSERVABILITY, "false").lower()
    return value in {"true", "1", "yes", "on"}


def _get_connection_string() -> str | None:
    """Get the Application Insights connection string from environment."""
    return os.getenv(_ENV_APP_INSIGHTS_CONN_STRING)


@lru_cache
def configure_observability() -> bool:
    """Configure OpenTelemetry with Azure Monitor for production observability.

    Returns:
        True if observability was configured successfully, False otherwise.

    Environment Variables:
        ENABLE_OBSERVABILITY: Set to "true" to enable (default: "false")
        APPLICATIONINSIGHTS_CONNECTION_STRING: Azure Monitor connection string
        OTEL_SERVICE_NAME: Service name for traces (default: "platflow-backend")
    """
    if not _is_observability_enabled():
        logger.info(
            "Observability disabled. Set %s=true to enable Azure Monitor.",
            _ENV_ENABLE_OBSERVABILITY,
        )
        return False

    connection_string = _get_connection_string()
    if not connection_string:
        logger.warning(
            "Observability enabled but %s not set. Skipping Azure Monitor setup.",
            _ENV_APP_INSIGHTS_CONN_STRING,
        )
        return False

    try:
        # Optional extra; imported only when observability is switched on
        from azure.monitor.opentelemetry import configure_azure_monitor
    except ImportError:
        logger.warning(
            "azure-monitor-opentelemetry package not installed. "
            "Install the 'observability' extra to export telemetry."
        )
        return False

    service_name = os.getenv(_ENV_OTEL_SERVICE_NAME, _DEFAULT_SERVICE_NAME)
    os.environ.setdefault("OTEL_SERVICE_NAME", service_name)
    os.environ.setdefault("OTEL_PYTHON_FASTAPI_EXCLUDED_URLS", EXCLUDED_URLS)

    try:
        configure_azure_monitor(connection_string=connection_string)
    except Exception as e:
        logger.exception("Failed to configure Azure Monitor observability: %s", e)
        return False

    logger.info(
        "Azure Monitor observability configured for service '%s'",
        service_name,
    )
    return True


def get_tracer(name: str) -> trace.Tracer:
    """Get an OpenTelemetry tracer for custom instrumentation.

    Without a configured SDK the API hands back a no-op tracer, so callers
    can always open spans.

    Example:
        tracer = get_tracer(__name__)

        with tracer.start_as_current_span("pipeline.stage.builder") as span:
            span.set_attribute("message.count", len(messages))
    """
    return trace.get_tracer(name)
