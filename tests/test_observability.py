"""Unit tests for the observability module."""

from __future__ import annotations

from unittest.mock import MagicMock, patch

import pytest

from core.observability import (
    _get_connection_string,
    _is_observability_enabled,
    configure_observability,
    get_tracer,
)


class TestIsObservabilityEnabled:
    """Tests for _is_observability_enabled function."""

    @pytest.mark.parametrize(
        "env_value,expected",
        [
            ("true", True),
            ("TRUE", True),
            ("1", True),
            ("yes", True),
            ("on", True),
            ("false", False),
            ("0", False),
            ("", False),
            ("random", False),
        ],
    )
    def test_truthy_and_falsy_values(
        self, env_value: str, expected: bool, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        """Test various truthy and falsy environment variable values."""
        monkeypatch.setenv("ENABLE_OBSERVABILITY", env_value)
        assert _is_observability_enabled() is expected

    def test_default_when_not_set(self, monkeypatch: pytest.MonkeyPatch) -> None:
        """Test default value when environment variable is not set."""
        monkeypatch.delenv("ENABLE_OBSERVABILITY", raising=False)
        assert _is_observability_enabled() is False


def test_connection_string_from_environment(monkeypatch: pytest.MonkeyPatch) -> None:
    expected = "InstrumentationKey=test;IngestionEndpoint=https://test.com"
    monkeypatch.setenv("APPLICATIONINSIGHTS_CONNECTION_STRING", expected)
    assert _get_connection_string() == expected


class TestConfigureObservability:
    """Tests for configure_observability function."""

    def test_returns_false_when_disabled(self, monkeypatch: pytest.MonkeyPatch) -> None:
        """Test that False is returned when observability is disabled."""
        monkeypatch.setenv("ENABLE_OBSERVABILITY", "false")
        configure_observability.cache_clear()
        assert configure_observability() is False

    def test_returns_false_when_no_connection_string(
        self, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        """Test that False is returned when connection string is missing."""
        monkeypatch.setenv("ENABLE_OBSERVABILITY", "true")
        monkeypatch.delenv("APPLICATIONINSIGHTS_CONNECTION_STRING", raising=False)
        configure_observability.cache_clear()
        assert configure_observability() is False

    def test_returns_true_on_successful_configuration(
        self, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        """Test that True is returned when configuration succeeds."""
        monkeypatch.setenv("ENABLE_OBSERVABILITY", "true")
        monkeypatch.setenv(
            "APPLICATIONINSIGHTS_CONNECTION_STRING",
            "InstrumentationKey=test;IngestionEndpoint=https://test.com",
        )
        configure_observability.cache_clear()

        mock_module = MagicMock()
        with patch.dict("sys.modules", {"azure.monitor.opentelemetry": mock_module}):
            assert configure_observability() is True
            mock_module.configure_azure_monitor.assert_called_once()
        configure_observability.cache_clear()

    def test_returns_false_on_configuration_exception(
        self, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        """Test that False is returned when configuration raises an exception."""
        monkeypatch.setenv("ENABLE_OBSERVABILITY", "true")
        monkeypatch.setenv("APPLICATIONINSIGHTS_CONNECTION_STRING", "InstrumentationKey=test")
        configure_observability.cache_clear()

        mock_module = MagicMock()
        mock_module.configure_azure_monitor.side_effect = RuntimeError("Config failed")
        with patch.dict("sys.modules", {"azure.monitor.opentelemetry": mock_module}):
            assert configure_observability() is False
        configure_observability.cache_clear()


def test_tracer_spans_work_without_sdk() -> None:
    tracer = get_tracer("platflow.tests")

    with tracer.start_as_current_span("platflow.stage.builder") as span:
        span.set_attribute("platflow.message_count", 3)
