#!/usr/bin/env python3
"""
Test script for logging utilities.

This validates that the centralized logging and error handling works correctly.
"""

import httpx
import pytest
from pydantic import ValidationError

from chat_relay.llm.exceptions import (
    InsufficientCreditsError,
    ProviderUnavailableError,
    RateLimitError,
)
from chat_relay.llm.streaming.models import ErrorChunk
from chat_relay.logging_utils import (
    ContextualLogger,
    RelayErrorHandler,
    log_operation,
    operation_context,
)


class TestRelayErrorHandler:
    """Test the RelayErrorHandler class."""

    def test_classify_llm_error(self):
        """LLM errors keep their own status and code."""
        error = RateLimitError("Too many requests", retry_after=3)
        assert RelayErrorHandler.classify_error(error) == (429, "rate_limited")

    def test_classify_llm_error_with_status_override(self):
        error = ProviderUnavailableError("down", status_code=503)
        assert RelayErrorHandler.classify_error(error) == (503, "upstream_unavailable")

    def test_classify_validation_error(self):
        """Test classification of ValidationError."""
        validation_error = ValidationError.from_exception_data(
            "ValidationError",
            [{"type": "missing", "loc": ("field",), "input": {}}],
        )
        assert RelayErrorHandler.classify_error(validation_error) == (
            400, "invalid_request"
        )

    def test_classify_timeout(self):
        assert RelayErrorHandler.classify_error(TimeoutError()) == (
            504, "upstream_timeout"
        )
        assert RelayErrorHandler.classify_error(
            httpx.ReadTimeout("read timed out")
        ) == (504, "upstream_timeout")

    def test_classify_connection_error(self):
        """Test classification of ConnectionError."""
        conn_error = ConnectionError("Network unreachable")
        assert RelayErrorHandler.classify_error(conn_error) == (
            503, "upstream_unavailable"
        )

    def test_classify_value_error(self):
        """Test classification of ValueError."""
        assert RelayErrorHandler.classify_error(ValueError("bad")) == (
            400, "invalid_request"
        )

    def test_classify_unknown_error(self):
        """Test classification of unknown error type."""
        runtime_error = RuntimeError("Unknown error")
        assert RelayErrorHandler.classify_error(runtime_error) == (
            500, "internal_error"
        )

    def test_error_payload(self):
        status, body = RelayErrorHandler.error_payload(
            InsufficientCreditsError("Out of credits"),
            "test_operation",
            {"completion_id": "gen-1"},
        )

        assert status == 402
        assert body == {
            "error": {"code": "insufficient_credits", "message": "Out of credits"}
        }

    def test_to_error_chunk(self):
        chunk = RelayErrorHandler.to_error_chunk(TimeoutError(), "test_operation")

        assert chunk == ErrorChunk("upstream_timeout", "Upstream timed out")

    def test_describe_falls_back_to_type_name(self):
        assert RelayErrorHandler.describe(KeyError()) == "KeyError"


class TestDecorators:
    """Test logging decorators."""

    @pytest.mark.asyncio
    async def test_log_operation_success(self):
        """Test log_operation decorator with successful function."""

        @log_operation("test_operation", log_timing=True, log_result=True)
        async def successful_function():
            return "success"

        result = await successful_function()
        assert result == "success"

    @pytest.mark.asyncio
    async def test_log_operation_with_error(self):
        """Test log_operation decorator with function that raises error."""

        @log_operation("test_operation", log_timing=True)
        async def failing_function():
            raise ValueError("Test error")

        with pytest.raises(ValueError, match="Test error"):
            await failing_function()

    @pytest.mark.asyncio
    async def test_log_operation_preserves_metadata(self):

        @log_operation("test_operation", log_args=True)
        async def documented(value):
            """Doubles the value."""
            return value * 2

        assert documented.__name__ == "documented"
        assert documented.__doc__ == "Doubles the value."
        assert await documented(21) == 42


class TestContextManager:
    """Test operation context manager."""

    @pytest.mark.asyncio
    async def test_operation_context_success(self):
        """Test operation context manager with successful operation."""

        async with operation_context("test_operation", log_timing=True) as logger:
            assert logger is not None

    @pytest.mark.asyncio
    async def test_operation_context_with_error(self):
        """Test operation context manager with failing operation."""

        with pytest.raises(ValueError, match="Test error"):
            async with operation_context("test_operation", log_timing=True):
                raise ValueError("Test error")


class TestContextualLogger:
    """Test ContextualLogger functionality."""

    def test_contextual_logger_creation(self):
        """Test creating contextual logger."""
        context = {"completion_id": "gen-1", "provider": "mock"}
        logger = ContextualLogger(context)

        assert logger.base_context == context

    def test_contextual_logger_bind(self):
        """Test binding additional context."""
        base_context = {"completion_id": "gen-1"}
        logger = ContextualLogger(base_context)

        bound_logger = logger.bind(model="test-model")

        assert bound_logger.base_context == {
            "completion_id": "gen-1",
            "model": "test-model",
        }
        assert logger.base_context == {"completion_id": "gen-1"}

    def test_contextual_logger_methods(self):
        """Logging methods accept extra structured context."""
        logger = ContextualLogger({"completion_id": "gen-1"})

        logger.info("Info message", extra="data")
        logger.warning("Warning message")
        logger.error("Error message", error_code="rate_limited")
        logger.debug("Debug message")
