"""
Unit tests for structured logging processors.
"""

import logging

import structlog

from shared.logging import (
    add_limiter_context,
    add_service_context,
    add_timestamp,
    bind_storage_key,
    configure_logging,
    get_logger,
    reset_storage_key,
    storage_key_var,
)


class TestLoggingProcessors:
    """Test cases for the logging processors."""

    def test_service_context(self):
        """Test the service name comes from the logger name prefix."""
        event = add_service_context(None, "info", {"logger": "ratelimiter.limiter", "event": "x"})

        assert event["service"] == "ratelimiter"

    def test_service_context_without_prefix(self):
        event = add_service_context(None, "info", {"logger": "root", "event": "x"})

        assert "service" not in event

    def test_limiter_context(self):
        """Test the bound storage key is attached and then cleared."""
        token = bind_storage_key("ratelimit:client")
        try:
            event = add_limiter_context(None, "info", {"event": "x"})
        finally:
            reset_storage_key(token)

        assert event["storage_key"] == "ratelimit:client"
        assert storage_key_var.get() is None
        assert "storage_key" not in add_limiter_context(None, "info", {"event": "y"})

    def test_explicit_storage_key_wins(self):
        token = bind_storage_key("ratelimit:a")
        try:
            event = add_limiter_context(None, "info", {"event": "x", "storage_key": "ratelimit:b"})
        finally:
            reset_storage_key(token)

        assert event["storage_key"] == "ratelimit:b"

    def test_timestamp(self):
        event = add_timestamp(None, "info", {"event": "x"})

        assert isinstance(event["timestamp"], float)


class TestConfigureLogging:
    """Test cases for configure_logging."""

    def test_configure_logging_sets_level(self):
        """Test configuring logging applies the requested level."""
        try:
            configure_logging("ratelimiter", "warning")

            assert logging.getLogger("ratelimiter").level == logging.WARNING
            assert get_logger("ratelimiter.test") is not None
        finally:
            structlog.reset_defaults()
            logging.getLogger("ratelimiter").setLevel(logging.NOTSET)
