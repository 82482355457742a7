"""Tests for HookRelay structured logging."""

import logging

import structlog

from hookrelay.logging import configure_logging, delivery_context, get_logger, redact_secrets


class TestConfigureLogging:
    """Tests for logging configuration."""

    def test_configure_with_defaults(self):
        """Should configure with INFO level and JSON format by default."""
        configure_logging()
        logger = get_logger("test")
        logger.info("test message")

    def test_configure_with_text_format(self):
        configure_logging(level="INFO", format="text")
        logger = get_logger("test")
        logger.info("text format message")

    def test_configure_multiple_times(self):
        configure_logging(level="INFO")
        configure_logging(level="DEBUG")
        logger = get_logger("test")
        logger.debug("after reconfigure")


class TestGetLogger:
    def test_get_logger_with_name(self):
        assert get_logger("my_module") is not None

    def test_get_logger_without_name(self):
        assert get_logger() is not None


class TestRedactSecrets:
    """Tests for the secret-masking processor."""

    def test_masks_sensitive_keys(self):
        event = {"event": "created", "secret": "abc123", "webhook_secret": "xyz"}
        result = redact_secrets(None, "info", event)
        assert result["secret"] == "***"
        assert result["webhook_secret"] == "***"
        assert result["event"] == "created"

    def test_leaves_other_keys(self):
        event = {"event": "sent", "endpoint_id": "whk_1"}
        assert redact_secrets(None, "info", dict(event)) == event


class TestDeliveryContext:
    """Tests for delivery_context."""

    def setup_method(self):
        structlog.contextvars.clear_contextvars()

    def teardown_method(self):
        structlog.contextvars.clear_contextvars()

    def test_binds_inside_block(self):
        with delivery_context(delivery_id="dlv_1", endpoint_id="whk_1"):
            bound = structlog.contextvars.get_contextvars()
            assert bound == {"delivery_id": "dlv_1", "endpoint_id": "whk_1"}

    def test_restores_outer_context(self):
        """delivery_context should bind only for the duration of the block."""
        structlog.contextvars.bind_contextvars(request_id="req_1")
        with delivery_context(delivery_id="dlv_1"):
            assert structlog.contextvars.get_contextvars()["request_id"] == "req_1"
        assert structlog.contextvars.get_contextvars() == {"request_id": "req_1"}

    def test_unbinds_on_error(self):
        try:
            with delivery_context(delivery_id="dlv_1"):
                raise ValueError("boom")
        except ValueError:
            pass
        assert structlog.contextvars.get_contextvars() == {}


class TestSettingsDefaults:
    def test_uses_settings_when_not_given(self, monkeypatch):
        monkeypatch.setattr("hookrelay.logging.settings.log_level", "WARNING")
        configure_logging()
        assert logging.getLogger().level == logging.WARNING
        configure_logging(level="INFO")
