"""Tests for authzcore.logging module."""

from __future__ import annotations

import json
import logging
import os
from unittest.mock import patch

import pytest

from authzcore import (
    DenialCode,
    EngineConfig,
    LogLevel,
    PermissionDecision,
    UserContext,
    get_decision_logger,
    redact_secrets,
    safe_log_value,
    safe_preview,
    setup_logging,
)
from authzcore.logging import DecisionFormatter


@pytest.fixture
def restore_root_logger():
    root = logging.getLogger()
    level = root.level
    yield root
    for handler in root.handlers[:]:
        if isinstance(handler.formatter, DecisionFormatter):
            root.removeHandler(handler)
    root.setLevel(level)


def _record(msg: str = "Test message", **extra) -> logging.LogRecord:
    record = logging.LogRecord(
        name="test",
        level=logging.INFO,
        pathname="",
        lineno=0,
        msg=msg,
        args=(),
        exc_info=None,
    )
    for key, value in extra.items():
        setattr(record, key, value)
    return record


class TestSafePreview:
    """Tests for safe_preview function."""

    def test_none_value(self) -> None:
        assert safe_preview(None) == ""

    def test_string_with_whitespace(self) -> None:
        assert safe_preview("  team\n\tviewer  ") == "team viewer"

    def test_string_truncation(self) -> None:
        result = safe_preview("x" * 300, limit=50)
        assert len(result) == 50
        assert result.endswith("…")

    def test_dict_value(self) -> None:
        result = safe_preview({"resource": "task", "action": "update"})
        assert json.loads(result) == {"resource": "task", "action": "update"}


class TestRedactSecrets:
    """Tests for redact_secrets function."""

    def test_password_pattern(self) -> None:
        result = redact_secrets("password=hunter2")
        assert "hunter2" not in result
        assert "[REDACTED]" in result

    def test_bearer_token(self) -> None:
        result = redact_secrets("authorization header Bearer abc.def.ghi")
        assert "abc.def.ghi" not in result

    def test_no_secrets(self) -> None:
        text = "member u-1 denied task:update"
        assert redact_secrets(text) == text

    def test_custom_replacement(self) -> None:
        assert "***" in redact_secrets("token=abc123", replacement="***")

    def test_non_string_unchanged(self) -> None:
        assert redact_secrets(None) is None


class TestSafeLogValue:
    def test_with_redaction(self) -> None:
        assert "s3cret" not in safe_log_value("api_key=s3cret")

    def test_without_redaction(self) -> None:
        assert safe_log_value("api_key=s3cret", redact=False) == "api_key=s3cret"


class TestDecisionFormatter:
    def test_json_format_lifts_context(self) -> None:
        formatter = DecisionFormatter(json_format=True, service_name="tasks-api")
        record = _record(actor_id="u-1", request_id="req-9", denial_code="out_of_scope")
        data = json.loads(formatter.format(record))
        assert data["level"] == "INFO"
        assert data["service"] == "tasks-api"
        assert data["actor_id"] == "u-1"
        assert data["request_id"] == "req-9"
        assert data["denial_code"] == "out_of_scope"

    def test_extra_fields_redacted(self) -> None:
        formatter = DecisionFormatter(json_format=True)
        data = json.loads(formatter.format(_record(header="Bearer abcdef123")))
        assert "abcdef123" not in data["header"]

    def test_message_redacted(self) -> None:
        formatter = DecisionFormatter(json_format=True)
        data = json.loads(formatter.format(_record("login with password=hunter2")))
        assert "hunter2" not in data["message"]

    def test_plain_format(self) -> None:
        formatter = DecisionFormatter(json_format=False)
        result = formatter.format(_record(actor_id="u-1"))
        assert not result.startswith("{")
        assert "actor_id=u-1" in result
        assert result.endswith(": Test message")


class TestDecisionLogger:
    def test_bound_context(self, caplog: pytest.LogCaptureFixture) -> None:
        logger = get_decision_logger("test.decisions", request_id="req-1", organization_id="org-1")
        with caplog.at_level(logging.INFO):
            logger.info("Authorized")
        record = caplog.records[-1]
        assert record.request_id == "req-1"
        assert record.organization_id == "org-1"

    def test_user_and_decision_kwargs(self, caplog: pytest.LogCaptureFixture) -> None:
        user = UserContext(user_id="u-7", role="viewer")
        decision = PermissionDecision.denied(DenialCode.INSUFFICIENT_ROLE, "no")
        logger = get_decision_logger("test.decisions")
        with caplog.at_level(logging.INFO):
            logger.info("Denied", user=user, decision=decision)
        record = caplog.records[-1]
        assert record.actor_id == "u-7"
        assert record.denial_code == "insufficient_role"

    def test_without_context(self, caplog: pytest.LogCaptureFixture) -> None:
        logger = get_decision_logger("test.decisions")
        with caplog.at_level(logging.INFO):
            logger.info("Plain")
        assert not hasattr(caplog.records[-1], "actor_id")


class TestSetupLogging:
    """Tests for setup_logging function."""

    def test_setup_with_config(self, restore_root_logger) -> None:
        setup_logging(config=EngineConfig(log_level=LogLevel.DEBUG), json_format=False)
        assert restore_root_logger.level == logging.DEBUG
        assert len(restore_root_logger.handlers) == 1

    def test_setup_with_env(self, restore_root_logger) -> None:
        with patch.dict(os.environ, {"LOG_LEVEL": "WARNING"}, clear=True):
            setup_logging(json_format=False)
        assert restore_root_logger.level == logging.WARNING

    def test_json_format(self, restore_root_logger, capsys: pytest.CaptureFixture) -> None:
        setup_logging(config=EngineConfig(log_json=True, service_name="tasks-api"))
        logging.getLogger("test").info("Test message")

        data = json.loads(capsys.readouterr().err.strip())
        assert data["message"] == "Test message"
        assert data["logger"] == "test"
        assert data["service"] == "tasks-api"
