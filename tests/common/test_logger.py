# tests/common/test_logger.py
"""
Tests of the logging module (src/common/logger.py).
"""

import json
import logging
import sys
from unittest.mock import MagicMock, Mock, patch

import pytest

from src.common.constants import TypeMsg
from src.common.logger import (
    DEFAULT_LOGGER_NAME,
    ColoredFormatter,
    JsonFormatter,
    _get_caller_info,
    _loggers,
    get_logger,
    log_debug,
    log_error,
    log_info,
    log_warning,
    setup_logging,
)


def make_record(level: int = logging.INFO, msg: str = "Order placed") -> logging.LogRecord:
    record = logging.LogRecord(
        name="test_logger",
        level=level,
        pathname="service.py",
        lineno=10,
        msg=msg,
        args=(),
        exc_info=None,
    )
    record.module = "service"
    record.funcName = "create"
    return record


class TestJsonFormatter:
    def test_format_basic_record(self) -> None:
        parsed = json.loads(JsonFormatter().format(make_record()))

        assert parsed["level"] == "INFO"
        assert parsed["message"] == "Order placed"
        assert parsed["module"] == "service"
        assert parsed["function"] == "create"
        assert parsed["line"] == 10
        assert parsed["timestamp"].endswith("Z")

    def test_format_with_extra_data(self) -> None:
        record = make_record(logging.WARNING, "Cancel not propagated")
        record.extra_data = {"order_id": "o-1", "outcome": "deferred"}

        parsed = json.loads(JsonFormatter().format(record))

        assert parsed["extra"] == {"order_id": "o-1", "outcome": "deferred"}

    def test_format_with_exception(self) -> None:
        try:
            raise ValueError("Test exception")
        except ValueError:
            exc_info = sys.exc_info()

        record = make_record(logging.ERROR, "Error occurred")
        record.exc_info = exc_info

        parsed = json.loads(JsonFormatter().format(record))

        assert "ValueError" in parsed["exception"]
        assert "Test exception" in parsed["exception"]


class TestColoredFormatter:
    def test_format_basic_record(self) -> None:
        result = ColoredFormatter().format(make_record())

        assert "INFO" in result
        assert "Order placed" in result
        assert "\033[" in result

    def test_format_with_caller_and_context(self) -> None:
        record = make_record(logging.DEBUG, "Debug message")
        record.extra_data = {
            "caller_function": "assign",
            "caller_module": "delivery",
            "caller_file": "service.py",
            "caller_line": 42,
            "order_id": "o-1",
        }

        result = ColoredFormatter().format(record)

        assert "delivery.assign()" in result
        assert "service.py:42" in result
        assert '"order_id": "o-1"' in result
        assert "caller_line" not in result


class TestGetLogger:
    def setup_method(self) -> None:
        _loggers.clear()

    def test_get_logger_creates_new_logger(self) -> None:
        logger = get_logger("test_logger_new")

        assert logger.name == "test_logger_new"
        assert len(logger.handlers) >= 1
        assert logger.propagate is False

    def test_get_logger_returns_cached_logger(self) -> None:
        assert get_logger("test_logger_cached") is get_logger("test_logger_cached")

    @patch("src.config.settings")
    def test_get_logger_uses_settings(self, mock_settings: Mock) -> None:
        mock_settings.logging.LOG_LEVEL = "WARNING"
        mock_settings.logging.LOG_FORMAT = "json"
        mock_settings.logging.LOG_TO_FILE = False
        mock_settings.logging.LOG_FILE_PATH = "logs/test.log"
        mock_settings.logging.LOG_MAX_BYTES = 10485760

        logger = get_logger("test_with_settings")

        assert logger.level == logging.WARNING
        assert isinstance(logger.handlers[0].formatter, JsonFormatter)

    def test_get_logger_handles_missing_settings(self) -> None:
        with patch.dict("sys.modules", {"src.config": None}):
            logger = get_logger("test_no_settings")

        assert logger.level == logging.DEBUG


class TestSetupLogging:
    def setup_method(self) -> None:
        _loggers.clear()

    def test_setup_logging_quiets_third_party(self) -> None:
        with patch("src.common.logger._LOGGING_INITIALIZED", False):
            setup_logging()

        assert DEFAULT_LOGGER_NAME in _loggers
        assert logging.getLogger("asyncpg").level == logging.WARNING
        assert logging.getLogger("aio_pika").level == logging.WARNING
        assert logging.getLogger("httpx").level == logging.WARNING


class TestGetCallerInfo:
    def test_reports_first_frame_outside_logger(self) -> None:
        def business_code():
            return _get_caller_info()

        info = business_code()

        assert info["caller_function"] == "business_code"
        assert info["caller_module"] == __name__
        assert info["caller_file"] == "test_logger.py"


class TestLogFunctions:
    def setup_method(self) -> None:
        _loggers.clear()

    @staticmethod
    def logged(mock_log: MagicMock) -> tuple[int, str, dict]:
        level, message = mock_log.call_args.args
        return level, message, mock_log.call_args.kwargs["extra"]["extra_data"]

    @pytest.mark.asyncio
    async def test_log_info_basic(self) -> None:
        with patch.object(logging.Logger, "log") as mock_log:
            await log_info("Test message")

        level, message, _ = self.logged(mock_log)
        assert level == logging.INFO
        assert message == "Test message"

    @pytest.mark.asyncio
    @pytest.mark.parametrize("type_msg,level", [
        (TypeMsg.DEBUG, logging.DEBUG),
        (TypeMsg.WARNING, logging.WARNING),
        (TypeMsg.ERROR, logging.ERROR),
        (TypeMsg.CRITICAL, logging.CRITICAL),
    ])
    async def test_log_info_routes_by_type(self, type_msg: TypeMsg, level: int) -> None:
        with patch.object(logging.Logger, "log") as mock_log:
            await log_info("message", type_msg=type_msg)

        assert self.logged(mock_log)[0] == level

    @pytest.mark.asyncio
    async def test_log_info_with_extra(self) -> None:
        with patch.object(logging.Logger, "log") as mock_log:
            await log_info("Delivery assigned", extra={"delivery_id": "d-1"})

        _, _, extra_data = self.logged(mock_log)
        assert extra_data["delivery_id"] == "d-1"
        assert extra_data["caller_function"] == "test_log_info_with_extra"

    @pytest.mark.asyncio
    async def test_log_debug(self) -> None:
        with patch.object(logging.Logger, "log") as mock_log:
            await log_debug("Debug message")

        assert self.logged(mock_log)[0] == logging.DEBUG

    @pytest.mark.asyncio
    async def test_log_warning_reports_caller(self) -> None:
        with patch.object(logging.Logger, "log") as mock_log:
            await log_warning("Warning message")

        level, _, extra_data = self.logged(mock_log)
        assert level == logging.WARNING
        assert extra_data["caller_function"] == "test_log_warning_reports_caller"

    @pytest.mark.asyncio
    async def test_log_error_with_exc_info(self) -> None:
        with patch.object(logging.Logger, "log") as mock_log:
            await log_error("Error message", exc_info=True)

        assert self.logged(mock_log)[0] == logging.ERROR
        assert mock_log.call_args.kwargs["exc_info"] is True

    @pytest.mark.asyncio
    async def test_disabled_level_is_skipped(self) -> None:
        logger = get_logger("quiet")
        logger.setLevel(logging.ERROR)

        with patch.object(logging.Logger, "log") as mock_log:
            await log_info("not shown", logger_name="quiet")

        mock_log.assert_not_called()

    @pytest.mark.asyncio
    async def test_log_info_with_custom_logger_name(self) -> None:
        with patch("src.common.logger.get_logger") as mock_get_logger:
            mock_logger = MagicMock()
            mock_get_logger.return_value = mock_logger

            await log_info("Test message", logger_name="order_service")

        mock_get_logger.assert_called_once_with("order_service")
        mock_logger.log.assert_called_once()
