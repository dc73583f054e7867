"""
Tests for structured logging
"""

import io
import json
import logging

from corebank.logging_config import JSONFormatter, TextFormatter, setup_logging, log_action


def make_logger(name, formatter):
    stream = io.StringIO()
    handler = logging.StreamHandler(stream)
    handler.setFormatter(formatter)
    logger = logging.getLogger(name)
    logger.handlers = [handler]
    logger.setLevel(logging.DEBUG)
    logger.propagate = False
    return logger, stream


class TestJSONFormatter:

    def test_structured_fields(self):
        logger, stream = make_logger("corebank.test.json", JSONFormatter())

        log_action(logger, "info", "Transfer settled", account_id=3, action="apply_transfer",
                   resource="transfer:9", extra={"amount": "1.5"})

        entry = json.loads(stream.getvalue())
        assert entry["level"] == "INFO"
        assert entry["message"] == "Transfer settled"
        assert entry["account_id"] == 3
        assert entry["action"] == "apply_transfer"
        assert entry["resource"] == "transfer:9"
        assert entry["extra"] == {"amount": "1.5"}
        assert "correlation_id" not in entry

    def test_exception_is_included(self):
        logger, stream = make_logger("corebank.test.exc", JSONFormatter())
        try:
            raise RuntimeError("boom")
        except RuntimeError as e:
            log_action(logger, "error", "Failure", exc_info=(type(e), e, e.__traceback__))

        entry = json.loads(stream.getvalue())
        assert "RuntimeError: boom" in entry["exception"]


class TestTextFormatter:

    def test_appends_fields(self):
        logger, stream = make_logger("corebank.test.text", TextFormatter())
        log_action(logger, "warning", "Login rejected", account_id=1, action="login_failed")

        line = stream.getvalue()
        assert "Login rejected" in line
        assert "account_id=1" in line
        assert "action=login_failed" in line


class TestSetupLogging:

    def test_replaces_handlers(self):
        logger = setup_logging("DEBUG", logger_name="corebank.test.setup")
        setup_logging("WARNING", logger_name="corebank.test.setup", fmt="text")

        assert len(logger.handlers) == 1
        assert isinstance(logger.handlers[0].formatter, TextFormatter)
        assert logger.level == logging.WARNING
        assert not logger.propagate

    def test_log_file(self, tmp_path):
        path = tmp_path / "corebank.log"
        logger = setup_logging("INFO", logger_name="corebank.test.file", log_file=str(path))
        logger.info("written to file")
        logger.handlers[0].close()

        assert "written to file" in path.read_text()
