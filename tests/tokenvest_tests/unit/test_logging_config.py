import json
import logging

import pytest

from tokenvest.core.logging_config import CustomJsonFormatter, get_logger, setup_logging


@pytest.fixture
def logger_name(request):
    name = f"tokenvest.test.{request.node.name}"
    yield name
    logger = logging.getLogger(name)
    for handler in logger.handlers:
        handler.close()
    logger.handlers = []


def _format(formatter, **extra):
    record = logging.LogRecord("tokenvest.claims", logging.INFO, __file__, 12, "Claim settled", None, None)
    for key, value in extra.items():
        setattr(record, key, value)
    return json.loads(formatter.format(record))


def test_formatter_adds_standard_fields():
    payload = _format(CustomJsonFormatter(environment="test"), event="claim.settled")
    assert payload["message"] == "Claim settled"
    assert payload["event"] == "claim.settled"
    assert payload["environment"] == "test"
    assert payload["service"] == "tokenvest"
    assert payload["level"] == "info"
    assert payload["timestamp"]
    assert payload["source"]["line"] == 12


def test_setup_logging_writes_json_file(tmp_path, logger_name):
    log_file = tmp_path / "logs" / "tokenvest.json"
    logger = setup_logging(name=logger_name, log_file=str(log_file), level="DEBUG", enable_console=False)

    logger.info("Program created", extra={"event": "ledger.program_created"})
    for handler in logger.handlers:
        handler.flush()

    line = log_file.read_text(encoding="utf-8").strip().splitlines()[-1]
    assert json.loads(line)["event"] == "ledger.program_created"


def test_setup_logging_replaces_handlers(logger_name):
    setup_logging(name=logger_name, enable_file=False)
    logger = setup_logging(name=logger_name, enable_file=False, level="ERROR")
    assert len(logger.handlers) == 1
    assert logger.level == logging.ERROR


def test_get_logger_configures_once(logger_name):
    first = get_logger(logger_name)
    handlers = list(first.handlers)
    assert get_logger(logger_name).handlers == handlers
