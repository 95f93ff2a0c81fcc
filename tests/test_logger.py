"""
Test Suite for Logging Setup and Redaction Filter
"""

import json
import logging

import pytest

from utils.exceptions import NetworkError
from utils.logger import (
    JSONFormatter,
    PlainTextFormatter,
    SensitiveDataFilter,
    log_error_with_context,
    setup_logging,
)

PRIVATE_KEY = 'c0ffee' * 10 + 'abcd'
WALLET = 'eth|1234567890abcdef1234567890abcdef12345678'


def make_record(msg, *args, exc_info=None, **extra):
    record = logging.LogRecord('test', logging.ERROR, __file__, 10, msg, args, exc_info)
    for key, value in extra.items():
        setattr(record, key, value)
    return record


@pytest.fixture
def restore_root_logger():
    root = logging.getLogger()
    handlers, level = list(root.handlers), root.level
    yield
    for handler in root.handlers:
        handler.close()
    root.handlers[:] = handlers
    root.setLevel(level)


class TestSensitiveDataFilter:
    def test_message_and_args_redacted(self):
        record = make_record("signing for %s with %s", WALLET, PRIVATE_KEY)
        SensitiveDataFilter().filter(record)

        message = record.getMessage()
        assert PRIVATE_KEY not in message
        assert WALLET not in message
        assert record.args is None

    def test_string_extras_redacted(self):
        record = make_record("failed", config_path='/home/trader/.env')
        SensitiveDataFilter().filter(record)
        assert record.config_path == '[PATH]'


class TestFormatters:
    def test_json_formatter_includes_extras(self):
        record = make_record("quote fetched", endpoint='QUOTE', latency_ms=42)
        data = json.loads(JSONFormatter().format(record))

        assert data['message'] == 'quote fetched'
        assert data['level'] == 'ERROR'
        assert data['endpoint'] == 'QUOTE'
        assert data['latency_ms'] == 42

    def test_json_formatter_summarizes_exception_without_traceback(self):
        try:
            raise NetworkError(f"reset while reading /root/secrets/{PRIVATE_KEY}")
        except NetworkError as e:
            record = make_record("request failed", exc_info=(type(e), e, e.__traceback__))

        output = JSONFormatter().format(record)
        data = json.loads(output)
        assert data['exception']['type'] == 'NetworkError'
        assert PRIVATE_KEY not in output
        assert 'Traceback' not in output

    def test_plain_formatter_summarizes_exception(self):
        try:
            raise ValueError("bad value")
        except ValueError as e:
            record = make_record("oops", exc_info=(type(e), e, e.__traceback__))

        output = PlainTextFormatter().format(record)
        assert 'ValueError: bad value' in output
        assert 'Traceback' not in output


class TestSetupLogging:
    def test_file_output_is_redacted_json(self, tmp_path, restore_root_logger):
        log_file = tmp_path / 'logs' / 'bot.log'
        setup_logging('INFO', str(log_file), structured=True)

        logger = logging.getLogger('galaswap.test')
        log_error_with_context(logger, f"bundle rejected for {WALLET}", NetworkError("socket closed"), endpoint='BUNDLE')
        for handler in logging.getLogger().handlers:
            handler.flush()

        lines = [json.loads(line) for line in log_file.read_text().splitlines()]
        entry = lines[-1]
        assert WALLET not in entry['message']
        assert entry['error_kind'] == 'transport'
        assert entry['error_type'] == 'NetworkError'
        assert entry['endpoint'] == 'BUNDLE'

    def test_invalid_level_rejected(self, tmp_path, restore_root_logger):
        with pytest.raises(ValueError):
            setup_logging('LOUD', str(tmp_path / 'bot.log'))
