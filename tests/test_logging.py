"""Tests for logging setup."""

import logging
from pathlib import Path

from pilot_orchestrator.logging_setup import SensitiveDataFilter, setup_logging


def make_record(msg: str) -> logging.LogRecord:
	return logging.LogRecord("test", logging.INFO, __file__, 1, msg, None, None)


def test_sensitive_filter_flags_credentials():
	record = make_record("Using api_key from environment")
	assert SensitiveDataFilter().filter(record)
	assert record.msg.startswith("[SENSITIVE] ")


def test_sensitive_filter_leaves_other_messages():
	record = make_record("Selected task: Implement parser (T1)")
	SensitiveDataFilter().filter(record)
	assert record.msg == "Selected task: Implement parser (T1)"


def test_setup_logging_writes_rotating_file(tmp_path: Path):
	logger = setup_logging(level="debug", log_dir=tmp_path, name="pilot_test_file", console=False)
	try:
		assert logger.level == logging.DEBUG
		logger.info("hello from the loop")
		for handler in logger.handlers:
			handler.flush()
		content = (tmp_path / "pilot_test_file.log").read_text()
		assert "hello from the loop" in content
	finally:
		for handler in list(logger.handlers):
			handler.close()
			logger.removeHandler(handler)


def test_setup_logging_does_not_duplicate_handlers(tmp_path: Path):
	name = "pilot_test_dupes"
	try:
		first = setup_logging(log_dir=tmp_path, name=name)
		count = len(first.handlers)
		second = setup_logging(log_dir=tmp_path, name=name)
		assert second is first
		assert len(second.handlers) == count == 2
	finally:
		logger = logging.getLogger(name)
		for handler in list(logger.handlers):
			handler.close()
			logger.removeHandler(handler)
