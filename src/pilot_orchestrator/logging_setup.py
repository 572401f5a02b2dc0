"""Centralized logging configuration for pilot-orchestrator."""

import logging
import os
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Optional

LOGGER_NAME = "pilot_orchestrator"


class SensitiveDataFilter(logging.Filter):
	"""Flag records that mention credentials."""

	SENSITIVE_PATTERNS = ("token", "password", "secret", "api_key", "authorization")

	def filter(self, record: logging.LogRecord) -> bool:
		if isinstance(record.msg, str):
			msg_lower = record.msg.lower()
			if any(pattern in msg_lower for pattern in self.SENSITIVE_PATTERNS):
				record.msg = f"[SENSITIVE] {record.msg}"
		return True


def setup_logging(
	level: Optional[str] = None,
	log_dir: Optional[Path] = None,
	name: str = LOGGER_NAME,
	console: bool = True,
) -> logging.Logger:
	"""
	Set up logging with console and rotating file handlers.

	Args:
		level: Log level (DEBUG, INFO, WARNING, ERROR). Defaults to env var or INFO.
		log_dir: Directory for log files; no file handler when omitted
		name: Logger name
		console: Attach a stderr handler

	Returns:
		Configured logger
	"""
	level = level or os.getenv("LOG_LEVEL", "INFO")
	log_level = getattr(logging, level.upper(), logging.INFO)

	logger = logging.getLogger(name)
	logger.setLevel(log_level)

	# Avoid duplicate handlers
	if logger.handlers:
		return logger

	detailed_formatter = logging.Formatter(
		"%(asctime)s [%(levelname)s] %(name)s:%(lineno)d - %(message)s",
		datefmt="%Y-%m-%d %H:%M:%S",
	)
	simple_formatter = logging.Formatter(
		"%(asctime)s [%(levelname)s] %(message)s",
		datefmt="%H:%M:%S",
	)
	sensitive_filter = SensitiveDataFilter()

	if console:
		console_handler = logging.StreamHandler(sys.stderr)
		console_handler.setLevel(log_level)
		console_handler.setFormatter(simple_formatter)
		console_handler.addFilter(sensitive_filter)
		logger.addHandler(console_handler)

	if log_dir is not None:
		log_path = Path(log_dir)
		log_path.mkdir(parents=True, exist_ok=True)
		file_handler = RotatingFileHandler(
			log_path / f"{name}.log",
			maxBytes=10 * 1024 * 1024,  # 10 MB
			backupCount=5,
		)
		file_handler.setLevel(logging.DEBUG)  # File gets all logs
		file_handler.setFormatter(detailed_formatter)
		file_handler.addFilter(sensitive_filter)
		logger.addHandler(file_handler)

	return logger
