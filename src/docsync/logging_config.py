"""Centralized logging configuration for docsync."""

import logging
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Optional

LOGGER_NAME = "docsync"


def setup_logging(
	level: str = "INFO",
	log_dir: Optional[Path] = None,
) -> logging.Logger:
	"""
	Set up logging with console and file handlers.

	The console handler writes to stderr because stdout carries the
	MCP stdio transport.

	Args:
		level: Log level (DEBUG, INFO, WARNING, ERROR)
		log_dir: Directory for the rotating log file; no file handler when None

	Returns:
		Configured package logger
	"""
	log_level = getattr(logging, level.upper(), logging.INFO)

	logger = logging.getLogger(LOGGER_NAME)
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

	console_handler = logging.StreamHandler(sys.stderr)
	console_handler.setLevel(log_level)
	console_handler.setFormatter(simple_formatter)
	logger.addHandler(console_handler)

	if log_dir is not None:
		log_path = Path(log_dir)
		log_path.mkdir(parents=True, exist_ok=True)

		file_handler = RotatingFileHandler(
			log_path / f"{LOGGER_NAME}.log",
			maxBytes=10 * 1024 * 1024,  # 10 MB
			backupCount=5,
		)
		file_handler.setLevel(logging.DEBUG)  # File gets all logs
		file_handler.setFormatter(detailed_formatter)
		logger.addHandler(file_handler)

	return logger
