"""
Logging setup for the API process.
"""
import logging
import os
from typing import Optional

_NOISY_LOGGERS = ("passlib", "httpx", "httpcore", "urllib3", "google.auth")


def setup_logging(level: str = "INFO", log_file_path: Optional[str] = None) -> None:
	"""
	Configure the root logger with a console handler and an optional log file.

	Args:
		level: Level name for application loggers (DEBUG, INFO, ...)
		log_file_path: When set, detailed DEBUG logs also go to this file
	"""
	root_logger = logging.getLogger()
	root_logger.handlers.clear()
	root_logger.setLevel(logging.DEBUG if log_file_path else level.upper())

	console_handler = logging.StreamHandler()
	console_handler.setLevel(level.upper())
	console_handler.setFormatter(logging.Formatter('%(asctime)s %(levelname)s %(name)s - %(message)s'))
	root_logger.addHandler(console_handler)

	if log_file_path:
		workdir = os.path.dirname(log_file_path)
		if workdir:
			os.makedirs(workdir, exist_ok=True)
		file_handler = logging.FileHandler(log_file_path)
		file_handler.setLevel(logging.DEBUG)
		file_handler.setFormatter(logging.Formatter('%(asctime)s %(levelname)s %(name)s - %(message)s'))
		root_logger.addHandler(file_handler)

	for name in _NOISY_LOGGERS:
		logging.getLogger(name).setLevel(logging.WARNING)
