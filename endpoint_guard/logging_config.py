"""
Logging setup for Endpoint Guard.

Modules log through ``logging.getLogger(__name__)``; this installs the
handlers once per process: console output plus rotating combined and
error-only files in the configured log directory.
"""

import logging
import os
from logging.handlers import RotatingFileHandler
from typing import Optional

from .config import LoggingConfig
from .constants import Permissions

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

_ROOT_LOGGER = "endpoint_guard"


def setup_logging(config: Optional[LoggingConfig] = None, log_dir: Optional[str] = None) -> logging.Logger:
    """
    Configure the package logger.

    Args:
        config: Logging settings (defaults used when None)
        log_dir: Directory for combined.log / error.log; console only when None

    Returns:
        The configured package logger
    """
    config = config or LoggingConfig()
    root = logging.getLogger(_ROOT_LOGGER)
    root.setLevel(config.level)

    # Idempotent: drop handlers from a previous call
    for handler in list(root.handlers):
        root.removeHandler(handler)
        handler.close()

    formatter = logging.Formatter(LOG_FORMAT, DATE_FORMAT)

    if config.console:
        console = logging.StreamHandler()
        console.setFormatter(formatter)
        root.addHandler(console)

    if log_dir:
        os.makedirs(log_dir, exist_ok=True)
        try:
            os.chmod(log_dir, Permissions.LOG_DIR)
        except OSError as e:
            root.warning(f"Could not set secure log directory permissions: {e}")

        combined = RotatingFileHandler(
            os.path.join(log_dir, 'combined.log'),
            maxBytes=config.max_file_size,
            backupCount=config.max_files,
            encoding='utf-8',
        )
        combined.setFormatter(formatter)
        root.addHandler(combined)

        errors = RotatingFileHandler(
            os.path.join(log_dir, 'error.log'),
            maxBytes=config.max_file_size,
            backupCount=config.max_files,
            encoding='utf-8',
        )
        errors.setLevel(logging.ERROR)
        errors.setFormatter(formatter)
        root.addHandler(errors)

    root.propagate = not root.handlers
    return root
