import logging
import os
import sys
from logging.handlers import RotatingFileHandler
from typing import Optional


def setup_logger(name: str, log_file: Optional[str] = None, level: str = "INFO") -> logging.Logger:
    """
    Setup a logger with a console handler and an optional file handler.

    Args:
        name: Name of the logger (usually __name__)
        log_file: Path to a rotating log file, or None for console only
        level: Logging level (DEBUG, INFO, WARNING, ERROR)

    Returns:
        Configured logger instance
    """
    logger = logging.getLogger(name)

    log_level = getattr(logging, level.upper(), logging.INFO)
    logger.setLevel(log_level)

    # Check if handlers already exist to avoid duplicates
    if logger.handlers:
        return logger

    formatter = logging.Formatter(
        "%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S"
    )

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setFormatter(formatter)
    logger.addHandler(console_handler)

    if log_file:
        try:
            file_handler = RotatingFileHandler(
                log_file, maxBytes=10*1024*1024, backupCount=5
            )
            file_handler.setFormatter(formatter)
            logger.addHandler(file_handler)
        except OSError as e:
            logger.error(f"Failed to setup file logging to {log_file}: {e}")

    return logger


def get_logger(name: str) -> logging.Logger:
    """Get a logger with default configuration."""
    return setup_logger(
        name,
        log_file=os.getenv("LOG_FILE"),
        level=os.getenv("LOG_LEVEL", "INFO"),
    )
