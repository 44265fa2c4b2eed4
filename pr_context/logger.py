"""Logging setup for the CLI."""

from __future__ import annotations

import logging
import os
import sys

LOG_LEVEL_ENV_VAR = "PR_CONTEXT_LOG_LEVEL"
DEFAULT_LOG_LEVEL = "INFO"


def resolve_log_level(log_level: str | None = None) -> str:
    """Return the explicit level, else the env override, else the default."""
    return log_level or os.getenv(LOG_LEVEL_ENV_VAR) or DEFAULT_LOG_LEVEL


def setup_logger(log_level: str = DEFAULT_LOG_LEVEL, name: str = "pr_context") -> logging.Logger:
    """
    Set up and configure the package logger.

    Uses a simple, readable format suitable for CLI output. Logs go to stderr
    because stdout carries the JSON bundle.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        name: Logger name (default: pr_context)

    Returns:
        logging.Logger: Configured logger instance
    """
    numeric_level = getattr(logging, log_level.upper(), logging.INFO)

    logging.basicConfig(
        level=numeric_level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
        stream=sys.stderr,
        force=True,
    )

    logger = logging.getLogger(name)
    logger.setLevel(numeric_level)

    return logger
