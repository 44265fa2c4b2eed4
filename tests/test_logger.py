"""Tests for logger setup."""

from __future__ import annotations

import logging

import pytest
from pr_context.logger import LOG_LEVEL_ENV_VAR, resolve_log_level, setup_logger


@pytest.fixture(autouse=True)
def _restore_logging():
    root = logging.getLogger()
    handlers = root.handlers[:]
    root_level = root.level
    package_level = logging.getLogger("pr_context").level
    yield
    root.handlers[:] = handlers
    root.setLevel(root_level)
    logging.getLogger("pr_context").setLevel(package_level)


@pytest.mark.unit
def test_setup_logger_default() -> None:
    logger = setup_logger()
    assert logger.name == "pr_context"
    assert logger.level == logging.INFO


@pytest.mark.unit
def test_setup_logger_custom_level_is_case_insensitive() -> None:
    assert setup_logger(log_level="debug").level == logging.DEBUG
    assert setup_logger(log_level="WARNING").level == logging.WARNING


@pytest.mark.unit
def test_setup_logger_unknown_level_falls_back_to_info() -> None:
    assert setup_logger(log_level="chatty").level == logging.INFO


@pytest.mark.unit
def test_resolve_log_level_prefers_explicit_then_env(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv(LOG_LEVEL_ENV_VAR, raising=False)
    assert resolve_log_level() == "INFO"

    monkeypatch.setenv(LOG_LEVEL_ENV_VAR, "DEBUG")
    assert resolve_log_level() == "DEBUG"
    assert resolve_log_level("ERROR") == "ERROR"
