"""Pytest configuration and shared fixtures for igdmap tests."""

from __future__ import annotations

import logging
import os

import pytest


def pytest_configure(config):
    """Register all project markers to avoid warnings when ini isn't loaded."""
    markers = [
        ("unit", "marks tests as unit tests"),
        ("nat", "marks tests as NAT traversal tests"),
        ("cli", "marks tests as CLI tests"),
        ("config", "marks tests as configuration tests"),
        ("observability", "marks tests as observability tests"),
    ]
    for name, desc in markers:
        config.addinivalue_line("markers", f"{name}: {desc}")


@pytest.fixture(autouse=True)
def _clear_igdmap_env(monkeypatch):
    """Keep IGDMAP_* variables from the developer's shell out of the tests."""
    for name in list(os.environ):
        if name.startswith("IGDMAP_"):
            monkeypatch.delenv(name, raising=False)


@pytest.fixture(autouse=True)
def cleanup_logging():
    """Clean up logging handlers after each test to prevent closed file errors."""
    yield
    # Clean up all handlers to prevent "I/O operation on closed file" errors
    for logger_name in list(logging.Logger.manager.loggerDict.keys()):
        logger = logging.getLogger(logger_name)
        if not isinstance(logger, logging.Logger):
            continue
        for handler in logger.handlers[:]:
            handler.close()
            logger.removeHandler(handler)

    # Also clean up root logger
    root_logger = logging.getLogger()
    for handler in root_logger.handlers[:]:
        handler.close()
        root_logger.removeHandler(handler)
    root_logger.setLevel(logging.WARNING)

    # setup_logging() detaches the package logger from root; undo for caplog
    package_logger = logging.getLogger("igdmap")
    package_logger.propagate = True
    package_logger.setLevel(logging.NOTSET)
