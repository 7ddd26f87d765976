from __future__ import annotations

import logging
from logging.handlers import RotatingFileHandler

import pytest

from newsletter_digester.logging_setup import setup_logging


@pytest.fixture
def configure():
    """Run setup_logging and hand back only the handlers it added."""
    root = logging.getLogger()
    level = root.level
    added: list[logging.Handler] = []

    def _configure(log_level: str, log_file: str) -> list[logging.Handler]:
        before = list(root.handlers)
        setup_logging(log_level, log_file)
        added.extend(h for h in root.handlers if h not in before)
        return added

    yield _configure
    for handler in added:
        root.removeHandler(handler)
        handler.close()
    root.setLevel(level)


def test_creates_log_directory_and_rotating_file(configure, tmp_path):
    log_file = tmp_path / "logs" / "digester.log"

    handlers = configure("debug", str(log_file))
    logging.getLogger("newsletter_digester.test").warning("hello file")

    assert logging.getLogger().level == logging.DEBUG
    assert len(handlers) == 2
    assert any(isinstance(h, RotatingFileHandler) for h in handlers)
    assert "hello file" in log_file.read_text(encoding="utf-8")


def test_stream_only_without_log_file(configure):
    handlers = configure("info", "")

    assert len(handlers) == 1
    assert not isinstance(handlers[0], RotatingFileHandler)
    assert logging.getLogger("httpx").level == logging.WARNING
    assert logging.getLogger("apscheduler").level == logging.WARNING
