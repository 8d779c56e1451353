"""Tests for orchestrator log formatting and handler setup."""

import io
import logging
from unittest.mock import patch

import pytest

from plan_orchestrator.utils.rich_logging import PACKAGE_LOGGER, OrchestratorLogFormatter, setup_logging


@pytest.fixture
def package_logger():
    """Restore the package logger after setup_logging rewires it."""
    log = logging.getLogger(PACKAGE_LOGGER)
    saved = (list(log.handlers), log.propagate, log.level)
    yield log
    for handler in log.handlers[:]:
        handler.close()
        log.removeHandler(handler)
    handlers, log.propagate, level = saved
    for handler in handlers:
        log.addHandler(handler)
    log.setLevel(level)


def _record(msg="hello", **extra):
    record = logging.LogRecord("plan_orchestrator.x", logging.INFO, __file__, 1, msg, None, None)
    for key, value in extra.items():
        setattr(record, key, value)
    return record


class TestFormatter:
    def test_worker_and_issue_prefix(self):
        out = OrchestratorLogFormatter(use_colors=False).format(
            _record(worker="devduck-worker-1", issue_key="CRM-1")
        )
        assert "INFO" in out
        assert out.endswith("[devduck-worker-1] [CRM-1] hello")

    def test_no_context(self):
        out = OrchestratorLogFormatter(use_colors=False).format(_record())
        assert out.endswith("INFO     hello")

    def test_colors(self):
        out = OrchestratorLogFormatter(use_colors=True).format(_record())
        assert "\033[32m" in out


class TestSetupLogging:
    def test_console_on_stderr(self, package_logger):
        fake_err = io.StringIO()
        with patch("plan_orchestrator.utils.rich_logging.sys.stderr", fake_err):
            setup_logging(log_to_stderr=True)
            logging.getLogger("plan_orchestrator.core.scheduler").info("to stderr")

        assert "to stderr" in fake_err.getvalue()
        assert package_logger.propagate is False

    def test_file_handler(self, package_logger, tmp_path):
        log_file = tmp_path / ".cache" / "docker.log"
        with patch("plan_orchestrator.utils.rich_logging.sys.stdout", io.StringIO()):
            setup_logging(log_file=log_file)
            logging.getLogger("plan_orchestrator.sandbox.lifecycle").warning("logged")

        for handler in package_logger.handlers:
            handler.flush()
        assert "logged" in log_file.read_text()

    def test_verbose_level(self, package_logger):
        with patch("plan_orchestrator.utils.rich_logging.sys.stdout", io.StringIO()):
            setup_logging(verbose=True)
        assert package_logger.level == logging.DEBUG

    def test_repeated_setup_replaces_handlers(self, package_logger):
        with patch("plan_orchestrator.utils.rich_logging.sys.stdout", io.StringIO()):
            setup_logging()
            setup_logging()
        assert len(package_logger.handlers) == 1
