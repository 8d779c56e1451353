"""Console and file logging with worker/issue context."""

import logging
import sys
from datetime import datetime
from pathlib import Path
from typing import Optional

PACKAGE_LOGGER = "plan_orchestrator"

_LEVEL_COLORS = {
    "DEBUG": "\033[36m",      # Cyan
    "INFO": "\033[32m",       # Green
    "WARNING": "\033[33m",    # Yellow
    "ERROR": "\033[31m",      # Red
    "CRITICAL": "\033[35m",   # Magenta
}
_RESET = "\033[0m"


class OrchestratorLogFormatter(logging.Formatter):
    """Formatter that prefixes messages with pool member and issue context.

    Context comes from ``extra={"worker": ..., "issue_key": ...}`` on the
    logging call.
    """

    def __init__(self, use_colors: bool = True, with_date: bool = False):
        super().__init__()
        self.use_colors = use_colors
        self.with_date = with_date

    def format(self, record: logging.LogRecord) -> str:
        created = datetime.fromtimestamp(record.created)
        timestamp = created.isoformat(timespec="seconds") if self.with_date else created.strftime("%H:%M:%S")

        context = ""
        worker = getattr(record, "worker", None)
        if worker:
            context += f"[{worker}] "
        issue_key = getattr(record, "issue_key", None)
        if issue_key:
            context += f"[{issue_key}] "

        if self.use_colors:
            level = f"{_LEVEL_COLORS.get(record.levelname, '')}{record.levelname:8s}{_RESET}"
        else:
            level = f"{record.levelname:8s}"

        message = f"{timestamp} {level} {context}{record.getMessage()}"
        if record.exc_info:
            message += "\n" + self.formatException(record.exc_info)
        return message


def setup_logging(
    log_file: Optional[Path] = None,
    log_to_stderr: bool = False,
    verbose: bool = False,
) -> logging.Logger:
    """
    Configure the package logger.

    Args:
        log_file: Orchestrator log file (appended, no colors); skipped when None
        log_to_stderr: Route console output to stderr so stdout stays clean
            for a JSON summary
        verbose: DEBUG level instead of INFO

    Returns:
        The configured package logger
    """
    logger = logging.getLogger(PACKAGE_LOGGER)
    logger.setLevel(logging.DEBUG if verbose else logging.INFO)
    logger.propagate = False

    # Close existing handlers before clearing (prevents file descriptor leak)
    for handler in logger.handlers[:]:
        handler.close()
        logger.removeHandler(handler)

    stream = sys.stderr if log_to_stderr else sys.stdout
    console_handler = logging.StreamHandler(stream)
    use_colors = hasattr(stream, "isatty") and stream.isatty()
    console_handler.setFormatter(OrchestratorLogFormatter(use_colors=use_colors))
    logger.addHandler(console_handler)

    if log_file is not None:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_file, encoding="utf-8")
        file_handler.setFormatter(OrchestratorLogFormatter(use_colors=False, with_date=True))
        logger.addHandler(file_handler)

    return logger
