"""
Logging configuration for datachat.

Two destinations:

  - Console: DEBUG if --verbose, WARNING+ otherwise.
    Config ``console_format`` options:
      - "simple": (default) bare messages for DEBUG/INFO, [LEVEL] prefix for WARNING+
      - "full": same structured format as the file handler
      - "clean": no console output at all (file logging still active)
  - File: always DEBUG level, one file per server process or CLI run,
    attached by ``attach_log_file()``.

Structured format: "timestamp | level | name | run_id | tag | message".

Log files are stored in <data_dir>/logs/.
"""

import logging
import sys
import traceback
from datetime import datetime
from pathlib import Path
from typing import Optional

from config import get_data_dir

LOGGER_NAME = "datachat"

_FILE_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s | %(run_id)s | %(log_tag)s | %(message)s"


def tagged(tag: str) -> dict:
    """Return ``extra`` dict for logger calls: ``logger.debug("...", extra=tagged("x"))``."""
    return {"log_tag": tag}


# Module-level state (shared across re-inits)
_run_filter: Optional["_RunFilter"] = None


class _RunFilter(logging.Filter):
    """Injects run_id into every log record.

    The id is read from a thread-local slot, so each worker thread running
    an orchestration loop stamps its own records.
    """

    def __init__(self) -> None:
        super().__init__()
        import threading
        self._local = threading.local()

    @property
    def run_id(self) -> str:
        return getattr(self._local, "run_id", "")

    @run_id.setter
    def run_id(self, value: str) -> None:
        self._local.run_id = value

    def filter(self, record: logging.LogRecord) -> bool:
        record.run_id = self.run_id or "-"
        if not hasattr(record, "log_tag"):
            record.log_tag = ""
        return True


class _ConsoleFormatter(logging.Formatter):
    """Console formatter: shows [LEVEL] prefix only for WARNING and above."""

    def format(self, record: logging.LogRecord) -> str:
        if record.levelno >= logging.WARNING:
            return f"  [{record.levelname}] {record.getMessage()}"
        return f"  {record.getMessage()}"


def _ensure_filter(logger: logging.Logger) -> None:
    global _run_filter
    if _run_filter is None:
        _run_filter = _RunFilter()
    if _run_filter not in logger.filters:
        logger.addFilter(_run_filter)


def attach_log_file(name: str) -> Path:
    """Attach a file handler writing to ``<data_dir>/logs/datachat_{name}.log``.

    Replaces any previously attached file handler. Returns the log path.
    """
    log_dir = get_data_dir() / "logs"
    log_dir.mkdir(parents=True, exist_ok=True)
    log_file = log_dir / f"datachat_{name}.log"

    logger = logging.getLogger(LOGGER_NAME)
    _ensure_filter(logger)
    logger.handlers = [h for h in logger.handlers if not isinstance(h, logging.FileHandler)]

    file_handler = logging.FileHandler(log_file, mode='a', encoding="utf-8")
    file_handler.setLevel(logging.DEBUG)
    file_handler.setFormatter(logging.Formatter(_FILE_FORMAT, datefmt="%Y-%m-%d %H:%M:%S"))
    logger.addHandler(file_handler)

    logger.info("=" * 60)
    logger.info(f"Log started at {datetime.now().isoformat()}")
    logger.info(f"Log file: {log_file}")
    return log_file


def setup_logging(verbose: bool = False) -> logging.Logger:
    """Configure console logging for the application.

    Args:
        verbose: If True, show DEBUG level on console; otherwise WARNING+.

    Returns:
        Configured logger instance.
    """
    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(logging.DEBUG)  # Capture everything, filter at handler level

    # Clear existing console handlers (in case of re-init); keep file handlers
    logger.handlers = [h for h in logger.handlers if isinstance(h, logging.FileHandler)]
    _ensure_filter(logger)

    import config as _config
    console_format = _config.get("console_format", "simple")

    if console_format != "clean":
        console_handler = logging.StreamHandler(sys.stderr)
        console_handler.setLevel(logging.DEBUG if verbose else logging.WARNING)
        if console_format == "full":
            console_handler.setFormatter(
                logging.Formatter(_FILE_FORMAT, datefmt="%Y-%m-%d %H:%M:%S")
            )
        else:
            console_handler.setFormatter(_ConsoleFormatter())
        logger.addHandler(console_handler)

    return logger


def set_run_id(run_id: str) -> None:
    """Set the run ID included in subsequent log lines from this thread."""
    global _run_filter
    if _run_filter is None:
        # Logger not set up yet: create filter so it's ready when logging starts
        _run_filter = _RunFilter()
        logging.getLogger(LOGGER_NAME).addFilter(_run_filter)
    _run_filter.run_id = run_id


def log_error(
    message: str,
    exc: Optional[Exception] = None,
    context: Optional[dict] = None,
) -> None:
    """Log an error with full details including stack trace.

    Args:
        message: Error description
        exc: Optional exception to include stack trace from
        context: Optional dict of additional context (tool name, args, etc.)
    """
    lines = [message]

    if context:
        lines.append("Context:")
        for key, value in context.items():
            lines.append(f"  {key}: {value}")

    if exc:
        lines.append(f"Exception type: {type(exc).__name__}")
        lines.append(f"Exception message: {exc}")
        if exc.__traceback__ is not None:
            lines.append("Stack trace:")
            lines.append("".join(traceback.format_exception(type(exc), exc, exc.__traceback__)))

    logging.getLogger(LOGGER_NAME).error("\n".join(lines), extra=tagged("error"))


def log_tool_call(tool_name: str, tool_args: dict) -> None:
    """Log a tool call for debugging."""
    from .truncation import trunc

    logging.getLogger(LOGGER_NAME).debug(
        f"Tool call: {tool_name}({trunc(str(tool_args), 'console.args')})",
        extra=tagged("tool_call"),
    )


def log_tool_result(tool_name: str, result: dict, success: bool) -> None:
    """Log a tool result."""
    logger = logging.getLogger(LOGGER_NAME)
    if success:
        logger.debug(f"Tool result: {tool_name} -> success", extra=tagged("tool_result"))
    else:
        error_msg = result.get("message", "Unknown error")
        logger.warning(
            f"Tool result: {tool_name} -> {result.get('error', 'error')}: {error_msg}",
            extra=tagged("tool_result"),
        )
