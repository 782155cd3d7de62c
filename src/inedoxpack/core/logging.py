"""Logging utilities for inedoxpack.

All progress and log output goes to stderr; stdout is reserved for
command results (inspect output) and the streamed output of dotnet.
"""

import json
import sys
from datetime import UTC, datetime
from typing import Any, Literal

Level = Literal["debug", "info", "warning", "error"]
LogFormat = Literal["text", "json"]

_LEVELS: dict[str, int] = {"debug": 10, "info": 20, "warning": 30, "error": 40}

_verbose = False
_quiet = False
_log_format: LogFormat = "text"


def set_verbose(verbose: bool) -> None:
    """Set verbose mode."""
    global _verbose
    _verbose = verbose


def set_quiet(quiet: bool) -> None:
    """Set quiet mode."""
    global _quiet
    _quiet = quiet


def configure_logging(
    log_format: LogFormat = "text",
    quiet: bool = False,
    verbose: bool = False,
) -> None:
    """Configure logging settings.

    Args:
        log_format: Output format for log messages
        quiet: Only emit warnings and errors
        verbose: Also emit debug messages (ignored when quiet)
    """
    global _log_format
    _log_format = log_format
    set_quiet(quiet)
    set_verbose(verbose)


def threshold() -> int:
    """Lowest level number that is currently emitted."""
    if _quiet:
        return _LEVELS["warning"]
    if _verbose:
        return _LEVELS["debug"]
    return _LEVELS["info"]


def is_enabled(level: Level) -> bool:
    return _LEVELS[level] >= threshold()


def log(message: str, level: Level = "info", **context: Any) -> None:
    """Log a message to stderr.

    Progress messages (info) are written bare in text format so they read
    like console output; other levels carry a prefix.

    Args:
        message: Log message
        level: Log level
        **context: Structured fields (only emitted in json format)
    """
    if not is_enabled(level):
        return

    if _log_format == "json":
        entry = {
            "timestamp": datetime.now(UTC).isoformat(),
            "level": level,
            "message": message,
            **context,
        }
        line = json.dumps(entry, default=str)
    elif level == "info":
        line = message
    else:
        line = f"[{level.upper()}] {message}"

    print(line, file=sys.stderr, flush=True)


def debug(message: str, **context: Any) -> None:
    """Log a debug message."""
    log(message, level="debug", **context)


def info(message: str, **context: Any) -> None:
    """Log a progress message."""
    log(message, level="info", **context)


def warning(message: str, **context: Any) -> None:
    """Log a warning message."""
    log(message, level="warning", **context)


def error(message: str, **context: Any) -> None:
    """Log an error message."""
    log(message, level="error", **context)
