#!/usr/bin/env python3
"""
wsbridge Logging Configuration

Centralized logging setup for consistent formatting across the client and
server faces of the bridge. Supports both development (console) and
production (file) modes.

Usage:
    from shared.log import get_logger

    logger = get_logger(__name__)
    logger.info("Starting server...")
    logger.error("Backend dial failed", extra={"session_id": "a1b2c3d4", "peer": "10.0.0.2:51234"})
"""

from __future__ import annotations
import logging
import sys
from pathlib import Path
from typing import Optional, TYPE_CHECKING, Any
import os

if TYPE_CHECKING:
    from shared.relay import SessionResult


# ========================================
#           LOGGING FORMATTERS
# ========================================

class ColoredFormatter(logging.Formatter):
    """Colored formatter for console output"""

    # ANSI Color codes
    COLORS = {
        'DEBUG': '\033[36m',     # Cyan
        'INFO': '\033[32m',      # Green
        'WARNING': '\033[33m',   # Yellow
        'ERROR': '\033[31m',     # Red
        'CRITICAL': '\033[35m',  # Magenta
        'RESET': '\033[0m'       # Reset
    }

    def format(self, record: logging.LogRecord) -> str:
        levelname = record.levelname
        if levelname in self.COLORS:
            record.levelname = f"{self.COLORS[levelname]}{levelname}{self.COLORS['RESET']}"
        try:
            return super().format(record)
        finally:
            # other handlers on the same logger must see the plain level name
            record.levelname = levelname


class GenericFormatter(logging.Formatter):

    def format(self, record: logging.LogRecord) -> str:
        bridge_context = []

        # Extract common relay fields from extra data
        if hasattr(record, 'session_id'):
            bridge_context.append(f"session={record.session_id}")
        if hasattr(record, 'peer'):
            bridge_context.append(f"peer={record.peer}")
        if hasattr(record, 'direction'):
            bridge_context.append(f"dir={record.direction}")
        if hasattr(record, 'port'):
            bridge_context.append(f"port={record.port}")

        message = super().format(record)
        if bridge_context:
            return f"[{' '.join(bridge_context)}] {message}"
        return message


# ========================================
#           LOGGING CONFIGURATION
# ========================================

_loggers_configured = set()
_level_override: Optional[str] = None

def get_logger(name: str, level: Optional[str] = None) -> logging.Logger:
    """
    Get a configured logger for the given module.

    Args:
        name: Usually __name__ from the calling module
        level: Override log level ("DEBUG", "INFO", "WARNING", "ERROR")

    Returns:
        Configured logger instance

    Examples:
        logger = get_logger(__name__)
        logger.info("Tunnel client listening")

        # With context
        logger.warning("Dial attempt failed", extra={
            "session_id": "a1b2c3d4",
            "peer": "127.0.0.1:50312",
        })
    """
    logger = logging.getLogger(name)

    # Only configure each logger once
    if name not in _loggers_configured:
        _configure_logger(logger, level or _level_override)
        _loggers_configured.add(name)

    return logger


def _configure_logger(logger: logging.Logger, level: Optional[str] = None) -> None:
    """Configure a logger with appropriate handlers and formatters"""

    log_level = _get_log_level(level)
    logger.setLevel(log_level)

    # Clear existing handlers to avoid duplicates
    logger.handlers.clear()

    if _is_development():
        _add_file_handler(logger)
        _add_console_handler(logger, colored=True)
    else:
        # Production: Clean console + file logging
        _add_console_handler(logger, colored=False)
        _add_file_handler(logger)

    # Prevent duplicate messages from parent loggers
    logger.propagate = False


def _get_log_level(level: Optional[str] = None) -> int:
    """Determine appropriate log level"""

    if level:
        return getattr(logging, level.upper(), logging.INFO)

    # Default based on environment
    return logging.DEBUG if _is_development() else logging.INFO


def _is_development() -> bool:
    """Detect if we're in development mode"""
    return (
        os.getenv('PYTHON_ENV', '').lower() in ['dev', 'development'] or
        'pytest' in sys.modules
    )


def _add_console_handler(logger: logging.Logger, colored: bool = True) -> None:
    """Add console handler with appropriate formatter"""

    fmt = '[%(levelname)-8s][%(asctime)s][%(name)-5s]: %(message)s'
    handler = logging.StreamHandler(sys.stdout)

    if colored and _supports_color():
        formatter = ColoredFormatter(
            fmt=fmt,
            datefmt='%H:%M:%S'
        )
    else:
        formatter = GenericFormatter(
            fmt=fmt,
            datefmt='%Y-%m-%d %H:%M:%S'
        )

    handler.setFormatter(formatter)
    logger.addHandler(handler)


def _add_file_handler(logger: logging.Logger) -> None:
    """Add file handler for production logging"""

    log_dir = Path(os.getenv('WSBRIDGE_LOG_DIR', 'logs'))
    log_dir.mkdir(parents=True, exist_ok=True)

    log_file = log_dir / "wsbridge.log"
    handler = logging.FileHandler(log_file, encoding="utf-8")

    formatter = GenericFormatter(
        fmt='%(asctime)s | %(name)-30s | %(levelname)-8s | %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    )

    handler.setFormatter(formatter)
    logger.addHandler(handler)


def _supports_color() -> bool:
    """Check if terminal supports color output"""

    # stdout must be a terminal
    if not (hasattr(sys.stdout, "isatty") and sys.stdout.isatty()):
        return False

    # TERM should not be dumb
    if os.getenv("TERM", "") == "dumb":
        return False

    if sys.platform == "win32":
        # On modern Windows terminals, ANSI colors are supported
        return os.getenv("ANSICON") is not None or os.getenv("WT_SESSION") is not None or os.getenv("TERM_PROGRAM") == "vscode" or "WindowsTerminal" in os.getenv("TERM", "")

    return True

# ========================================
#           CONVENIENCE FUNCTIONS
# ========================================

def configure_root_logging(level: str = "INFO") -> None:
    """
    Configure root logging for the entire application.
    Call this once at application startup.

    Loggers already handed out by get_logger() are re-leveled as well, since
    modules create theirs at import time, before the CLI has parsed options.

    Args:
        level: Root log level ("DEBUG", "INFO", "WARNING", "ERROR")
    """
    global _level_override
    _level_override = level
    root_logger = logging.getLogger()
    _configure_logger(root_logger, level)
    for name in _loggers_configured:
        logging.getLogger(name).setLevel(_get_log_level(level))


def log_session_event(logger: logging.Logger, level: str, message: str,
                      result: Optional["SessionResult"] = None,
                      **context: Any) -> None:
    """
    Log a relay session event with structured context.

    Args:
        logger: Logger instance
        level: Log level ("debug", "info", "warning", "error")
        message: Log message
        result: Finished SessionResult for automatic context extraction
        **context: Additional context fields (peer, direction, ...)

    Example:
        log_session_event(logger, "info", "Session finished",
                          result=result, peer="127.0.0.1:50312")
    """

    extra_context = {}

    if result is not None:
        extra_context.update({
            'session_id': result.session_id,
            'direction': result.ended_by.value if result.ended_by else "-",
        })
        message = (
            f"{message} ({result.reason.value}; "
            f"tcp->ws {result.bytes_to_ws}B, ws->tcp {result.bytes_to_tcp}B, "
            f"{result.duration:.2f}s)"
        )
        if result.error is not None:
            message = f"{message}: {result.error!r}"

    extra_context.update(context)

    log_func = getattr(logger, level.lower())
    log_func(message, extra=extra_context)
