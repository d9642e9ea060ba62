"""
Logging Configuration

Structured logging for the ledger, the market-data layer and the report
assemblers:
- One line per record with location and optional key=value trade context
- Project-wide level and log file, applied from AppConfig (or LOG_LEVEL/LOG_FILE)
- Timing of slow market-data and assembly steps
- Diagnostics collection for partial-failure reporting

Copyright (c) 2026 Andreas Wagner. All rights reserved.
"""

import logging
import os
import sys
import threading
import time
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional


class StructuredFormatter(logging.Formatter):
    """
    Format: [TIMESTAMP] [LEVEL] [LOGGER:FUNCTION:LINE] MESSAGE key=value ...

    Context is passed as ``extra={'context': {...}}`` and rendered sorted by key.
    """

    def format(self, record: logging.LogRecord) -> str:
        timestamp = datetime.fromtimestamp(record.created).strftime('%Y-%m-%d %H:%M:%S.%f')[:-3]
        location = f"{record.name}:{record.funcName}:{record.lineno}"

        line = f"[{timestamp}] [{record.levelname:8s}] [{location}] {record.getMessage()}"

        context: Dict[str, Any] = getattr(record, 'context', None) or {}
        if context:
            line += " " + " ".join(f"{key}={context[key]}" for key in sorted(context))

        if record.exc_info:
            line += f"\n{self.formatException(record.exc_info)}"

        return line


class _LoggingSettings:
    """Level and log file shared by every logger created through setup_logger."""

    def __init__(self):
        self.level = os.getenv('LOG_LEVEL', 'INFO').upper()
        self.log_file: Optional[str] = os.getenv('LOG_FILE') or None
        self.loggers: Dict[str, logging.Logger] = {}
        self.lock = threading.Lock()


_settings = _LoggingSettings()


def _level_value(level: str) -> int:
    return getattr(logging, str(level).upper(), logging.INFO)


def _apply(logger: logging.Logger):
    """Bring one logger's level and file handler in line with _settings."""
    level = _level_value(_settings.level)
    logger.setLevel(level)

    for handler in list(logger.handlers):
        if isinstance(handler, logging.FileHandler):
            if handler.baseFilename == _resolved(_settings.log_file):
                handler.setLevel(level)
                continue
            logger.removeHandler(handler)
            handler.close()
        else:
            handler.setLevel(level)

    if _settings.log_file and not any(
        isinstance(h, logging.FileHandler) for h in logger.handlers
    ):
        Path(_settings.log_file).parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(_settings.log_file, encoding='utf-8')
        file_handler.setLevel(level)
        file_handler.setFormatter(StructuredFormatter())
        logger.addHandler(file_handler)


def _resolved(log_file: Optional[str]) -> Optional[str]:
    return os.path.abspath(log_file) if log_file else None


def setup_logger(name: str) -> logging.Logger:
    """
    Return the project logger for a module (usually __name__).

    Console output goes to stderr; stdout is reserved for CLI JSON output.
    The level and optional log file follow configure_logging().
    """
    with _settings.lock:
        logger = _settings.loggers.get(name)
        if logger is not None:
            return logger

        logger = logging.getLogger(name)
        console_handler = logging.StreamHandler(sys.stderr)
        console_handler.setFormatter(StructuredFormatter())
        logger.addHandler(console_handler)

        # Records still propagate so pytest's caplog can observe them
        logger.propagate = True

        _apply(logger)
        _settings.loggers[name] = logger
        return logger


def configure_logging(level: Optional[str] = None, log_file: Optional[str] = None):
    """
    Set the level and log file for all project loggers, including those
    already created at import time.

    Args:
        level: DEBUG, INFO, WARNING or ERROR (unchanged when None)
        log_file: Path of a log file; None stops file logging
    """
    with _settings.lock:
        if level is not None:
            _settings.level = level.upper()
        _settings.log_file = str(log_file) if log_file else None

        for logger in _settings.loggers.values():
            _apply(logger)


class PerformanceLogger:
    """Times a block; durations over the threshold are logged as SLOW warnings."""

    def __init__(self, logger: logging.Logger, operation: str, threshold_ms: float = 1000):
        self.logger = logger
        self.operation = operation
        self.threshold_ms = threshold_ms
        self.duration_ms: Optional[float] = None
        self._start: Optional[float] = None

    def __enter__(self):
        self._start = time.perf_counter()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.duration_ms = (time.perf_counter() - self._start) * 1000
        status = "failed" if exc_type is not None else "took"

        if self.duration_ms > self.threshold_ms:
            self.logger.warning(f"SLOW: {self.operation} {status} {self.duration_ms:.1f}ms")
        else:
            self.logger.debug(f"{self.operation} {status} {self.duration_ms:.1f}ms")


def get_perf_logger(logger: logging.Logger, operation: str, threshold_ms: float = 1000):
    """
    Usage:
        with get_perf_logger(logger, "quote snapshot", threshold_ms=3000):
            quotes = provider.fetch_quotes(symbols)
    """
    return PerformanceLogger(logger, operation, threshold_ms)


class Diagnostics:
    """
    Collects warnings raised while assembling a report.

    Each message is forwarded to the wrapped logger and kept, so callers can
    surface skipped securities and data-integrity problems alongside the result.
    """

    def __init__(self, logger: Optional[logging.Logger] = None):
        self.logger = logger or setup_logger(__name__)
        self.messages: List[str] = []

    def warning(self, message: str) -> None:
        self.messages.append(message)
        self.logger.warning(message)

    def error(self, message: str) -> None:
        self.messages.append(message)
        self.logger.error(message)

    def __len__(self) -> int:
        return len(self.messages)
