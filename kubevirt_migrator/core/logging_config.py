"""Logging configuration for the migrator: console plus optional log file."""

import logging
import os
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any

import structlog
from structlog.stdlib import BoundLogger, LoggerFactory, ProcessorFormatter

LOG_LEVELS = ("debug", "info", "warn", "warning", "error")


def _resolve_level(log_level: str | None) -> int:
    if log_level is None:
        log_level = os.getenv("KUBEVIRT_MIGRATOR_LOG_LEVEL", "info")
    name = log_level.upper()
    if name == "WARN":
        name = "WARNING"
    return getattr(logging, name, logging.INFO)


def setup_logging(
    log_level: str | None = None,
    log_file: Path | str | None = None,
    max_file_size_mb: int = 10,
) -> None:
    """Setup logging for a migrator run.

    Console output goes to stderr so that command output (check tables,
    version info) on stdout stays clean. When ``log_file`` is given, JSON
    events are also written there, truncated once ``max_file_size_mb`` is hit.

    Args:
        log_level: debug, info, warn or error (defaults to KUBEVIRT_MIGRATOR_LOG_LEVEL)
        log_file: Optional path for a JSON log file
        max_file_size_mb: Max file size before truncation (no backup files kept)
    """
    level = _resolve_level(log_level)

    # Clear any existing handlers to prevent duplicates
    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.setLevel(level)

    renderer = (
        structlog.dev.ConsoleRenderer()
        if sys.stderr.isatty()
        else structlog.processors.JSONRenderer()
    )
    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setLevel(level)
    console_handler.setFormatter(ProcessorFormatter(processor=renderer))
    root_logger.addHandler(console_handler)

    if log_file:
        log_path = Path(log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = RotatingFileHandler(
            log_path,
            maxBytes=max_file_size_mb * 1024 * 1024,
            backupCount=0,
            encoding="utf-8",
        )
        file_handler.setLevel(level)
        file_handler.setFormatter(
            ProcessorFormatter(processor=structlog.processors.JSONRenderer())
        )
        root_logger.addHandler(file_handler)

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.StackInfoRenderer(),
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=LoggerFactory(),
        wrapper_class=BoundLogger,
        cache_logger_on_first_use=True,
    )

    structlog.get_logger("migrator").debug(
        "Logging system initialized",
        log_level=logging.getLevelName(level),
        log_file=str(log_file) if log_file else None,
    )


def bind_run_context(**values: Any) -> None:
    """Bind values (vm, namespace, command) into every log event of this run."""
    structlog.contextvars.clear_contextvars()
    structlog.contextvars.bind_contextvars(**values)
