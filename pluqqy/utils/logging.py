"""Structured logging configuration using structlog."""

from __future__ import annotations

import logging
import sys
from pathlib import Path
from typing import TextIO

import structlog

_log_stream: TextIO | None = None


def setup_logging(level: str = "WARNING", log_file: Path | None = None) -> None:
    """Configure structured logging for the application.

    Logs go to stderr unless ``log_file`` is given, so that they never
    interleave with the list view or command output on stdout.
    """
    global _log_stream

    if _log_stream is not None:
        _log_stream.close()
        _log_stream = None

    if log_file is not None:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        _log_stream = open(log_file, "a", encoding="utf-8")
        stream: TextIO = _log_stream
    else:
        stream = sys.stderr

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.StackInfoRenderer(),
            structlog.dev.set_exc_info,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.dev.ConsoleRenderer()
            if stream.isatty()
            else structlog.processors.JSONRenderer(),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(
            getattr(logging, level.upper(), logging.WARNING)
        ),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(file=stream),
        cache_logger_on_first_use=False,
    )
