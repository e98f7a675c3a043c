#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Colored console logging for engine runs.

Level names are wrapped in ANSI colors when stderr is a terminal:
DEBUG cyan, INFO green, WARNING yellow, ERROR red, CRITICAL bold red.
Chatty HTTP libraries are pinned to WARNING so per-request noise from
price sources does not drown the pipeline log.
"""
from __future__ import annotations

import logging
import sys
from typing import Iterable, Optional

DEFAULT_FORMAT = '%(asctime)s - %(levelname)s - [%(name)s:%(module)s.%(funcName)s:%(lineno)d] - %(message)s'
DEFAULT_DATEFMT = '%Y-%m-%d %H:%M:%S'
NOISY_LOGGERS = ("urllib3", "requests", "charset_normalizer")


class ColoredFormatter(logging.Formatter):
    """Formatter that paints the level name."""

    COLORS = {
        'DEBUG': '\033[36m',
        'INFO': '\033[32m',
        'WARNING': '\033[33m',
        'ERROR': '\033[31m',
        'CRITICAL': '\033[1;31m',
    }
    RESET = '\033[0m'

    def __init__(self, fmt: str = DEFAULT_FORMAT, datefmt: Optional[str] = None, use_colors: bool = True):
        super().__init__(fmt, datefmt)
        self.use_colors = use_colors and hasattr(sys.stderr, 'isatty') and sys.stderr.isatty()

    def format(self, record: logging.LogRecord) -> str:
        color = self.COLORS.get(record.levelname) if self.use_colors else None
        if color is None:
            return super().format(record)
        plain = record.levelname
        record.levelname = f"{color}{plain}{self.RESET}"
        try:
            return super().format(record)
        finally:
            record.levelname = plain


def setup_colored_logging(
    level: int = logging.INFO,
    fmt: str = DEFAULT_FORMAT,
    datefmt: Optional[str] = DEFAULT_DATEFMT,
    quiet: Iterable[str] = NOISY_LOGGERS,
) -> None:
    """
    Configure the root logger with a single colored stderr handler.

    Args:
        level: Root logging level (e.g., logging.INFO)
        fmt: Format string for log messages
        datefmt: Format string for timestamps
        quiet: Logger names capped at WARNING
    """
    root = logging.getLogger()
    for handler in root.handlers[:]:
        root.removeHandler(handler)

    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setFormatter(ColoredFormatter(fmt=fmt, datefmt=datefmt))

    root.setLevel(level)
    root.addHandler(console_handler)

    for name in quiet:
        logging.getLogger(name).setLevel(max(level, logging.WARNING))
