#!/usr/bin/env python3
# -*- coding: utf-8 -*-
import logging
import os

from .colored_logging import setup_colored_logging

LOG_LEVEL_ENV = "VALUATION_LOG_LEVEL"


def get_logger(name: str) -> logging.Logger:
    """Return a module logger, installing the colored root handler on first use."""
    logger = logging.getLogger(name)
    if not logging.getLogger().handlers:
        level_name = os.getenv(LOG_LEVEL_ENV, "INFO").upper()
        setup_colored_logging(level=getattr(logging, level_name, logging.INFO))
    return logger
