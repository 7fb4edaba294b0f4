"""Logging setup for the engine and the API.

Every module logs through ``logging.getLogger(__name__)``, so configuring the
two package roots (``kobe`` and ``app``) covers the whole process. Called
once from the FastAPI lifespan; library users may call it themselves.
"""
from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional

from . import settings

FILE_FORMAT = "%(asctime)s [%(name)s] [%(levelname)s] %(message)s"
CONSOLE_FORMAT = "%(asctime)s [%(name)s] %(message)s"

# Root loggers already given handlers
_configured_loggers: set[str] = set()


def setup_logger(name: str, filename: Optional[str] = None) -> logging.Logger:
    """Attach console (and optionally file) handlers to logger ``name``.

    Args:
        name: Package root logger, e.g. 'kobe' or 'app'
        filename: Log file under ``settings.LOG_DIR``; skipped when None or
            when ``KOBE_LOG_TO_FILE`` is off

    Returns:
        The configured logger; repeated calls return it unchanged
    """
    logger = logging.getLogger(name)
    if name in _configured_loggers:
        return logger

    level = logging.getLevelName(settings.LOG_LEVEL.upper())
    if not isinstance(level, int):
        level = logging.INFO
    logger.setLevel(level)
    logger.propagate = False

    console = logging.StreamHandler()
    console.setFormatter(logging.Formatter(CONSOLE_FORMAT))
    logger.addHandler(console)

    if filename and settings.LOG_TO_FILE:
        log_dir = Path(settings.LOG_DIR)
        log_dir.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_dir / filename, encoding="utf-8")
        file_handler.setFormatter(logging.Formatter(FILE_FORMAT))
        logger.addHandler(file_handler)

    _configured_loggers.add(name)
    return logger


def get_engine_logger() -> logging.Logger:
    """Root logger of the engine (graph model, nodes, executor, integrations)."""
    return setup_logger("kobe", "engine.log")


def get_api_logger() -> logging.Logger:
    """Root logger of the HTTP layer (``app.main``, ``app.routes.*``)."""
    return setup_logger("app", "api.log")
