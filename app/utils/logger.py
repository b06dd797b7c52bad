"""
Logger utility for PeerChat
"""

import logging
import os
import sys

LOG_LEVEL_ENV = "PEERCHAT_LOG_LEVEL"


def get_logger(name: str = None, fmt: str = None, level: int = logging.INFO) -> logging.Logger:
    """
    Get a logger with the PeerChat stdout handler attached.

    Args:
        name:  Logger name (defaults to 'app', the parent of every module logger).
        fmt:   Log format string. Pass ``"%(message)s"`` when a supervisor
               already adds timestamps.
        level: Level applied when the handler is first attached.
    """
    logger = logging.getLogger(name or "app")

    if not logger.handlers:
        handler = logging.StreamHandler(sys.stdout)
        handler.setFormatter(
            logging.Formatter(
                fmt or "%(asctime)s - %(name)s - %(levelname)s - %(message)s",
                datefmt="%Y-%m-%d %H:%M:%S",
            )
        )
        logger.addHandler(handler)
        logger.setLevel(level)

    return logger


def configure_app_logging(level: int = None) -> logging.Logger:
    """
    Show the ``app.*`` module loggers on stdout.

    Level comes from PEERCHAT_LOG_LEVEL ("DEBUG", "WARNING", ...) when set.
    """
    if level is None:
        level = logging.getLevelName(os.environ.get(LOG_LEVEL_ENV, "INFO").upper())
        if not isinstance(level, int):
            level = logging.INFO
    return get_logger("app", level=level)
