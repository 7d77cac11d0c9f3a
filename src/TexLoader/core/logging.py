"""Logging setup for the texture loader.

Standalone runs (the CLI) configure the root logger. When a host application
already has root handlers, only the ``texture_loader`` logger is touched so
the host's own output is left alone.
"""

import logging
import logging.handlers
import os
import threading
from typing import Optional

LOGGER_NAME = "texture_loader"
logger = logging.getLogger(LOGGER_NAME)

# Scheduler workers are named "texload-job_N", so the thread name identifies
# which import unit wrote a line.
LOG_FORMAT = "%(asctime)s %(levelname)-7s %(name)s (%(threadName)s) %(message)s"
FILE_MAX_BYTES = 5 * 1024 * 1024
FILE_BACKUPS = 2

_configure_lock = threading.Lock()


def resolve_level(level) -> int:
    """Map a level name or number to a logging level; unknown names become INFO."""
    if isinstance(level, int):
        return level
    resolved = logging.getLevelName(str(level).strip().upper())
    if isinstance(resolved, int):
        return resolved
    logger.warning("Unknown log level %r; using INFO", level)
    return logging.INFO


def _file_handler(path: str) -> logging.Handler:
    directory = os.path.dirname(path)
    if directory:
        os.makedirs(directory, exist_ok=True)
    handler = logging.handlers.RotatingFileHandler(
        path, maxBytes=FILE_MAX_BYTES, backupCount=FILE_BACKUPS, encoding="utf-8",
    )
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    return handler


def _has_file_handler(target: logging.Logger, path: str) -> bool:
    wanted = os.path.abspath(path)
    return any(
        isinstance(h, logging.FileHandler) and h.baseFilename == wanted
        for h in target.handlers
    )


def setup_logging(level="INFO", log_file: Optional[str] = None, force: bool = False) -> bool:
    """Configure logging for a run.

    Returns True when the root logger was configured and False when only the
    ``texture_loader`` logger was adjusted because the host already logs.
    """
    numeric = resolve_level(level)
    with _configure_lock:
        root = logging.getLogger()
        standalone = force or not root.handlers
        if standalone:
            handlers = [logging.StreamHandler()]
            if log_file:
                handlers.append(_file_handler(log_file))
            logging.basicConfig(
                level=numeric, format=LOG_FORMAT, handlers=handlers, force=force,
            )
        else:
            logger.setLevel(numeric)
            if log_file and not _has_file_handler(logger, log_file):
                logger.addHandler(_file_handler(log_file))
    logger.debug(
        "Logging at %s (%s)", logging.getLevelName(numeric),
        "standalone" if standalone else "embedded",
    )
    return standalone


def setup_logging_from_config(config) -> bool:
    """Apply ``log_level`` and ``log_file`` from a ``LoaderConfig``."""
    return setup_logging(config.log_level, config.log_file or None)
