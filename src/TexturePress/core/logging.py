"""Logging setup for the texture pipeline."""

import logging
import logging.handlers
import os
import threading

logger = logging.getLogger("texture_pipeline")

# Rotate the log file at 5 MB, keeping 3 backups.
_LOG_MAX_BYTES = 5 * 1024 * 1024
_LOG_BACKUP_COUNT = 3
_LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
_setup_lock = threading.Lock()


def setup_logging(level: str = "INFO", log_file: str = None, force: bool = False):
    """Configure logging.

    When the host application already configured the root logger (and
    ``force`` is False) only the ``texture_pipeline`` hierarchy is touched.
    """
    with _setup_lock:
        _configure(level, log_file, force)


def _resolve_level(level: str) -> int:
    numeric_level = getattr(logging, str(level).upper(), None)
    if not isinstance(numeric_level, int):
        print(f"Warning: Invalid log level '{level}', defaulting to INFO")
        return logging.INFO
    return numeric_level


def _configure(level: str, log_file: str, force: bool):
    handlers = [logging.StreamHandler()]
    if log_file:
        os.makedirs(os.path.dirname(log_file) or ".", exist_ok=True)
        handlers.append(logging.handlers.RotatingFileHandler(
            log_file, maxBytes=_LOG_MAX_BYTES, backupCount=_LOG_BACKUP_COUNT,
            encoding="utf-8",
        ))
    numeric_level = _resolve_level(level)

    root = logging.getLogger()
    if force or not root.handlers:
        logging.basicConfig(
            level=numeric_level, format=_LOG_FORMAT, handlers=handlers, force=force,
        )
        logger.debug("Logging initialized at %s (force=%s)", logging.getLevelName(numeric_level), force)
        return

    # Embedded mode: leave the root logger to the host application.
    logger.setLevel(numeric_level)
    if log_file:
        file_handler = handlers[1]
        existing = {
            getattr(h, "baseFilename", None)
            for h in logger.handlers
            if isinstance(h, logging.FileHandler)
        }
        if file_handler.baseFilename not in existing:
            file_handler.setFormatter(logging.Formatter(_LOG_FORMAT))
            logger.addHandler(file_handler)
            logger.info("Adding file handler: %s", file_handler.baseFilename)
        else:
            file_handler.close()
