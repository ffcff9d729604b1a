"""Log file configuration for the ``jsontabs`` package logger."""

from __future__ import annotations

import logging
import logging.handlers
import os
from pathlib import Path

__all__ = ["setup_logging", "PACKAGE_LOGGER"]

PACKAGE_LOGGER = "jsontabs"
_DEFAULT_LOG_DIR = Path.home() / ".jsontabs" / "logs"
_LOG_FILENAME = "jsontabs.log"
_HANDLER_MARKER = "_jsontabs_handler"
_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"
_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


def setup_logging(
    level: int = logging.INFO,
    *,
    log_dir: Path | str | None = None,
    console: bool = False,
    max_bytes: int = 1_000_000,
    backup_count: int = 3,
    force: bool = False,
) -> Path:
    """Attach a rotating log file (and optionally stderr) to the package logger.

    Only the ``jsontabs`` logger is touched; the root logger and its handlers
    stay under the host application's control. Repeated calls return the
    existing log path unless ``force`` is set, which replaces the handlers
    installed earlier.
    """

    logger = logging.getLogger(PACKAGE_LOGGER)
    installed = [handler for handler in logger.handlers if getattr(handler, _HANDLER_MARKER, False)]
    if installed and not force:
        for handler in installed:
            if isinstance(handler, logging.FileHandler):
                return Path(handler.baseFilename)
    for handler in installed:
        logger.removeHandler(handler)
        handler.close()

    target_dir = Path(log_dir or os.environ.get("JSONTABS_LOG_DIR") or _DEFAULT_LOG_DIR).expanduser()
    target_dir.mkdir(parents=True, exist_ok=True)
    log_path = target_dir / _LOG_FILENAME

    formatter = logging.Formatter(fmt=_FORMAT, datefmt=_DATE_FORMAT)
    handlers: list[logging.Handler] = [
        logging.handlers.RotatingFileHandler(
            log_path, maxBytes=max_bytes, backupCount=backup_count, encoding="utf-8"
        )
    ]
    if console:
        handlers.append(logging.StreamHandler())
    for handler in handlers:
        handler.setLevel(level)
        handler.setFormatter(formatter)
        setattr(handler, _HANDLER_MARKER, True)
        logger.addHandler(handler)

    logger.setLevel(level)
    return log_path
