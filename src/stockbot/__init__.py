"""Chat-driven inventory ledger kept in an Excel workbook.

Importing the package configures the ``stockbot`` logger once: a rotating
log file plus a stderr console handler. ``STOCKBOT_LOG_DIR`` chooses where
the file goes and ``STOCKBOT_LOG_LEVEL`` the threshold of both handlers.
"""

import logging
import os
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Mapping, Optional


LOG_DIR_ENV_VAR = "STOCKBOT_LOG_DIR"
LOG_LEVEL_ENV_VAR = "STOCKBOT_LOG_LEVEL"
LOG_FILE_NAME = "stockbot.log"
LOG_FORMAT = "%(asctime)s | %(name)s | %(levelname)s | %(message)s"
SOURCE_ROOT = Path(__file__).resolve().parents[2]


def resolve_log_dir(environ: Optional[Mapping[str, str]] = None, cwd: Optional[Path] = None) -> Path:
    """Directory receiving ``stockbot.log``.

    An explicit ``STOCKBOT_LOG_DIR`` wins. A source checkout logs into its own
    ``.logs`` folder; an installed package logs into ``.logs`` under the
    working directory, never inside site-packages.
    """

    environ = os.environ if environ is None else environ
    configured = environ.get(LOG_DIR_ENV_VAR)
    if configured:
        return Path(configured).expanduser()
    if (SOURCE_ROOT / "pyproject.toml").exists():
        return SOURCE_ROOT / ".logs"
    return (cwd or Path.cwd()) / ".logs"


def resolve_log_level(environ: Optional[Mapping[str, str]] = None) -> int:
    environ = os.environ if environ is None else environ
    name = environ.get(LOG_LEVEL_ENV_VAR, "INFO").strip().upper()
    level = logging.getLevelName(name)
    return level if isinstance(level, int) else logging.INFO


def _configure_logging() -> logging.Logger:
    """Configure package-wide logging with file and console handlers."""

    logger = logging.getLogger(__name__)
    if logger.handlers:
        return logger

    level = resolve_log_level()
    logger.setLevel(level)
    formatter = logging.Formatter(fmt=LOG_FORMAT, datefmt="%Y-%m-%d %H:%M:%S")

    log_file = resolve_log_dir() / LOG_FILE_NAME
    try:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        file_handler = RotatingFileHandler(
            log_file,
            maxBytes=1_000_000,
            backupCount=5,
            encoding="utf-8",
        )
        file_handler.setLevel(level)
        file_handler.setFormatter(formatter)
        logger.addHandler(file_handler)
    except (OSError, PermissionError) as exc:
        print(
            f"Warning: unable to initialize log file at '{log_file}': {exc}",
            file=sys.stderr,
        )

    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setLevel(level)
    console_handler.setFormatter(formatter)
    logger.addHandler(console_handler)

    return logger


log = _configure_logging()
log.debug("Logger initialized for the 'stockbot' package.")
