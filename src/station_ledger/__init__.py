"""Station Ledger: daily fuel stock bookkeeping on top of an Excel workbook.

Importing the package configures the shared ``station_ledger`` logger used by
every module. Records go to a rotating file under ``.logs/`` (override the
directory with ``STATION_LEDGER_LOG_DIR``) and to stderr. The threshold
defaults to INFO and can be changed with ``STATION_LEDGER_LOG_LEVEL``.
"""

import logging
import os
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path

__version__ = "0.1.0"

PROJECT_ROOT = Path(__file__).resolve().parents[2]


def _log_dir() -> Path:
    override = os.getenv("STATION_LEDGER_LOG_DIR", "").strip()
    return Path(override).expanduser() if override else PROJECT_ROOT / ".logs"


def _log_level() -> int:
    name = os.getenv("STATION_LEDGER_LOG_LEVEL", "INFO").strip().upper()
    level = logging.getLevelName(name)
    return level if isinstance(level, int) else logging.INFO


LOG_DIR = _log_dir()
LOG_FILE = LOG_DIR / "station_ledger.log"


def _configure_logging() -> logging.Logger:
    logger = logging.getLogger(__name__)
    if logger.handlers:
        return logger

    level = _log_level()
    logger.setLevel(level)
    formatter = logging.Formatter(
        fmt="%(asctime)s | %(name)s | %(levelname)s | %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    handlers: list[logging.Handler] = []
    try:
        LOG_DIR.mkdir(parents=True, exist_ok=True)
        handlers.append(RotatingFileHandler(LOG_FILE, maxBytes=1_000_000, backupCount=5, encoding="utf-8"))
    except OSError as exc:
        # Read-only installs still get console logging.
        print(f"Warning: station ledger log file unavailable at '{LOG_FILE}': {exc}", file=sys.stderr)
    handlers.append(logging.StreamHandler(sys.stderr))

    for handler in handlers:
        handler.setLevel(level)
        handler.setFormatter(formatter)
        logger.addHandler(handler)
    return logger


log = _configure_logging()
log.debug("Logging to %s at level %s", LOG_FILE, logging.getLevelName(log.level))
