"""Inventory, sales and stock reconciliation backed by ``.xlsx`` table files.

Importing the package configures the package logger ``log``. Records go to
a rotating file under ``<project>/.logs`` (or ``$INVENTORY_SALES_LOG_DIR``)
and warnings and errors are echoed to stderr; set
``INVENTORY_SALES_CONSOLE_LEVEL`` to see more on the console.
"""

import logging
import os
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path


__version__ = "1.0.0"

PROJECT_ROOT = Path(__file__).resolve().parents[2]
LOG_DIR = Path(os.environ.get("INVENTORY_SALES_LOG_DIR", PROJECT_ROOT / ".logs"))
LOG_FILE = LOG_DIR / "inventory_sales.log"
CONSOLE_LEVEL = os.environ.get("INVENTORY_SALES_CONSOLE_LEVEL", "WARNING").upper()


def _configure_logging() -> logging.Logger:
    """Attach the rotating file handler and the stderr handler once."""

    logger = logging.getLogger(__name__)
    if logger.handlers:
        return logger

    logger.setLevel(logging.DEBUG)
    formatter = logging.Formatter(
        fmt="%(asctime)s | %(name)s | %(levelname)s | %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    try:
        LOG_DIR.mkdir(parents=True, exist_ok=True)
        file_handler = RotatingFileHandler(
            LOG_FILE,
            maxBytes=1_000_000,
            backupCount=5,
            encoding="utf-8",
        )
        file_handler.setLevel(logging.INFO)
        file_handler.setFormatter(formatter)
        logger.addHandler(file_handler)
    except OSError as exc:
        print(
            f"Warning: unable to initialize log file at '{LOG_FILE}': {exc}",
            file=sys.stderr,
        )

    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setLevel(getattr(logging, CONSOLE_LEVEL, logging.WARNING))
    console_handler.setFormatter(formatter)
    logger.addHandler(console_handler)

    return logger


log = _configure_logging()
log.debug("Logger initialized for the 'inventory_sales' package (file: %s)", LOG_FILE)
