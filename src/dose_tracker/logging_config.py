"""Centralized logging configuration for the dose tracker."""

from __future__ import annotations

import logging
import logging.config
import sys
from pathlib import Path
from typing import Any, Dict, Optional

DEFAULT_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
DEFAULT_LOG_MAX_BYTES = 5 * 1024 * 1024
DEFAULT_LOG_BACKUP_COUNT = 3

_logging_configured = False


def _build_logging_config(
    level: str = "INFO",
    verbose: bool = False,
    log_file: Optional[str] = None,
) -> Dict[str, Any]:
    """
    Build the dictConfig configuration dictionary.

    Args:
        level: Console level name (ignored when verbose)
        verbose: If True, set console to DEBUG level
        log_file: Optional path of a rotating log file

    Returns:
        Dictionary suitable for logging.config.dictConfig()
    """
    console_level = "DEBUG" if verbose else level.upper()

    config: Dict[str, Any] = {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {
            "console": {"format": DEFAULT_FORMAT},
            "file": {"format": DEFAULT_FORMAT},
        },
        "handlers": {
            "console": {
                "class": "logging.StreamHandler",
                "level": console_level,
                "formatter": "console",
                "stream": "ext://sys.stderr",
            },
        },
        "root": {
            "level": "DEBUG",
            "handlers": ["console"],
        },
    }

    if log_file:
        Path(log_file).parent.mkdir(parents=True, exist_ok=True)
        config["handlers"]["file"] = {
            "class": "logging.handlers.RotatingFileHandler",
            "level": "DEBUG",
            "formatter": "file",
            "filename": str(log_file),
            "maxBytes": DEFAULT_LOG_MAX_BYTES,
            "backupCount": DEFAULT_LOG_BACKUP_COUNT,
            "encoding": "utf-8",
        }
        config["root"]["handlers"].append("file")

    return config


def setup_logging(
    level: Optional[str] = None,
    *,
    verbose: bool = False,
    log_file: Optional[str] = None,
) -> None:
    """
    Configure logging for the CLI / API processes.

    Only the first call has an effect. When `level` / `log_file` are not
    given they come from the process-wide Config (DT_LOG_LEVEL / DT_LOG_FILE).
    """
    global _logging_configured

    if _logging_configured:
        return

    if level is None or log_file is None:
        from .config import get_config

        cfg = get_config()
        level = level or cfg.log_level
        log_file = log_file or cfg.log_file

    try:
        config = _build_logging_config(level=level, verbose=verbose, log_file=log_file)
        logging.config.dictConfig(config)
    except (ValueError, TypeError, OSError) as e:
        sys.stderr.write(f"WARNING: Failed to configure logging: {e}\n")
        logging.basicConfig(
            level=logging.DEBUG if verbose else logging.INFO,
            format="%(levelname)s: %(message)s",
        )

    _logging_configured = True
