# logging_config.py
import logging
import logging.config
from pathlib import Path
from typing import Any, Dict, Optional

from caker.config import Settings

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
FILE_LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s:%(lineno)d: %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"
MAX_LOG_BYTES = 10 * 1024 * 1024
LOG_BACKUPS = 5


def build_logging_config(log_level: str, log_file: Optional[str] = None) -> Dict[str, Any]:
    """dictConfig for the cache loggers; the file handler exists only when ``log_file`` is set."""
    formatters = {"console": {"format": LOG_FORMAT, "datefmt": DATE_FORMAT}}
    handlers = {
        "console": {
            "level": log_level,
            "class": "logging.StreamHandler",
            "formatter": "console",
            "stream": "ext://sys.stdout",
        }
    }
    if log_file:
        formatters["file"] = {"format": FILE_LOG_FORMAT, "datefmt": DATE_FORMAT}
        handlers["file"] = {
            "level": log_level,
            "class": "logging.handlers.RotatingFileHandler",
            "formatter": "file",
            "filename": log_file,
            "maxBytes": MAX_LOG_BYTES,
            "backupCount": LOG_BACKUPS,
        }

    return {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": formatters,
        "handlers": handlers,
        "loggers": {
            "caker": {"handlers": list(handlers), "level": log_level, "propagate": False},
            # the scheduler logs every job run at INFO
            "apscheduler": {"handlers": list(handlers), "level": "WARNING", "propagate": False},
        },
    }


def setup_logging(settings: Settings) -> None:
    """Configure logging from settings; the file log is written in production only."""
    log_level = "DEBUG" if settings.DEBUG else "INFO"
    log_file = settings.LOG_FILE if settings.ENVIRONMENT == "production" else None
    if log_file:
        Path(log_file).parent.mkdir(parents=True, exist_ok=True)

    logging.config.dictConfig(build_logging_config(log_level, log_file))

    logger = logging.getLogger("caker")
    logger.info(f"Logging configured with level: {log_level}")
    if log_file:
        logger.info(f"Log file: {log_file}")
