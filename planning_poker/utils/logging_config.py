import logging
import logging.config
import os
from pathlib import Path


def setup_logging():
    """
    Route the session server's logs to the console and '<LOG_DIR>/planning_poker.log'.

    LOG_LEVEL sets the console threshold; the file always keeps INFO and above.
    """
    log_dir = Path(os.getenv("LOG_DIR", "logs"))
    log_dir.mkdir(parents=True, exist_ok=True)
    console_level = os.getenv("LOG_LEVEL", "INFO").upper()

    logging.config.dictConfig(
        {
            "version": 1,
            "disable_existing_loggers": False,
            "formatters": {
                "default": {
                    "format": "%(asctime)s - %(name)s - %(levelname)s - %(message)s",
                },
            },
            "handlers": {
                "console": {
                    "class": "logging.StreamHandler",
                    "formatter": "default",
                    "level": console_level,
                },
                "session_file": {
                    "class": "logging.handlers.RotatingFileHandler",
                    "formatter": "default",
                    "filename": str(log_dir / "planning_poker.log"),
                    "maxBytes": int(os.getenv("LOG_MAX_BYTES", str(5 * 1024 * 1024))),
                    "backupCount": int(os.getenv("LOG_BACKUP_COUNT", "3")),
                    "level": "INFO",
                    "encoding": "utf8",
                },
            },
            "loggers": {
                "planning_poker": {
                    "handlers": ["console", "session_file"],
                    "level": "DEBUG",
                    "propagate": False,
                },
                # uvicorn.access and uvicorn.error propagate here
                "uvicorn": {
                    "handlers": ["console", "session_file"],
                    "level": "INFO",
                    "propagate": False,
                },
                # one line per tracker request is noise; keep failures only
                "httpx": {
                    "handlers": ["console", "session_file"],
                    "level": "WARNING",
                    "propagate": False,
                },
            },
            "root": {"handlers": ["console"], "level": "WARNING"},
        }
    )
    logging.getLogger("planning_poker").info("Logging configured in %s", log_dir)
