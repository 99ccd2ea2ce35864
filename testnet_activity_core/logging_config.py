import logging
import logging.config
import os
import sys

from . import config as core_config


def build_logging_config(level: str = core_config.LOG_LEVEL,
                         log_to_file: bool = core_config.LOG_TO_FILE,
                         log_file_path: str = core_config.LOG_FILE_PATH) -> dict:
    handlers = ["console"]
    handler_defs = {
        "console": {
            "class": "logging.StreamHandler",
            "formatter": "default",
            "stream": sys.stdout,
        },
    }
    if log_to_file:
        handlers.append("file")
        handler_defs["file"] = {
            "class": "logging.handlers.RotatingFileHandler",
            "formatter": "default",
            "filename": log_file_path,
            "maxBytes": core_config.LOG_FILE_MAX_BYTES,
            "backupCount": core_config.LOG_FILE_BACKUP_COUNT,
            "encoding": "utf-8",
        }

    return {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {
            "default": {
                "format": "[%(asctime)s] [%(levelname)s] %(name)s: %(message)s",
                "datefmt": "%Y-%m-%d %H:%M:%S",
            },
        },
        "handlers": handler_defs,
        "loggers": {
            "testnet_activity_core": {
                "level": level,
                "handlers": handlers,
                "propagate": False,
            },
            "scenarios": {
                "level": level,
                "handlers": handlers,
                "propagate": False,
            },
            # web3 and its HTTP stack are chatty at INFO
            "web3": {
                "level": "WARNING",
                "handlers": handlers,
                "propagate": False,
            },
            "urllib3": {
                "level": "WARNING",
                "handlers": handlers,
                "propagate": False,
            },
        },
        "root": {
            "level": "WARNING",
            "handlers": handlers,
        },
    }


def setup_logging(**overrides) -> None:
    """Apply the logging configuration."""
    logging.config.dictConfig(build_logging_config(**overrides))
    os.environ.setdefault("PYTHONUNBUFFERED", "1")
