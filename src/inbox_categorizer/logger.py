import logging
import logging.config
import os

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
LOG_FILENAME = "inbox-categorizer.log"

_UVICORN_LOGGERS = ("uvicorn", "uvicorn.error", "uvicorn.access")


class ColourizedFormatter(logging.Formatter):
    """
    Console formatter that colours the level name.
    """
    GREY = "\x1b[90m"
    GREEN = "\x1b[32m"
    YELLOW = "\x1b[33m"
    RED = "\x1b[31m"
    BOLD_RED = "\x1b[31;1m"
    RESET = "\x1b[0m"

    LEVEL_COLORS = {
        logging.DEBUG: GREY,
        logging.INFO: GREEN,
        logging.WARNING: YELLOW,
        logging.ERROR: RED,
        logging.CRITICAL: BOLD_RED,
    }

    def format(self, record: logging.LogRecord) -> str:
        colour = self.LEVEL_COLORS.get(record.levelno)
        if colour is None:
            return super().format(record)

        plain_levelname = record.levelname
        record.levelname = f"{colour}{plain_levelname}{self.RESET}"
        try:
            return super().format(record)
        finally:
            # Other handlers share the record.
            record.levelname = plain_levelname


def get_logging_config(level: str | None = None) -> dict:
    log_level_name = (level or os.getenv("LOG_LEVEL", "INFO")).upper()
    log_dir = os.getenv("LOG_DIR")

    handlers: dict[str, dict] = {
        "console": {
            "class": "logging.StreamHandler",
            "stream": "ext://sys.stdout",
            "formatter": "colour",
        },
    }
    if log_dir:
        os.makedirs(log_dir, exist_ok=True)
        handlers["file"] = {
            "class": "logging.FileHandler",
            "filename": os.path.join(log_dir, LOG_FILENAME),
            "formatter": "plain",
        }
    handler_names = list(handlers)

    loggers: dict[str, dict] = {
        "": {"handlers": handler_names, "level": log_level_name},
    }
    for name in _UVICORN_LOGGERS:
        loggers[name] = {"handlers": handler_names, "level": "INFO", "propagate": False}

    return {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {
            "colour": {
                "()": "inbox_categorizer.logger.ColourizedFormatter",
                "format": LOG_FORMAT,
            },
            "plain": {"format": LOG_FORMAT},
        },
        "handlers": handlers,
        "loggers": loggers,
    }


def setup_logging(level: str | None = None) -> None:
    logging.config.dictConfig(get_logging_config(level))


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)
