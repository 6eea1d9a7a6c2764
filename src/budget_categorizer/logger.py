import logging
import logging.config
import os

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
LOG_FILENAME = "categorizer.log"
_UVICORN_LOGGERS = ("uvicorn", "uvicorn.error", "uvicorn.access")


class ColourizedFormatter(logging.Formatter):
    """Formatter that wraps the level name in an ANSI colour."""

    LEVEL_COLOURS = {
        logging.DEBUG: "\x1b[90m",
        logging.INFO: "\x1b[32m",
        logging.WARNING: "\x1b[33m",
        logging.ERROR: "\x1b[31m",
        logging.CRITICAL: "\x1b[31;1m",
    }
    RESET = "\x1b[0m"

    def format(self, record: logging.LogRecord) -> str:
        original = record.levelname
        colour = self.LEVEL_COLOURS.get(record.levelno)
        if colour:
            record.levelname = f"{colour}{original}{self.RESET}"
        try:
            return super().format(record)
        finally:
            # Other handlers share the record.
            record.levelname = original


def _build_handlers(log_dir: str | None) -> dict[str, dict[str, str]]:
    handlers = {
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
    return handlers


def get_logging_config() -> dict:
    level = os.getenv("LOG_LEVEL", "INFO").upper()
    handlers = _build_handlers(os.getenv("LOG_DIR"))
    handler_names = list(handlers)

    loggers: dict[str, dict] = {"": {"handlers": handler_names, "level": level}}
    for name in _UVICORN_LOGGERS:
        loggers[name] = {"handlers": handler_names, "level": "INFO", "propagate": False}

    return {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {
            "colour": {
                "()": "budget_categorizer.logger.ColourizedFormatter",
                "format": LOG_FORMAT,
            },
            "plain": {"format": LOG_FORMAT},
        },
        "handlers": handlers,
        "loggers": loggers,
    }


def setup_logging() -> None:
    logging.config.dictConfig(get_logging_config())


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)
