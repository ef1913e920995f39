import logging
import os
import sys


class CustomFormatter(logging.Formatter):
    """Colors console records by level."""

    grey = "\x1b[38;20m"
    green = "\x1b[32;20m"
    yellow = "\x1b[33;20m"
    red = "\x1b[31;20m"
    bold_red = "\x1b[31;1m"
    reset = "\x1b[0m"
    format_str = (
        "%(asctime)s - %(name)s - %(levelname)s - %(message)s (%(filename)s:%(lineno)d)"
    )

    FORMATS = {
        logging.DEBUG: grey + format_str + reset,
        logging.INFO: green + format_str + reset,
        logging.WARNING: yellow + format_str + reset,
        logging.ERROR: red + format_str + reset,
        logging.CRITICAL: bold_red + format_str + reset,
    }

    def __init__(self, use_color: bool = True):
        super().__init__()
        self.use_color = use_color

    def format(self, record):
        if self.use_color:
            log_fmt = self.FORMATS.get(record.levelno, self.format_str)
        else:
            log_fmt = self.format_str
        formatter = logging.Formatter(log_fmt, datefmt="%Y-%m-%d %H:%M:%S")
        return formatter.format(record)


def _resolve_level() -> int:
    level_name = os.getenv("LOG_LEVEL", "DEBUG").upper()
    return getattr(logging, level_name, logging.DEBUG)


def get_logger(name: str) -> logging.Logger:
    """Returns a console logger for the ingestion service.

    Level comes from LOG_LEVEL; colors are dropped when stdout is not a tty
    so log shippers get plain lines.
    """
    logger = logging.getLogger(name)

    # Only add handler if not already added to avoid duplicate logs
    if not logger.handlers:
        level = _resolve_level()
        logger.setLevel(level)

        ch = logging.StreamHandler(sys.stdout)
        ch.setLevel(level)
        ch.setFormatter(CustomFormatter(use_color=sys.stdout.isatty()))
        logger.addHandler(ch)

    return logger
