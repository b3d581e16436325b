import logging
import sys

from autopickup.core.config import settings


def setup_logger(name: str = "autopickup", level: str | None = None) -> logging.Logger:
    """Configure the application logger and return it.

    Args:
        name: logger name (default: autopickup)
        level: log level name; falls back to settings.LOG_LEVEL

    Returns:
        the configured logging.Logger
    """
    log_level = getattr(logging, (level or settings.LOG_LEVEL).upper(), logging.INFO)

    logger = logging.getLogger(name)
    logger.setLevel(log_level)

    # avoid duplicate output when called twice
    if logger.handlers:
        logger.handlers.clear()

    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(log_level)
    handler.setFormatter(
        logging.Formatter(
            fmt="%(asctime)s [%(levelname)s] [%(name)s] %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )
    )
    logger.addHandler(handler)
    logger.propagate = False

    root_logger = logging.getLogger()
    if not root_logger.handlers:
        root_logger.addHandler(handler)
        root_logger.setLevel(log_level)

    return logger
