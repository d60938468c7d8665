import logging
import os


LOG_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


def get_logger(name: str, level: str = None) -> logging.Logger:
    """Returns a named logger that writes to stderr.

    The handler is attached only once per name so repeated imports do not
    duplicate output. The level is read from STREAMCORE_LOG_LEVEL unless given.
    """
    logger = logging.getLogger(f"streamcore.{name}")
    if level is None:
        level = os.environ.get("STREAMCORE_LOG_LEVEL", "INFO")
    logger.setLevel(level.upper())

    if not logger.handlers:
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter(LOG_FORMAT, datefmt=DATE_FORMAT))
        logger.addHandler(handler)
        logger.propagate = False
    return logger
