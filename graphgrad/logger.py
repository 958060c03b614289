import logging
import os

_ROOT = "graphgrad"
_FORMAT = "[%(asctime)s][%(levelname)s][%(name)s] %(message)s"


def _configure_root() -> logging.Logger:
    logger = logging.getLogger(_ROOT)
    if not logger.hasHandlers():
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter(_FORMAT))
        logger.addHandler(handler)
    level_name = os.getenv("GRAPHGRAD_LOG_LEVEL", "WARNING").upper()
    logger.setLevel(getattr(logging, level_name, logging.WARNING))
    return logger


def get_logger(name: str) -> logging.Logger:
    """
    Return the logger for a graphgrad module.

    The package logger ``graphgrad`` gets a single stream handler on first use
    and its level from the ``GRAPHGRAD_LOG_LEVEL`` environment variable
    (default ``WARNING``). Module loggers are its children and inherit both.

    Parameters
    ----------
    name : str
        Usually ``__name__`` of the calling module.
    """
    _configure_root()
    if name == _ROOT or name.startswith(_ROOT + "."):
        return logging.getLogger(name)
    return logging.getLogger(f"{_ROOT}.{name}")
