import logging
import sys
from .settings import settings

def get_logger(name: str, level: int = None) -> logging.Logger:
    """
    Configures and returns a logger that writes to stdout.
    """
    # Use the level from settings if not provided
    if level is None:
        level_name = settings.log_level.upper()
        level = getattr(logging, level_name, logging.INFO)
    logger = logging.getLogger(name)
    logger.setLevel(level)

    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(level)

    formatter = logging.Formatter('%(asctime)s - %(name)s - %(levelname)s - %(message)s')
    handler.setFormatter(formatter)

    # get_logger can be called repeatedly for the same name; only attach one handler
    if not logger.handlers:
        logger.addHandler(handler)

    return logger
