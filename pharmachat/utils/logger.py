import logging
import os
from typing import Optional


APP_LOGGER_NAME = "pharmachat"


def setup_logger(name: str, log_level: str = "INFO", log_file: Optional[str] = None) -> logging.Logger:
    """
    Configure a logger with a console handler and an optional file handler.

    Calling it again for the same name returns the existing logger without
    adding handlers twice.
    """
    logger = logging.getLogger(name)
    level = getattr(logging, log_level.upper(), logging.INFO)
    logger.setLevel(level)

    if logger.handlers:
        return logger

    formatter = logging.Formatter(
        "%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    console_handler = logging.StreamHandler()
    console_handler.setLevel(level)
    console_handler.setFormatter(formatter)
    logger.addHandler(console_handler)

    if log_file:
        log_dir = os.path.dirname(log_file)
        if log_dir:
            os.makedirs(log_dir, exist_ok=True)
        file_handler = logging.FileHandler(log_file)
        file_handler.setLevel(level)
        file_handler.setFormatter(formatter)
        logger.addHandler(file_handler)

    return logger


_app_logger: Optional[logging.Logger] = None


def init_app_logger(settings) -> logging.Logger:
    global _app_logger
    _app_logger = setup_logger(APP_LOGGER_NAME, log_level=settings.LOG_LEVEL, log_file=settings.LOG_FILE)
    return _app_logger


def get_app_logger() -> logging.Logger:
    if _app_logger is None:
        return setup_logger(APP_LOGGER_NAME)
    return _app_logger
