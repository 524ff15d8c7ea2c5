"""Logging setup.

Configures loguru as the single logging backend and forwards records from the
standard ``logging`` module (uvicorn, httpx) into it. Modules obtain a named
sub-logger through ``log``/``system_logger``/``fetcher_logger``/``task_logger``.
"""

import inspect
import logging
import sys

from ipecho.config import settings

from loguru import logger

LOG_FORMAT = (
    "<green>{time:YYYY-MM-DD HH:mm:ss}</green> [<level>{level}</level>] "
    "| <cyan>{extra[system]}</cyan> | {message}"
)


class InterceptHandler(logging.Handler):
    """Route standard library log records to loguru."""

    def emit(self, record: logging.LogRecord) -> None:
        try:
            level: str | int = logger.level(record.levelname).name
        except ValueError:
            level = record.levelno

        frame, depth = inspect.currentframe(), 0
        while frame and (depth == 0 or frame.f_code.co_filename == logging.__file__):
            frame = frame.f_back
            depth += 1

        logger.bind(system=record.name).opt(depth=depth, exception=record.exc_info).log(level, record.getMessage())


def setup_logging(level: str = settings.log_level) -> None:
    logger.remove()
    logger.configure(extra={"system": "ipecho"})
    logger.add(sys.stderr, level=level.upper(), format=LOG_FORMAT, colorize=True, backtrace=True, diagnose=False)

    logging.basicConfig(handlers=[InterceptHandler()], level=0, force=True)
    for name in ("uvicorn", "uvicorn.error", "uvicorn.access", "fastapi"):
        std_logger = logging.getLogger(name)
        std_logger.handlers = [InterceptHandler()]
        std_logger.propagate = False
    # httpx logs every request at INFO
    logging.getLogger("httpx").setLevel(logging.WARNING)


def log(name: str):
    return logger.bind(system=name)


def system_logger(name: str):
    return logger.bind(system=f"System:{name}")


def fetcher_logger(name: str):
    return logger.bind(system=f"Fetcher:{name}")


def task_logger(name: str):
    return logger.bind(system=f"Task:{name}")


setup_logging()

__all__ = ["fetcher_logger", "log", "logger", "setup_logging", "system_logger", "task_logger"]
