import sys
import logging
from pathlib import Path
from typing import Optional

from loguru import logger

# Formatters
CONSOLE_FORMAT = (
    "<green>{time:YYYY-MM-DD HH:mm:ss.SSS}</green> | "
    "<level>{level:<8}</level> | "
    "<cyan>{name}:{function}:{line}</cyan> - "
    "<level>{message}</level>"
)

FILE_FORMAT = (
    "{time:YYYY-MM-DD HH:mm:ss.SSS} | {level:<8} | "
    "{name}:{function}:{line} - {message}"
)

# External loggers routed through loguru
EXTERNAL_LOGGERS = [
    "uvicorn",
    "uvicorn.error",
    "uvicorn.access",
    "asyncpg",
    "sqlalchemy",
    "sqlalchemy.engine",
    "sqlalchemy.pool",
    "py.warnings",
]


# Intercept standard logging → loguru
class InterceptHandler(logging.Handler):
    def emit(self, record):
        try:
            level = logger.level(record.levelname).name
        except ValueError:
            level = record.levelno
        logger.opt(depth=6, exception=record.exc_info).log(
            level, record.getMessage()
        )


def configure_logging(level: str = "INFO", log_file: Optional[Path] = None) -> None:
    """
    Replace loguru's default sink with the service sinks and redirect stdlib
    logging and the warnings module (PartialParseWarning included) into loguru.
    """
    logger.remove()

    # Console output
    logger.add(
        sys.stdout,
        level=level,
        format=CONSOLE_FORMAT,
        colorize=True,
    )

    # File logging
    if log_file is not None:
        Path(log_file).parent.mkdir(parents=True, exist_ok=True)
        logger.add(
            str(log_file),
            level=level,
            rotation="5 MB",
            retention=10,
            compression="zip",
            encoding="utf-8",
            format=FILE_FORMAT,
            backtrace=True,
            diagnose=False,
            enqueue=True,
        )

    logging.basicConfig(handlers=[InterceptHandler()], level=0, force=True)
    logging.captureWarnings(True)

    for name in EXTERNAL_LOGGERS:
        ext_logger = logging.getLogger(name)
        ext_logger.handlers.clear()
        ext_logger.addHandler(InterceptHandler())
        ext_logger.setLevel(level)
        ext_logger.propagate = False

    logger.debug(f"Logging configured at level {level}.")
