import sys
from pathlib import Path

from loguru import logger


LOG_FORMAT = "{time:YYYY-MM-DD HH:mm:ss} | {level} | {name}:{function}:{line} | {message}"


def configure_logging(level: str = "INFO", log_file: str = "") -> None:
    """Route loguru to stdout, plus an optional rotating transcript/cycle log file."""
    logger.remove()
    logger.add(sys.stdout, level=level.upper(), format=LOG_FORMAT, enqueue=True)

    if log_file:
        path = Path(log_file)
        path.parent.mkdir(parents=True, exist_ok=True)
        logger.add(
            path,
            level=level.upper(),
            format=LOG_FORMAT,
            rotation="10 MB",
            retention=5,
            enqueue=True,
        )
