# backend/app/utils/logger.py
"""
Loguru setup for the trainer backend.

Console output always; a rotating per-process file under LOG_DIR when one is
configured. Modules import `logger` from here so the sinks exist before the
first line is written.
"""
import sys
from pathlib import Path
from typing import List, Optional

from loguru import logger

from app.config import LOG_LEVELS, settings

CONSOLE_FORMAT = (
    "<green>{time:YYYY-MM-DD HH:mm:ss.SSS}</green> | <level>{level: <8}</level> | "
    "<cyan>{name}</cyan>:<cyan>{line}</cyan> - <level>{message}</level>"
)
FILE_FORMAT = "{time:YYYY-MM-DD HH:mm:ss.SSS} | {level: <8} | {name}:{function}:{line} - {message}"


def configure_logging(
    level: Optional[str] = None,
    log_dir: Optional[str] = None,
    retention_days: Optional[int] = None,
) -> List[int]:
    """
    Replace all sinks. Arguments default to the LOG_* settings; an empty
    log_dir skips the file sink. Returns the ids of the sinks added.
    """
    level = (level or settings.LOG_LEVEL).upper()
    requested = level
    if level not in LOG_LEVELS:
        level = "INFO"
    log_dir = settings.LOG_DIR if log_dir is None else log_dir
    retention_days = retention_days or settings.LOG_RETENTION_DAYS

    logger.remove()
    sink_ids = [logger.add(sys.stdout, format=CONSOLE_FORMAT, level=level)]

    if log_dir:
        path = Path(log_dir)
        path.mkdir(parents=True, exist_ok=True)
        # File keeps DEBUG regardless of console level, for post-call review
        sink_ids.append(logger.add(
            str(path / "trainer_{time}.log"),
            format=FILE_FORMAT,
            rotation="100 MB",
            retention=f"{retention_days} days",
            level="DEBUG",
            enqueue=True,
        ))

    if requested != level:
        # validate_config reports it as an error at startup
        logger.warning(f"Unknown LOG_LEVEL {requested!r}, using INFO")

    return sink_ids


configure_logging()
