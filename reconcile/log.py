import sys
from pathlib import Path
from typing import Optional

from loguru import logger

LOG_FORMAT = (
    "<green>{time:YYYY-MM-DD HH:mm:ss}</green> | "
    "<level>{level: <8}</level> | "
    "<cyan>{extra[tags]}</cyan> | "
    "{message}"
)


def configure_logging(log_file: Optional[str] = None, level: str = 'INFO'):
    """Send loguru output to stderr and, optionally, a rotating log file"""
    logger.remove()
    logger.configure(extra={'tags': []})
    logger.add(sys.stderr, level=level, format=LOG_FORMAT, backtrace=False, diagnose=False)

    if log_file:
        Path(log_file).parent.mkdir(parents=True, exist_ok=True)
        logger.add(log_file, level=level, format=LOG_FORMAT, rotation='10 MB', retention=5)
