import sys
from pathlib import Path

from loguru import logger


def configure_logging(level: str = "INFO", log_dir: str = None):
    """Console sink, plus error.log and combined.log under log_dir when given."""
    logger.remove()
    logger.add(sys.stderr, level=level.upper())
    if log_dir:
        add_file_sinks(log_dir, level)


def add_file_sinks(log_dir: str, level: str = "INFO"):
    path = Path(log_dir)
    path.mkdir(parents=True, exist_ok=True)
    logger.add(path / "error.log", level="ERROR")
    logger.add(path / "combined.log", level=level.upper())
