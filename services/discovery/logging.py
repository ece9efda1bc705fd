"""
Run logging - tee every discovery run into its own log file.
"""

import sys
from datetime import datetime
from pathlib import Path
from typing import Optional

from loguru import logger

LOG_FORMAT = "{time:YYYY-MM-DD HH:mm:ss.SSS} | {level: <8} | {message}"


def configure_console(verbose: bool = False) -> None:
    """Replace loguru's default stderr handler with a terse one."""
    logger.remove()
    logger.add(
        sys.stderr,
        format="<green>{time:HH:mm:ss}</green> | <level>{level: <8}</level> | {message}",
        level="DEBUG" if verbose else "INFO",
    )


class RunLogger:
    """
    Writes all log records of a run to logs/discover_<date>_<time>.log.

    Usage:
        with RunLogger("discover") as run_log:
            logger.info("Processing...")
        # run_log.path holds the finished file
    """

    def __init__(self, name: str = "discover", log_dir: str = "logs"):
        self.name = name
        self.log_dir = Path(log_dir)
        self.path: Optional[Path] = None
        self._handler_id: Optional[int] = None
        self._start_time: Optional[datetime] = None

    def __enter__(self) -> "RunLogger":
        self._start_time = datetime.now()
        self.log_dir.mkdir(parents=True, exist_ok=True)
        stamp = self._start_time.strftime("%Y-%m-%d_%H%M%S")
        self.path = self.log_dir / f"{self.name}_{stamp}.log"

        self._handler_id = logger.add(
            str(self.path),
            format=LOG_FORMAT,
            level="DEBUG",
            enqueue=False,
        )
        logger.info(f"=== Run started: {self.name} ===")
        logger.info(f"Log file: {self.path}")
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        duration = datetime.now() - self._start_time
        if exc_type and not issubclass(exc_type, (KeyboardInterrupt, SystemExit)):
            logger.error(f"Run failed with error: {exc_val}")
        logger.info(f"Duration: {duration}")
        logger.info(f"=== Run finished: {self.name} ===")

        if self._handler_id is not None:
            logger.remove(self._handler_id)
            self._handler_id = None
        return False
