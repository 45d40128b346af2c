"""
Logging setup for callset-refine.

Log records go to stderr (and optionally a file) so that stdout stays free
for command summaries. Each pass over the callset is wrapped in a
``StageTimer`` which reports elapsed time and throughput.
"""

import logging
import sys
import time
from pathlib import Path
from typing import Optional

LOGGER_NAME = "callset_refine"
DEFAULT_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'


class StageTimer:
    """Time one pass over the sites and log how many were handled.

    Example:
        with StageTimer(logger, "filter learning pass") as timer:
            for site in sites:
                timer.tick()
    """

    def __init__(self, logger: logging.Logger, stage: str, unit: str = "sites"):
        self.logger = logger
        self.stage = stage
        self.unit = unit
        self.count = 0
        self.start_time: Optional[float] = None
        self.elapsed: Optional[float] = None

    def tick(self, n: int = 1) -> None:
        self.count += n

    def __enter__(self):
        self.start_time = time.perf_counter()
        self.logger.info(f"Starting {self.stage}")
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.elapsed = time.perf_counter() - self.start_time
        if exc_type is not None:
            self.logger.error(
                f"Failed {self.stage} after {self.count} {self.unit} ({self.elapsed:.3f}s): {exc_val}"
            )
            return False

        rate = self.count / self.elapsed if self.elapsed > 0 else float(self.count)
        self.logger.info(
            f"Completed {self.stage}: {self.count} {self.unit} in {self.elapsed:.3f}s "
            f"({rate:.1f} {self.unit}/s)"
        )
        return False


def setup_logging(level: str = "INFO", log_file: Optional[Path] = None) -> logging.Logger:
    """Configure the package logger.

    Args:
        level: Logging level name; unknown names fall back to INFO
        log_file: Also write records to this file when given

    Returns:
        The configured package logger
    """
    numeric_level = getattr(logging, str(level).upper(), logging.INFO)
    formatter = logging.Formatter(DEFAULT_FORMAT)

    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(numeric_level)
    logger.handlers.clear()

    handlers = [logging.StreamHandler(sys.stderr)]
    if log_file:
        log_file = Path(log_file)
        log_file.parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(log_file, encoding='utf-8'))

    for handler in handlers:
        handler.setLevel(numeric_level)
        handler.setFormatter(formatter)
        logger.addHandler(handler)

    # Records stop at the package logger
    logger.propagate = False
    return logger
