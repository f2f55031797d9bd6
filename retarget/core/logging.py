"""Package logging: component-tagged console and file output with frame context"""

import logging
import sys
from contextvars import ContextVar
from datetime import datetime
from pathlib import Path
from typing import Optional

from .errors import ConfigurationError

LOG_NAMESPACE = "retarget"

_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")

# Frame being solved in the current thread (worker threads get their own)
_current_frame: ContextVar[Optional[int]] = ContextVar("retarget_frame", default=None)


def set_frame_context(frame_index: Optional[int]) -> None:
    """Tag subsequent log records from this thread with a frame index (None clears)."""
    _current_frame.set(frame_index)


def component_name(logger_name: str) -> str:
    """Logger name without the package prefix, e.g. "motion.retargeter"."""
    prefix = LOG_NAMESPACE + "."
    return logger_name[len(prefix):] if logger_name.startswith(prefix) else logger_name


class FrameContextFilter(logging.Filter):
    """Adds `component` and `frame` attributes used by the package formats."""

    def filter(self, record: logging.LogRecord) -> bool:
        frame = _current_frame.get()
        record.component = component_name(record.name)
        record.frame = f"#{frame}" if frame is not None else "-"
        return True


class ComponentFormatter(logging.Formatter):
    """Console format, level tag optionally colored with ANSI codes."""

    LEVEL_COLORS = {
        "DEBUG": "\033[2m",
        "INFO": "\033[32m",
        "WARNING": "\033[33m",
        "ERROR": "\033[31m",
        "CRITICAL": "\033[1;31m",
    }
    RESET = "\033[0m"

    FORMAT = "%(asctime)s %(tag)s [%(component)s %(frame)s] %(message)s"

    def __init__(self, color: bool = True):
        super().__init__(self.FORMAT, datefmt="%H:%M:%S")
        self.color = color

    def format(self, record: logging.LogRecord) -> str:
        tag = f"{record.levelname[:4]:<4}"
        if self.color:
            tag = f"{self.LEVEL_COLORS.get(record.levelname, '')}{tag}{self.RESET}"
        record.tag = tag
        return super().format(record)


FILE_FORMAT = "%(asctime)s %(levelname)-8s %(component)-20s %(frame)-7s %(message)s"


def setup_logging(
    level: str = "INFO",
    log_file: Optional[str] = None,
    log_dir: str = "logs",
    color: bool = True,
) -> logging.Logger:
    """
    Configure the package root logger once; later calls only change the level.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        log_file: Optional log file stem, a timestamp is appended
        log_dir: Directory for log files
        color: Use ANSI colors on the console handler

    Returns:
        Package root logger
    """
    if level.upper() not in _LEVELS:
        raise ConfigurationError(f"Unknown log level: {level!r}")

    root_logger = logging.getLogger(LOG_NAMESPACE)
    root_logger.setLevel(getattr(logging, level.upper()))
    if root_logger.handlers:
        return root_logger

    context = FrameContextFilter()

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.addFilter(context)
    console_handler.setFormatter(ComponentFormatter(color=color))
    root_logger.addHandler(console_handler)

    if log_file:
        log_path = Path(log_dir)
        log_path.mkdir(parents=True, exist_ok=True)
        file_path = log_path / f"{log_file}_{datetime.now():%Y%m%d_%H%M%S}.log"

        file_handler = logging.FileHandler(file_path)
        file_handler.addFilter(context)
        file_handler.setFormatter(logging.Formatter(FILE_FORMAT, datefmt="%Y-%m-%d %H:%M:%S"))
        root_logger.addHandler(file_handler)

        root_logger.info(f"Logging to file: {file_path}")

    return root_logger


def get_logger(name: str) -> logging.Logger:
    """
    Get a component logger under the package namespace.

    Args:
        name: Component name (e.g., "pose.filters", "motion.retargeter")
    """
    return logging.getLogger(f"{LOG_NAMESPACE}.{name}")
