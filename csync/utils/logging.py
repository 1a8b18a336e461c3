"""
Logging configuration for csync.

Every module logs through ``logging.getLogger(__name__)``; the handlers
live on the ``csync`` package logger configured here. A run writes
human-oriented lines to stderr and a detailed daily file under the
configuration directory, which keeps the record of what was written to
which account.

Environment overrides:
    CSYNC_DEBUG      1/true/yes forces DEBUG
    CSYNC_LOG_LEVEL  DEBUG, INFO, WARNING, ERROR or CRITICAL
    CSYNC_LOG_FILE   explicit log file, or none/disabled
"""

import logging
import os
import sys
from datetime import datetime
from pathlib import Path
from typing import Optional

from csync.utils.paths import resolve_config_dir

ROOT_LOGGER = "csync"

CONSOLE_FORMAT = "%(levelname)s: %(message)s"
VERBOSE_FORMAT = (
    "%(asctime)s - %(name)s - %(levelname)s - [%(filename)s:%(lineno)d] - %(message)s"
)
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

# Daily files are named csync_YYYYMMDD.log
LOG_FILE_PREFIX = "csync_"
LOG_FILE_SUFFIX = ".log"

ENV_LOG_LEVEL = "CSYNC_LOG_LEVEL"
ENV_DEBUG = "CSYNC_DEBUG"
ENV_LOG_FILE = "CSYNC_LOG_FILE"

LEVELS = {
    "DEBUG": logging.DEBUG,
    "INFO": logging.INFO,
    "WARNING": logging.WARNING,
    "WARN": logging.WARNING,
    "ERROR": logging.ERROR,
    "CRITICAL": logging.CRITICAL,
}

_TRUTHY = ("1", "true", "yes")
_FILE_LOGGING_OFF = ("none", "disabled", "")


class ColoredFormatter(logging.Formatter):
    """
    Formatter painting each record in the colour of its level.

    Colours are dropped when stderr is not a terminal, when NO_COLOR is
    set (https://no-color.org/) or when TERM is "dumb".
    """

    COLORS = {
        "DEBUG": "\033[36m",
        "INFO": "\033[32m",
        "WARNING": "\033[33m",
        "ERROR": "\033[31m",
        "CRITICAL": "\033[35m",
    }
    RESET = "\033[0m"

    def __init__(
        self,
        fmt: Optional[str] = None,
        datefmt: Optional[str] = None,
        use_colors: bool = True,
    ):
        super().__init__(fmt, datefmt)
        self.use_colors = use_colors and self._supports_color()

    def _supports_color(self) -> bool:
        isatty = getattr(sys.stderr, "isatty", None)
        if isatty is None or not isatty():
            return False
        if os.environ.get("NO_COLOR"):
            return False
        return os.environ.get("TERM", "") != "dumb"

    def format(self, record: logging.LogRecord) -> str:
        color = self.COLORS.get(record.levelname) if self.use_colors else None
        if color is None:
            return super().format(record)

        # The record is shared with the file handler, paint a copy
        painted = logging.makeLogRecord(record.__dict__)
        painted.levelname = f"{color}{record.levelname}{self.RESET}"
        painted.msg = f"{color}{record.msg}{self.RESET}"
        return super().format(painted)


def get_log_level_from_env() -> int:
    """
    Logging level requested through the environment.

    CSYNC_DEBUG wins over CSYNC_LOG_LEVEL; unknown levels fall back to INFO.
    """
    if os.environ.get(ENV_DEBUG, "").lower() in _TRUTHY:
        return logging.DEBUG
    return LEVELS.get(os.environ.get(ENV_LOG_LEVEL, "INFO").upper(), logging.INFO)


def default_log_dir() -> Path:
    return resolve_config_dir() / "logs"


def get_log_file_path(log_dir: Optional[Path] = None) -> Optional[Path]:
    """
    Log file of the current run.

    Returns:
        CSYNC_LOG_FILE when set, otherwise today's file in log_dir; None
        if file logging is disabled through the environment
    """
    override = os.environ.get(ENV_LOG_FILE)
    if override is not None:
        return None if override.lower() in _FILE_LOGGING_OFF else Path(override)

    day = datetime.now().strftime("%Y%m%d")
    return (log_dir or default_log_dir()) / f"{LOG_FILE_PREFIX}{day}{LOG_FILE_SUFFIX}"


def _console_handler(level: int, verbose: bool, use_colors: bool) -> logging.Handler:
    fmt = VERBOSE_FORMAT if verbose else CONSOLE_FORMAT
    handler = logging.StreamHandler(sys.stderr)
    handler.setLevel(level)
    if use_colors:
        handler.setFormatter(ColoredFormatter(fmt, DATE_FORMAT))
    else:
        handler.setFormatter(logging.Formatter(fmt, DATE_FORMAT))
    return handler


def _file_handler(path: Path) -> logging.Handler:
    path.parent.mkdir(parents=True, exist_ok=True)
    handler = logging.FileHandler(path, encoding="utf-8")
    # The file always gets the full detail
    handler.setLevel(logging.DEBUG)
    handler.setFormatter(logging.Formatter(VERBOSE_FORMAT, DATE_FORMAT))
    return handler


def setup_logging(
    level: Optional[int] = None,
    verbose: bool = False,
    log_dir: Optional[Path] = None,
    log_file: Optional[Path] = None,
    enable_file_logging: bool = True,
    use_colors: bool = True,
) -> logging.Logger:
    """
    Configure the csync package logger.

    Calling it again replaces the handlers of the previous call, which is
    how ``sync --debug`` and ``sync --log-file`` re-configure logging
    after the CLI group has set it up.

    Args:
        level: Console level, defaults to the environment's choice
        verbose: Log at DEBUG with file names and line numbers
        log_dir: Directory for daily log files
        log_file: Explicit log file, overrides log_dir
        enable_file_logging: Set to False for console-only logging
        use_colors: Colour console output when the terminal allows it

    Returns:
        The csync package logger
    """
    if verbose:
        level = logging.DEBUG
    elif level is None:
        level = get_log_level_from_env()

    logger = logging.getLogger(ROOT_LOGGER)
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()
    logger.setLevel(level)
    logger.propagate = False

    logger.addHandler(_console_handler(level, verbose, use_colors))

    if not enable_file_logging:
        return logger

    path = log_file or get_log_file_path(log_dir)
    if path is None:
        return logger

    try:
        logger.addHandler(_file_handler(path))
    except OSError as e:
        logger.warning(f"Could not create log file {path}: {e}")
    else:
        logger.debug(f"Log file: {path}")

    return logger


def cleanup_old_logs(log_dir: Optional[Path] = None, keep_count: int = 10) -> int:
    """
    Delete all but the ``keep_count`` most recent daily log files.

    Returns:
        Number of files deleted; 0 when keep_count is 0 or less
    """
    directory = log_dir or default_log_dir()
    if keep_count <= 0 or not directory.exists():
        return 0

    pattern = f"{LOG_FILE_PREFIX}*{LOG_FILE_SUFFIX}"
    newest_first = sorted(
        directory.glob(pattern), key=lambda p: p.stat().st_mtime, reverse=True
    )

    deleted = 0
    for path in newest_first[keep_count:]:
        try:
            path.unlink()
        except OSError as e:
            logging.getLogger(__name__).debug(f"Could not delete {path}: {e}")
        else:
            deleted += 1
    return deleted


def get_logger(name: str) -> logging.Logger:
    """Logger for ``name`` inside the csync hierarchy."""
    if not name.startswith(ROOT_LOGGER):
        name = f"{ROOT_LOGGER}.{name}"
    return logging.getLogger(name)


def set_log_level(level: int) -> None:
    """Change the console level at runtime; file handlers stay at DEBUG."""
    logger = logging.getLogger(ROOT_LOGGER)
    logger.setLevel(level)
    for handler in logger.handlers:
        if not isinstance(handler, logging.FileHandler):
            handler.setLevel(level)
