"""
MarketDAO Logging
=================

Process-wide logging setup. The root logger is configured once, on first
import, with a rich console handler that colours proposal ids, lifecycle
states and vote sinks, and optionally a rotating file handler.

Usage:
    >>> from marketdao.logger import get_logger
    >>> logger = get_logger(__name__)
    >>> logger.info("Proposal #1: PENDING → ELECTION")
"""

import logging
import logging.handlers
import re
import sys
import threading
import time
from pathlib import Path
from typing import List, Optional, Union

from rich.console import Console
from rich.highlighter import RegexHighlighter
from rich.logging import RichHandler
from rich.theme import Theme

from .constants import (
    LOGGER_DEFAULTS,
    LOG_BACKUP_COUNT,
    LOG_CONSOLE_HIGHLIGHTING,
    LOG_DATE_FORMAT,
    LOG_FILE_OUTPUT,
    LOG_FORMAT,
    LOG_LEVEL,
    LOG_MAX_FILE_SIZE,
)


LOG_FILE_PATH = Path.cwd() / "logs" / "marketdao.log"

_THEME = Theme({
    "marketdao.arrow":    "bold yellow",
    "marketdao.proposal": "bold cyan",
    "marketdao.status":   "bold magenta",
    "marketdao.sink":     "cyan",
    "marketdao.amount":   "green",
    "marketdao.error":    "bold red",
    "marketdao.warning":  "bold yellow",
    "marketdao.module":   "magenta",
    "marketdao.time":     "dim cyan",
})


class GovernanceHighlighter(RegexHighlighter):
    """Colours the recurring tokens of governance log lines."""

    base_style = "marketdao."
    highlights = [
        r"(?P<arrow>→)",
        r"(?P<proposal>Proposal #\d+)",
        r"(?P<status>\b(?:PENDING|ELECTION|PASSED|FAILED|EXPIRED|EXECUTED)\b)",
        r"(?P<sink>\bsink:0x[0-9a-f]+)",
        r"(?P<amount>[+-]\d+ support)",
        r"(?P<error>\b(?:ERROR|CRITICAL)\b)",
        r"(?P<warning>\bWARNING\b)",
        r"- (?P<module>marketdao(?:\.\w+)+) -",
        r"^(?P<time>\S+ UTC)",
    ]


class TerminalSafeFormatter(logging.Formatter):
    """
    Drops escape sequences and control characters from the formatted line.

    Proposal descriptions and account names are caller-supplied and end up
    verbatim in log messages.
    """

    _UNSAFE = re.compile(
        r"\x1b\[[0-?]*[ -/]*[@-~]"          # CSI sequences
        r"|\x1b[@-Z\\-_]"                    # two-byte escapes
        r"|[\x00-\x08\x0b-\x1f\x7f]"         # controls except tab / newline
    )

    @classmethod
    def sanitize(cls, text: str) -> str:
        return cls._UNSAFE.sub("", text) if text else text

    def format(self, record: logging.LogRecord) -> str:
        return self.sanitize(super().format(record))


def _checked_formats(log_format: str, date_format: str):
    """Return usable (format, datefmt), falling back to the defaults."""
    probe = logging.LogRecord("marketdao", logging.INFO, "", 0, "probe", (), None)
    try:
        logging.Formatter(log_format, date_format, validate=True).format(probe)
        time.strftime(date_format)
        return log_format, date_format
    except (ValueError, KeyError, TypeError) as e:
        print(f"marketdao.logger: invalid log format ({e}); using defaults", file=sys.stderr)
        return LOGGER_DEFAULTS["LOG_FORMAT"], LOGGER_DEFAULTS["LOG_DATE_FORMAT"]


class LogManager:
    """
    Singleton owning the root logger configuration.

    configure() is a no-op after the first call; set_level() adjusts the
    root logger and every handler it installed.
    """

    _instance: Optional["LogManager"] = None
    _lock = threading.Lock()

    def __new__(cls) -> "LogManager":
        with cls._lock:
            if cls._instance is None:
                instance = super().__new__(cls)
                instance._configured = False
                instance._handlers = []
                cls._instance = instance
        return cls._instance

    @property
    def is_configured(self) -> bool:
        return self._configured

    def configure(
        self,
        log_level: Optional[str] = None,
        log_file: Optional[Path] = None,
        console_output: bool = True,
        file_output: Optional[bool] = None,
    ) -> None:
        """
        Install handlers on the root logger.

        Args:
            log_level:      Level name; defaults to LOG_LEVEL
            log_file:       Rotating log file path; defaults to ./logs/marketdao.log
            console_output: Attach the console handler
            file_output:    Attach the file handler; defaults to LOG_FILE_OUTPUT
        """
        with self._lock:
            if self._configured:
                return

            level = _level_number(log_level or LOG_LEVEL)
            log_format, date_format = _checked_formats(LOG_FORMAT, LOG_DATE_FORMAT)
            formatter = TerminalSafeFormatter(fmt=log_format, datefmt=date_format + " UTC")
            formatter.converter = time.gmtime

            handlers: List[logging.Handler] = []
            if console_output:
                if LOG_CONSOLE_HIGHLIGHTING:
                    handlers.append(RichHandler(
                        console=Console(theme=_THEME, highlight=False),
                        highlighter=GovernanceHighlighter(),
                        show_time=False,
                        show_level=False,
                        show_path=False,
                        markup=False,
                        rich_tracebacks=True,
                    ))
                else:
                    handlers.append(logging.StreamHandler(sys.stdout))

            if (LOG_FILE_OUTPUT if file_output is None else file_output):
                path = log_file or LOG_FILE_PATH
                path.parent.mkdir(parents=True, exist_ok=True)
                handlers.append(logging.handlers.RotatingFileHandler(
                    filename=str(path),
                    maxBytes=LOG_MAX_FILE_SIZE,
                    backupCount=LOG_BACKUP_COUNT,
                    encoding="utf-8",
                ))

            root = logging.getLogger()
            root.handlers.clear()
            root.setLevel(level)
            for handler in handlers:
                handler.setLevel(level)
                handler.setFormatter(formatter)
                root.addHandler(handler)

            self._handlers = handlers
            self._configured = True

    def set_level(self, level: Union[str, int]) -> None:
        number = _level_number(level)
        logging.getLogger().setLevel(number)
        for handler in self._handlers:
            handler.setLevel(number)

    def get_logger(self, name: str) -> logging.Logger:
        if not self._configured:
            self.configure()
        return logging.getLogger(name)


def _level_number(level: Union[str, int]) -> int:
    if isinstance(level, int):
        return level
    return getattr(logging, str(level).upper(), logging.INFO)


_manager = LogManager()


def get_logger(name: str) -> logging.Logger:
    """Logger for *name*, configuring the logging system on first use."""
    return _manager.get_logger(name)


def set_log_level(level: Union[str, int]) -> None:
    _manager.set_level(level)


_manager.configure()
