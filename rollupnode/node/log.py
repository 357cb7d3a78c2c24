"""Logging configuration: level, output format and colouring of the node's log."""

from __future__ import annotations

import json
import logging
import sys
import time
from dataclasses import dataclass, field
from datetime import datetime

from ..rollup import ConfigError

TRACE = 5
logging.addLevelName(TRACE, "TRACE")

LOG_FORMATS = ("json", "json-pretty", "terminal", "text")

_LEVELS = {
    "trace": TRACE,
    "trce": TRACE,
    "debug": logging.DEBUG,
    "dbug": logging.DEBUG,
    "info": logging.INFO,
    "warn": logging.WARNING,
    "error": logging.ERROR,
    "eror": logging.ERROR,
    "crit": logging.CRITICAL,
}

# (upper bound of levelno, short name, aligned name, colour code)
_LEVEL_STYLES = (
    (TRACE, "trce", "TRACE", 34),
    (logging.DEBUG, "dbug", "DEBUG", 36),
    (logging.INFO, "info", "INFO ", 32),
    (logging.WARNING, "warn", "WARN ", 33),
    (logging.ERROR, "eror", "ERROR", 31),
)
_CRIT_STYLE = (logging.CRITICAL, "crit", "CRIT ", 35)


def _style(levelno: int) -> tuple:
    return next((style for style in _LEVEL_STYLES if levelno <= style[0]), _CRIT_STYLE)


def _level_from_string(name: str) -> int:
    try:
        return _LEVELS[name]
    except KeyError:
        raise ConfigError(f"unknown level: {name}") from None


class _JSONFormatter(logging.Formatter):
    def __init__(self, pretty: bool) -> None:
        super().__init__()
        self._indent = 4 if pretty else None

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "t": datetime.fromtimestamp(record.created).astimezone().isoformat(
                timespec="milliseconds"
            ),
            "lvl": _style(record.levelno)[1],
            "msg": record.getMessage(),
        }
        if record.exc_info:
            entry["exc"] = self.formatException(record.exc_info)
        return json.dumps(entry, indent=self._indent, default=str)


class _TerminalFormatter(logging.Formatter):
    def __init__(self, color: bool) -> None:
        super().__init__()
        self._color = color

    def format(self, record: logging.LogRecord) -> str:
        _, _, aligned, code = _style(record.levelno)
        if self._color:
            aligned = f"\x1b[{code}m{aligned}\x1b[0m"
        stamp = time.strftime("%m-%d|%H:%M:%S", time.localtime(record.created))
        text = f"{aligned}[{stamp}.{int(record.msecs):03d}] {record.getMessage()}"
        if record.exc_info:
            text += "\n" + self.formatException(record.exc_info)
        return text


def _formatter(log_format: str, color: bool) -> logging.Formatter:
    if log_format == "json":
        return _JSONFormatter(pretty=False)
    if log_format == "json-pretty":
        return _JSONFormatter(pretty=True)
    if log_format in ("text", "terminal"):
        return _TerminalFormatter(color)
    raise ConfigError(f"unrecognized log format: {log_format}")


def _stdout_is_terminal() -> bool:
    try:
        return sys.stdout.isatty()
    except (AttributeError, ValueError):
        return False


@dataclass
class LogConfig:
    """Log level (trace, debug, info, warn, error, crit; any case), colour and format."""

    level: str = "info"
    color: bool = False
    format: str = "text"

    def check(self) -> None:
        """Raise ConfigError if the format or level is not recognised."""
        if self.format not in LOG_FORMATS:
            raise ConfigError(f"unrecognized log format: {self.format}")
        try:
            _level_from_string(self.level.lower())
        except ConfigError as exc:
            raise ConfigError(f"unrecognized log level: {exc}") from exc

    def new_logger(self) -> logging.Logger:
        """Create a logger writing to standard output according to this configuration."""
        handler = logging.StreamHandler(sys.stdout)
        handler.setFormatter(_formatter(self.format, self.color))
        logger = logging.Logger("rollupnode", _level_from_string(self.level.lower()))
        logger.addHandler(handler)
        return logger


def default_log_config() -> LogConfig:
    """Info level, text format, coloured when standard output is a terminal."""
    return LogConfig(level="info", format="text", color=_stdout_is_terminal())