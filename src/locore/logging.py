"""Console logging shared by the review store, CLI, and MCP server.

Everything goes to stderr so stdout stays free for command output (and for
the MCP stdio transport). Debug lines only appear with --verbose or
LOCORE_VERBOSE=1. Styling is done with click, which drops ANSI codes when
stderr is not a terminal.
"""

import traceback
from enum import IntEnum
from typing import Any

import click


class LogLevel(IntEnum):
    DEBUG = 10
    INFO = 20
    WARNING = 30
    ERROR = 40


# level -> (prefix, click color)
_LEVEL_STYLES: dict[LogLevel, tuple[str, str | None]] = {
    LogLevel.DEBUG: ("DEBUG: ", "cyan"),
    LogLevel.INFO: ("", None),
    LogLevel.WARNING: ("Warning: ", "yellow"),
    LogLevel.ERROR: ("Error: ", "red"),
}


class Logger:
    """Stderr logger injected into the store classes.

    Attributes:
        verbose: If True, DEBUG messages are printed
        use_colors: If True, style messages by level
    """

    def __init__(self, verbose: bool = False, use_colors: bool = True) -> None:
        self.verbose = verbose
        self.use_colors = use_colors

    @property
    def level(self) -> LogLevel:
        return LogLevel.DEBUG if self.verbose else LogLevel.INFO

    def _echo(self, text: str, color: str | None) -> None:
        if self.use_colors and color:
            text = click.style(text, fg=color)
        click.echo(text, err=True)

    def _emit(self, level: LogLevel, message: str) -> None:
        if level < self.level:
            return
        prefix, color = _LEVEL_STYLES[level]
        self._echo(f"{prefix}{message}", color)

    def debug(self, message: str, **kwargs: Any) -> None:
        """Log debug message (only if verbose enabled).

        Args:
            message: Message to log
            **kwargs: Context rendered as ``key=value`` pairs after the message
        """
        if kwargs:
            details = " ".join(f"{k}={v!r}" for k, v in kwargs.items())
            message = f"{message} ({details})"
        self._emit(LogLevel.DEBUG, message)

    def info(self, message: str) -> None:
        self._emit(LogLevel.INFO, message)

    def warning(self, message: str) -> None:
        self._emit(LogLevel.WARNING, message)

    def error(self, message: str, suggestion: str | None = None) -> None:
        """Log error message, followed by a hint line when suggestion is given."""
        self._emit(LogLevel.ERROR, message)
        if suggestion:
            self._echo(f"  -> {suggestion}", "yellow")

    def exception(self, message: str, exc: BaseException) -> None:
        """Log an exception as an error; the traceback is added in verbose mode."""
        self.error(f"{message}: {exc}")
        if self.verbose:
            tb = "".join(traceback.format_exception(type(exc), exc, exc.__traceback__))
            self._echo(tb.rstrip("\n"), "bright_black")


# Process-wide logger for entry points (CLI, MCP server)
_logger: Logger | None = None


def init_logger(verbose: bool = False, use_colors: bool = True) -> Logger:
    """Create the entry-point logger, replacing any earlier one."""
    global _logger
    _logger = Logger(verbose=verbose, use_colors=use_colors)
    return _logger


def get_logger() -> Logger:
    """Return the entry-point logger.

    Raises:
        RuntimeError: If init_logger() has not been called
    """
    if _logger is None:
        raise RuntimeError("Logger not initialized. Call init_logger() first.")
    return _logger
