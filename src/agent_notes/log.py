"""Stderr logging shared by the store, tracker, CLI, and MCP server.

Output goes to stderr so that stdout stays clean for CLI results and the MCP
stdio transport. Debug output is only printed when the logger is verbose.
"""

import sys
import traceback
from typing import Any, TextIO

_COLORS = {
    "debug": "36",  # Cyan
    "info": "37",  # White
    "warning": "33",  # Yellow
    "error": "31",  # Red
    "trace": "90",  # Gray
}


class Logger:
    """Small leveled logger writing to a text stream.

    Attributes:
        verbose: If True, DEBUG messages are printed
        use_colors: If True, use ANSI color codes
    """

    def __init__(
        self, verbose: bool = False, use_colors: bool = True, stream: TextIO | None = None
    ) -> None:
        self.verbose = verbose
        self._stream = stream
        self.use_colors = use_colors and self.stream.isatty()

    @property
    def stream(self) -> TextIO:
        # Resolved on use so redirected stderr (tests, CliRunner) is honoured
        return self._stream if self._stream is not None else sys.stderr

    def _emit(self, level: str, text: str, **details: Any) -> None:
        if details:
            text += " (" + " ".join(f"{k}={v!r}" for k, v in details.items()) + ")"
        if self.use_colors:
            text = f"\033[{_COLORS[level]}m{text}\033[0m"
        print(text, file=self.stream, flush=True)

    def debug(self, message: str, **details: Any) -> None:
        """Log debug message (only if verbose enabled)."""
        if self.verbose:
            self._emit("debug", f"DEBUG: {message}", **details)

    def info(self, message: str, **details: Any) -> None:
        self._emit("info", message, **details)

    def warning(self, message: str, **details: Any) -> None:
        self._emit("warning", f"Warning: {message}", **details)

    def error(self, message: str, suggestion: str | None = None) -> None:
        """Log error message with optional suggestion.

        Args:
            message: Error message to log
            suggestion: Optional hint for fixing the error
        """
        self._emit("error", f"Error: {message}")
        if suggestion:
            self._emit("warning", f"  -> {suggestion}")

    def exception(self, message: str, exc: BaseException) -> None:
        """Log exception, with traceback in verbose mode."""
        self.error(f"{message}: {exc}")
        if self.verbose:
            tb = "".join(traceback.format_exception(type(exc), exc, exc.__traceback__))
            self._emit("trace", tb.rstrip())


_logger: Logger | None = None


def init_logger(verbose: bool = False, use_colors: bool = True) -> Logger:
    """Initialize the process-wide logger.

    Args:
        verbose: Enable debug output
        use_colors: Enable ANSI color codes

    Returns:
        Logger instance
    """
    global _logger
    _logger = Logger(verbose=verbose, use_colors=use_colors)
    return _logger


def get_logger() -> Logger:
    """Return the process-wide logger, creating a quiet one on first use."""
    global _logger
    if _logger is None:
        _logger = Logger()
    return _logger
