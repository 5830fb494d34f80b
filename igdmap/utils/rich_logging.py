"""Rich logging integration for igdmap.

Provides a Rich-based console handler and a plain formatter for log files.
"""

from __future__ import annotations

import logging
import re
import sys
from typing import Any

from rich.console import Console
from rich.logging import RichHandler
from rich.markup import escape

_MARKUP_PATTERN = re.compile(r"\[/?[^\]]+\]")


class CorrelationRichHandler(RichHandler):
    """RichHandler with correlation ID support.

    The emitting function name is prefixed to every message in pink, and
    port numbers following ``port`` are highlighted.
    """

    PORT_PATTERN = re.compile(r"\b(port)\s+(\d{1,5})\b", re.IGNORECASE)

    def __init__(
        self,
        *args: Any,
        console: Console | None = None,
        show_colors: bool = True,
        **kwargs: Any,
    ) -> None:
        """Initialize RichHandler with markup enabled.

        Args:
            *args: Positional arguments for RichHandler
            console: Optional Rich Console instance
            show_colors: Whether to colorize function names and ports
            **kwargs: Keyword arguments for RichHandler

        """
        if console is None:
            console = Console(file=sys.stdout, markup=True)
        self.show_colors = show_colors
        kwargs.setdefault("markup", True)
        super().__init__(*args, console=console, **kwargs)

    def _colorize(self, message: str) -> str:
        """Escape user text and add highlight markup."""
        message = escape(message)
        if not self.show_colors:
            return message
        return self.PORT_PATTERN.sub(r"\1 [bright_cyan]\2[/bright_cyan]", message)

    def emit(self, record: logging.LogRecord) -> None:
        """Emit a log record with correlation ID and function name coloring."""
        try:
            if not hasattr(record, "correlation_id"):
                from igdmap.utils.logging_config import correlation_id

                record.correlation_id = correlation_id.get() or "no-correlation-id"

            message = self._colorize(record.getMessage())
            func_name = getattr(record, "funcName", None)
            if self.show_colors and func_name:
                message = f"[#ff69b4]{func_name}[/#ff69b4] {message}"
            record.msg = message
            record.args = ()
            super().emit(record)
        except Exception:
            self.handleError(record)


def strip_rich_markup(text: str) -> str:
    """Strip Rich markup from text for file logging.

    Args:
        text: Text with Rich markup

    Returns:
        Text without Rich markup

    """
    return _MARKUP_PATTERN.sub("", text)


class FileFormatter(logging.Formatter):
    """Formatter for file output that strips Rich markup."""

    def format(self, record: logging.LogRecord) -> str:
        """Format log record, stripping Rich markup for file output."""
        return strip_rich_markup(super().format(record))


def create_rich_handler(
    console: Console | None = None,
    level: int | str = logging.INFO,
    show_path: bool = False,
    rich_tracebacks: bool = True,
    show_colors: bool = True,
) -> logging.Handler:
    """Create a RichHandler with correlation ID support.

    Args:
        console: Optional Rich Console instance
        level: Log level
        show_path: Whether to show file paths in log output
        rich_tracebacks: Whether to use rich tracebacks
        show_colors: Whether to colorize function names and ports

    Returns:
        Configured RichHandler instance

    """
    return CorrelationRichHandler(
        console=console,
        level=level,
        show_path=show_path,
        rich_tracebacks=rich_tracebacks,
        show_colors=show_colors,
    )
