from __future__ import annotations

import logging
import os
import sys
from typing import TextIO

# Level name -> ANSI SGR code
_LEVEL_SGR = {
    "TRACE": "32",
    "DEBUG": "36",
    "INFO": "37",
    "WARNING": "33",
    "ERROR": "31",
    "CRITICAL": "41",
}
_HANDLER_NAME = "hrp-server-console"

TRACE = 5
logging.addLevelName(TRACE, "TRACE")

if not hasattr(logging.Logger, "trace"):

    def _trace(self, msg, *args, **kwargs):
        if self.isEnabledFor(TRACE):
            self._log(TRACE, msg, args, **kwargs)

    logging.Logger.trace = _trace  # type: ignore[attr-defined]

# Per-tick control loop tracing stays off unless explicitly enabled
TRACE_ENABLED = str(os.getenv("HRP_TRACE", "0")).lower() in ("1", "true", "yes", "on")


def enable_trace() -> None:
    """Turn on per-tick trace output (same effect as HRP_TRACE=1)."""
    global TRACE_ENABLED
    TRACE_ENABLED = True


def _sgr(code: str, text: str) -> str:
    return f"\033[{code}m{text}\033[0m"


class AnsiColorFormatter(logging.Formatter):
    """``HH:MM:SS LEVEL logger: message`` with a dimmed clock and a colored level.

    Colors are only emitted when ``stream`` is a terminal.
    """

    def __init__(self, colored: bool = True, stream: TextIO | None = None) -> None:
        super().__init__(datefmt="%H:%M:%S")
        out = stream if stream is not None else sys.stderr
        self.colored = colored and hasattr(out, "isatty") and out.isatty()

    def format(self, record: logging.LogRecord) -> str:
        clock = self.formatTime(record, self.datefmt)
        level = record.levelname
        message = record.getMessage()
        if record.exc_info and not record.exc_text:
            record.exc_text = self.formatException(record.exc_info)
        if record.exc_text:
            message = f"{message}\n{record.exc_text}"
        if self.colored:
            clock = _sgr("2", clock)
            if level in _LEVEL_SGR:
                level = _sgr(_LEVEL_SGR[level], level)
        return f"{clock} {level} {record.name}: {message}"


def _console_handler(logger: logging.Logger) -> logging.Handler | None:
    for handler in logger.handlers:
        if handler.get_name() == _HANDLER_NAME:
            return handler
    return None


def configure_logging(
    level: int = logging.INFO, use_color: bool = True, stream: TextIO | None = None
) -> logging.Logger:
    """
    Install the server's console handler on the root logger.
    Repeated calls reuse that handler and only adjust the level.
    """
    root = logging.getLogger()
    root.setLevel(level)

    handler = _console_handler(root)
    if handler is None:
        out = stream if stream is not None else sys.stderr
        handler = logging.StreamHandler(stream=out)
        handler.set_name(_HANDLER_NAME)
        handler.setFormatter(AnsiColorFormatter(colored=use_color, stream=out))
        root.addHandler(handler)
    handler.setLevel(level)
    return root
