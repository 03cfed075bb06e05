"""Logging setup for the CLI.
Call setup_logging() once before running a command.
"""

from __future__ import annotations

import io
import logging
import sys

_LIBRARY_LEVELS = {
    "httpx": logging.WARNING,
    "httpcore": logging.WARNING,
    "groq": logging.WARNING,
    "langchain_core": logging.INFO,
    "langchain_groq": logging.INFO,
    "pymongo": logging.WARNING,
    "openpyxl": logging.WARNING,
}


def _utf8_stdout():
    buffer = getattr(sys.stdout, "buffer", None)
    if buffer is None:
        return sys.stdout
    # Swedish category names must survive consoles without UTF-8 defaults
    return io.TextIOWrapper(buffer, encoding="utf-8", errors="replace", line_buffering=True)


def setup_logging(level: str = "INFO", show_source: bool | None = None) -> None:
    """
    Attach one stdout handler to the root logger.

    *show_source* adds logger name, function and line to each record; it
    defaults to on at DEBUG level. Repeated calls are ignored.
    """
    root = logging.getLogger()
    if root.handlers:
        return

    numeric_level = logging.getLevelName(level.upper())
    if not isinstance(numeric_level, int):
        numeric_level = logging.INFO
    if show_source is None:
        show_source = numeric_level <= logging.DEBUG

    if show_source:
        fmt = "%(asctime)s │ %(levelname)-8s │ %(name)s │ %(funcName)s:%(lineno)d\n  %(message)s"
    else:
        fmt = "%(asctime)s │ %(levelname)-8s │ %(message)s"

    handler = logging.StreamHandler(_utf8_stdout())
    handler.setLevel(numeric_level)
    handler.setFormatter(logging.Formatter(fmt=fmt, datefmt="%H:%M:%S"))

    root.setLevel(numeric_level)
    root.addHandler(handler)

    for name, library_level in _LIBRARY_LEVELS.items():
        logging.getLogger(name).setLevel(max(library_level, numeric_level))
