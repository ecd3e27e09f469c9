"""Logging setup built on structlog.

Every line starts with the wall-clock time and a 3-letter level:
    12:30:45 INF model already cached component=fetcher path=/home/me/.konnyaku/models/lfm2.gguf
    12:30:46 DBG prompt tokenized component=session n_tokens=12
    12:30:47 WRN download method failed component=fetcher method=direct error="404 Client Error"

Output goes to stderr by default so the CLI can keep stdout for translations.
"""

import logging
import sys
from datetime import datetime
from pathlib import Path
from typing import TextIO

import structlog

LEVEL_ABBREVIATIONS = {
    "debug": "DBG",
    "info": "INF",
    "warning": "WRN",
    "error": "ERR",
    "critical": "CRT",
}


def _add_prefix(logger, method_name, event_dict):
    """Replace the level with a 'HH:MM:SS LVL' prefix."""
    name = event_dict.pop("level", method_name)
    abbreviation = LEVEL_ABBREVIATIONS.get(name, name.upper()[:3])
    event_dict["_prefix"] = f"{datetime.now():%H:%M:%S} {abbreviation}"
    return event_dict


def _flatten_exception(logger, method_name, event_dict):
    """Replace exc_info with a one-line 'ExcType: message' field."""
    exc_info = event_dict.pop("exc_info", None)
    if not exc_info:
        return event_dict
    if exc_info is True:
        exc_info = sys.exc_info()
    exc = exc_info if isinstance(exc_info, BaseException) else exc_info[1]
    if exc is not None:
        event_dict["exception"] = f"{type(exc).__name__}: {exc}"
    return event_dict


def _format_value(value) -> str:
    if isinstance(value, float):
        return f"{value:.1f}"
    text = str(value) if isinstance(value, Path) else value
    if isinstance(text, str) and (not text or " " in text):
        return f'"{text}"'
    return str(text)


def _render(logger, method_name, event_dict) -> str:
    parts = [event_dict.pop("_prefix", ""), str(event_dict.pop("event", ""))]
    parts.extend(
        f"{key}={_format_value(value)}"
        for key, value in event_dict.items()
        if not key.startswith("_")
    )
    return " ".join(parts)


def _threshold(level: str) -> int:
    return getattr(logging, level.upper(), logging.INFO)


def configure(level: str = "INFO", debug: bool = False, stream: TextIO | None = None) -> None:
    """Set up structlog for console output.

    Args:
        level: Minimum level name (DEBUG, INFO, WARNING, ERROR).
        debug: Shortcut for level DEBUG.
        stream: Output stream, stderr when omitted.
    """
    if debug:
        level = "DEBUG"

    structlog.configure(
        processors=[
            structlog.stdlib.add_log_level,
            _add_prefix,
            _flatten_exception,
            _render,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(_threshold(level)),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(file=stream or sys.stderr),
        cache_logger_on_first_use=False,
    )


def get_logger(component: str | None = None):
    """Get a logger, bound to a component name when one is given.

    The logger stays lazy, so module-level loggers pick up a later configure().
    """
    if component:
        return structlog.get_logger(component=component)
    return structlog.get_logger()
