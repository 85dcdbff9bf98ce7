"""Logging helpers.

llama-cpp-python forwards llama.cpp's native log lines to the standard
``"llama-cpp-python"`` logger; these helpers set that logger together with
this package's own.
"""

from __future__ import annotations

import logging

PACKAGE_LOGGER = "llama_session"
NATIVE_LOGGER = "llama-cpp-python"

_LEVEL_MAP = {
    "none": logging.CRITICAL + 1,
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warn": logging.WARNING,
    "warning": logging.WARNING,
    "error": logging.ERROR,
}


def set_log_level(level: str | int) -> None:
    """Set the minimum level for package and llama.cpp logging."""
    if isinstance(level, str):
        key = level.lower()
        if key not in _LEVEL_MAP:
            raise ValueError(f"Unknown log level '{level}'")
        level_int = _LEVEL_MAP[key]
    else:
        level_int = int(level)
    logging.getLogger(PACKAGE_LOGGER).setLevel(level_int)
    logging.getLogger(NATIVE_LOGGER).setLevel(level_int)


def disable_logging() -> None:
    """Silence llama.cpp's native logging completely."""
    logging.getLogger(NATIVE_LOGGER).setLevel(_LEVEL_MAP["none"])


def reset_logging() -> None:
    """Restore default (inherited) levels."""
    logging.getLogger(PACKAGE_LOGGER).setLevel(logging.NOTSET)
    logging.getLogger(NATIVE_LOGGER).setLevel(logging.NOTSET)
