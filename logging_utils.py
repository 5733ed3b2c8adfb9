"""Console logging for bailabeat.

Every module logs through ``log_event`` so lines read
``[LEVEL][Tag] message | key=value ...``. Float fields are rounded so
per-beat debug lines (energy, tempo, intervals) stay short.
"""
from __future__ import annotations

import logging
from typing import Any

_LEVELS = ("DEBUG", "INFO", "WARNING", "WARN", "ERROR", "CRITICAL")

_logger = logging.getLogger("bailabeat")
if not _logger.handlers:
    _handler = logging.StreamHandler()
    _handler.setFormatter(logging.Formatter("[%(levelname)s][%(tag)s] %(message)s"))
    _logger.addHandler(_handler)
    _logger.setLevel(logging.INFO)
    _logger.propagate = False


class _TagAdapter(logging.LoggerAdapter):
    def process(self, msg: Any, kwargs: dict[str, Any]):
        tag = kwargs.pop("tag", "App")
        kwargs.setdefault("extra", {})["tag"] = tag
        return msg, kwargs


_adapter = _TagAdapter(_logger, {})


def _level_value(level: str | None) -> int:
    name = (level or "INFO").upper()
    return getattr(logging, name, logging.INFO) if name in _LEVELS else logging.INFO


def format_field(value: Any) -> str:
    if isinstance(value, bool):
        return str(value)
    if isinstance(value, float):
        return f"{value:.3f}".rstrip("0").rstrip(".")
    if isinstance(value, (list, tuple)):
        return "[" + ",".join(format_field(v) for v in value) + "]"
    return str(value)


def log_event(level: str, tag: str, message: str, **fields: Any) -> None:
    """Log ``message`` under ``tag``; keyword fields are appended as key=value."""
    level_val = _level_value(level)
    if not _logger.isEnabledFor(level_val):
        return
    if fields:
        extras = " ".join(f"{k}={format_field(v)}" for k, v in fields.items())
        message = f"{message} | {extras}"
    _adapter.log(level_val, message, tag=tag)


def set_log_level(level: str | None) -> bool:
    """Set the global level. Unknown names fall back to INFO and return False."""
    name = (level or "INFO").upper()
    known = name in _LEVELS
    _logger.setLevel(_level_value(name))
    if not known:
        log_event("WARN", "Log", "Unknown log level, using INFO", requested=level)
    return known


def get_log_level() -> str:
    return logging.getLevelName(_logger.level)
