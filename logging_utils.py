"""Tagged logging helper shared by the capture pipeline.

Every message is rendered as ``[LEVEL][Tag] message | key=value ...``.
LogThrottle keeps per-frame failures from flooding the log at the audio
frame rate.
"""
from __future__ import annotations

import logging
import time
from typing import Any, Callable, Optional

_logger = logging.getLogger("pulsebeats")
if not _logger.handlers:
    handler = logging.StreamHandler()
    formatter = logging.Formatter("[%(levelname)s][%(tag)s] %(message)s")
    handler.setFormatter(formatter)
    _logger.addHandler(handler)
    _logger.setLevel(logging.INFO)


class _TagAdapter(logging.LoggerAdapter):
    def process(self, msg: Any, kwargs: dict[str, Any]):
        tag = kwargs.pop("tag", "PulseBeats")
        kwargs.setdefault("extra", {})["tag"] = tag
        return msg, kwargs


_logger_adapter = _TagAdapter(_logger, {})


def log_event(level: str, tag: str, message: str, **fields: Any) -> None:
    """Log a message with level+tag, appending key=value fields when provided."""
    if fields:
        extras = " ".join(f"{k}={v}" for k, v in fields.items())
        message = f"{message} | {extras}"
    level_name = level.upper()
    level_val = getattr(logging, level_name, logging.INFO)
    _logger_adapter.log(level_val, message, tag=tag)


def set_log_level(level: str) -> None:
    """Set global log level (DEBUG/INFO/WARNING/ERROR)."""
    level_name = (level or "INFO").upper()
    level_val = getattr(logging, level_name, logging.INFO)
    _logger.setLevel(level_val)


def get_log_level() -> str:
    """Return current global log level name."""
    return logging.getLevelName(_logger.level)


class LogThrottle:
    """Rate-limits one recurring message, e.g. a per-frame read error.

    The first call always logs. Calls within ``interval_s`` of the last
    emitted one are counted instead, and the count rides along on the next
    emitted message as ``suppressed=N``.
    """

    def __init__(self, interval_s: float = 1.0, clock: Callable[[], float] = time.monotonic):
        self.interval_s = max(0.0, float(interval_s))
        self._clock = clock
        self._last_emit: Optional[float] = None
        self.suppressed = 0

    def log(self, level: str, tag: str, message: str, **fields: Any) -> bool:
        now = self._clock()
        if self._last_emit is not None and (now - self._last_emit) < self.interval_s:
            self.suppressed += 1
            return False
        if self.suppressed:
            fields["suppressed"] = self.suppressed
        log_event(level, tag, message, **fields)
        self._last_emit = now
        self.suppressed = 0
        return True
