"""Structured observations emitted by the evaluator and the pipelines."""

import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, Optional


class ObservabilitySink(ABC):
    """Receives named events with structured fields."""

    @abstractmethod
    def record(self, event: str, fields: Dict[str, Any]) -> None:
        """Record one event."""


class LoggingSink(ObservabilitySink):
    """Sink that writes each event as one log line.

    Fields are rendered as ``key=value`` pairs in insertion order so the
    lines stay grep-friendly.
    """

    def __init__(self, logger: Optional[logging.Logger] = None, level: int = logging.INFO):
        self.logger = logger or logging.getLogger('btagger.events')
        self.level = level

    def record(self, event: str, fields: Dict[str, Any]) -> None:
        if not self.logger.isEnabledFor(self.level):
            return
        rendered = " ".join(f"{key}={_render(value)}" for key, value in fields.items())
        self.logger.log(self.level, f"{event} {rendered}".rstrip())


class NullSink(ObservabilitySink):
    """Sink that drops every event."""

    def record(self, event: str, fields: Dict[str, Any]) -> None:
        return None


def _render(value: Any) -> str:
    if hasattr(value, 'isoformat'):
        return value.isoformat()
    text = str(value)
    if " " in text:
        return repr(text)
    return text
