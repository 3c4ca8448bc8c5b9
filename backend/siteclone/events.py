"""
Structured diagnostic events shared by the pipeline components.

Every component receives an ``EventLog`` and reports what it did through
``emit``. Events are kept in memory (so callers and tests can inspect them),
forwarded to the standard ``logging`` module and, optionally, to a callback.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional

logger = logging.getLogger(__name__)


@dataclass
class Event:
    name: str
    level: int = logging.INFO
    fields: Dict[str, Any] = field(default_factory=dict)


class EventLog:
    def __init__(
        self,
        log: Optional[logging.Logger] = None,
        callback: Optional[Callable[[Event], None]] = None,
    ):
        self.events: List[Event] = []
        self._logger = log or logger
        self.callback = callback

    def emit(self, name: str, level: int = logging.INFO, /, **fields: Any) -> Event:
        event = Event(name=name, level=level, fields=fields)
        self.events.append(event)
        if fields:
            details = ", ".join(f"{key}={value!r}" for key, value in fields.items())
            self._logger.log(level, "%s: %s", name, details)
        else:
            self._logger.log(level, "%s", name)
        if self.callback is not None:
            try:
                self.callback(event)
            except Exception:
                self._logger.exception("Event callback failed for %s", name)
        return event

    def names(self) -> List[str]:
        return [event.name for event in self.events]

    def find(self, name: str) -> List[Event]:
        return [event for event in self.events if event.name == name]
