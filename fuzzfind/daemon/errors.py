"""Error types and error tracking for the finder daemon."""

from collections import defaultdict, deque
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Deque, Dict, List, Optional

from loguru import logger


class FinderError(Exception):
    """Base error for the finder engine."""


class OptionsError(FinderError):
    """Malformed or missing ``run`` options."""


class SourceError(FinderError):
    """A candidate source could not be started."""


class ChannelError(FinderError):
    """A request over the editor event channel failed."""


class ErrorSeverity(Enum):
    """Error severity levels."""
    LOW = 1
    MEDIUM = 2
    HIGH = 3


@dataclass
class ErrorEvent:
    """Represents an error event."""
    timestamp: datetime
    component: str
    error_type: str
    message: str
    severity: ErrorSeverity
    context: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict:
        return {
            'timestamp': self.timestamp.isoformat(),
            'component': self.component,
            'error_type': self.error_type,
            'message': self.message,
            'severity': self.severity.value,
            'context': self.context
        }


class ErrorTracker:
    """
    Keeps the most recent errors per component.

    Skipped directory entries, failed spawns and failed editor requests are
    recorded here instead of being raised to the controller.
    """

    def __init__(self, max_events: int = 100):
        self._events: Deque[ErrorEvent] = deque(maxlen=max_events)
        self._counts: Dict[str, int] = defaultdict(int)

    def record(
        self,
        component: str,
        error: BaseException,
        severity: ErrorSeverity = ErrorSeverity.LOW,
        **context: Any
    ) -> ErrorEvent:
        event = ErrorEvent(
            timestamp=datetime.now(),
            component=component,
            error_type=type(error).__name__,
            message=str(error),
            severity=severity,
            context=context
        )
        self._events.append(event)
        self._counts[component] += 1

        if severity == ErrorSeverity.HIGH:
            logger.error(f"{component}: {event.error_type}: {event.message}")
        else:
            logger.debug(f"{component}: {event.error_type}: {event.message}")
        return event

    def recent(self, component: Optional[str] = None) -> List[ErrorEvent]:
        return [e for e in self._events if component is None or e.component == component]

    def get_stats(self) -> Dict[str, int]:
        return dict(self._counts)

    def clear(self) -> None:
        self._events.clear()
        self._counts.clear()
