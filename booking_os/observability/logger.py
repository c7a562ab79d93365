"""Event logger: records domain events and fans them out to subscribers."""

import json
import logging
from pathlib import Path
from typing import Any, Callable, Optional

from booking_os.observability.events import DomainEvent, EventType

logger = logging.getLogger(__name__)

_CHANGE_REQUEST_EVENTS = {EventType.CHANGE_REQUEST_SUBMITTED, EventType.CHANGE_REQUEST_DECIDED}


class EventLogger:
    """Central sink for scheduling domain events.

    Writes events to JSON Lines files and forwards each one to registered
    callbacks, which is how push/SMS/Telegram adapters subscribe. The engine
    never sends messages itself.
    """

    _instance: Optional["EventLogger"] = None

    def __init__(
        self,
        log_dir: Optional[Path] = None,
        enabled: bool = True,
    ):
        """Initialize event logger.

        Args:
            log_dir: Directory for log files (default: data/events)
            enabled: Whether events are written and dispatched
        """
        self.enabled = enabled

        if log_dir is None:
            log_dir = Path("data/events")
        self.log_dir = log_dir
        self.log_dir.mkdir(parents=True, exist_ok=True)

        self._log_files: dict[str, Path] = {
            "appointments": self.log_dir / "appointments.jsonl",
            "change_requests": self.log_dir / "change_requests.jsonl",
        }

        self._callbacks: list[Callable[[DomainEvent], None]] = []

    @classmethod
    def get_instance(cls) -> "EventLogger":
        """Get or create singleton instance."""
        if cls._instance is None:
            from booking_os.config import get_settings

            settings = get_settings()
            cls._instance = cls(log_dir=settings.event_log_dir, enabled=settings.events_enabled)
        return cls._instance

    def subscribe(self, callback: Callable[[DomainEvent], None]) -> None:
        """Register a callback invoked for every published event."""
        self._callbacks.append(callback)

    @staticmethod
    def _log_type(event: DomainEvent) -> str:
        return "change_requests" if event.event_type in _CHANGE_REQUEST_EVENTS else "appointments"

    def publish(self, event: DomainEvent) -> None:
        """Write *event* and hand it to subscribers.

        Delivery problems are logged, never raised: the write that produced
        the event has already committed.
        """
        if not self.enabled:
            return

        try:
            log_file = self._log_files[self._log_type(event)]
            with open(log_file, "a") as f:
                f.write(event.model_dump_json() + "\n")
        except OSError as e:
            logger.warning(f"Failed to write domain event: {e}")

        for callback in self._callbacks:
            try:
                callback(event)
            except Exception as e:
                logger.warning(f"Event subscriber failed for {event.event_type.value}: {e}")

    def get_recent_events(
        self,
        log_type: str,
        limit: int = 100,
    ) -> list[dict[str, Any]]:
        """Read recent events from a log file."""
        log_file = self._log_files.get(log_type)
        if not log_file or not log_file.exists():
            return []

        events = []
        with open(log_file) as f:
            for line in f:
                try:
                    events.append(json.loads(line))
                except json.JSONDecodeError:
                    continue

        return events[-limit:]


def get_event_logger() -> EventLogger:
    """Get the global event logger instance."""
    return EventLogger.get_instance()
