"""
Royalty Ledger - Event Log

Every committed mutation emits one or more LedgerEvents. The EventLog
stamps each event with a process-wide monotonic sequence number, keeps the
history for audit queries, and delivers events to subscribed sinks.

Delivery is at-least-once: an event a sink fails to accept stays queued for
that sink and is offered again by redeliver_pending(), so sinks must
deduplicate on the sequence number.
"""

import logging
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

logger = logging.getLogger(__name__)


class LedgerEventType(Enum):
    """Types of ledger events."""

    PAYEES_REGISTERED = "payees_registered"
    PAYEE_REMOVED = "payee_removed"
    DEPOSIT_ACCUMULATED = "deposit_accumulated"
    DISTRIBUTION_COMPLETED = "distribution_completed"
    ADJUSTMENT_APPLIED = "adjustment_applied"
    USAGE_RECORDED = "usage_recorded"
    RATE_UPDATED = "rate_updated"
    AUTO_FLUSH_THRESHOLD_UPDATED = "auto_flush_threshold_updated"
    GLOBAL_MINIMUM_UPDATED = "global_minimum_updated"


@dataclass
class LedgerEvent:
    """A committed ledger change."""

    event_type: LedgerEventType
    track_id: str | None
    data: dict[str, Any] = field(default_factory=dict)
    sequence: int = 0  # Assigned by EventLog.publish
    timestamp: str = field(default_factory=lambda: datetime.utcnow().isoformat())

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "sequence": self.sequence,
            "event_type": self.event_type.value,
            "track_id": self.track_id,
            "timestamp": self.timestamp,
            "data": self.data,
        }


class EventSink(ABC):
    """Consumer of ledger events."""

    @abstractmethod
    def deliver(self, event: LedgerEvent) -> None:
        """Accept one event; raise to have it redelivered later."""
        pass


class LoggingEventSink(EventSink):
    """Writes every event to a logger at INFO."""

    def __init__(self, logger_name: str = "royalty.events"):
        self._logger = logging.getLogger(logger_name)

    def deliver(self, event: LedgerEvent) -> None:
        self._logger.info(
            f"{event.event_type.value} #{event.sequence}",
            extra={"ledger_event": event.to_dict()},
        )


class EventLog:
    """Sequenced, thread-safe event history with subscriber delivery."""

    def __init__(self, max_history: int = 100_000):
        self._lock = threading.RLock()
        self._sequence = 0
        self._history: list[LedgerEvent] = []
        self._max_history = max_history
        self._sinks: list[EventSink] = []
        self._undelivered: dict[int, list[LedgerEvent]] = {}  # id(sink) -> queue

    @property
    def last_sequence(self) -> int:
        with self._lock:
            return self._sequence

    def subscribe(self, sink: EventSink) -> None:
        """Register a sink for events published from now on."""
        with self._lock:
            self._sinks.append(sink)
            self._undelivered.setdefault(id(sink), [])

    def unsubscribe(self, sink: EventSink) -> None:
        with self._lock:
            self._sinks = [s for s in self._sinks if s is not sink]
            self._undelivered.pop(id(sink), None)

    def publish(self, events: list[LedgerEvent]) -> list[LedgerEvent]:
        """Assign sequence numbers, record, and deliver events in order."""
        with self._lock:
            for event in events:
                self._sequence += 1
                event.sequence = self._sequence
                self._history.append(event)
            if len(self._history) > self._max_history:
                self._history = self._history[-self._max_history:]

            for sink in self._sinks:
                self._undelivered[id(sink)].extend(events)
                self._drain(sink)

        return events

    def redeliver_pending(self) -> int:
        """
        Retry queued deliveries for every sink.

        Returns:
            Number of events still undelivered afterwards
        """
        with self._lock:
            for sink in self._sinks:
                self._drain(sink)
            return sum(len(queue) for queue in self._undelivered.values())

    def _drain(self, sink: EventSink) -> None:
        """Deliver queued events to one sink, stopping at the first failure."""
        queue = self._undelivered[id(sink)]
        while queue:
            event = queue[0]
            try:
                sink.deliver(event)
            except Exception:
                logger.exception(
                    f"Delivery of event #{event.sequence} to {type(sink).__name__} failed; "
                    f"{len(queue)} event(s) queued for redelivery"
                )
                return
            queue.pop(0)

    def get_events(
        self,
        since: int = 0,
        track_id: str | None = None,
        event_type: LedgerEventType | None = None,
        limit: int | None = None,
    ) -> list[LedgerEvent]:
        """Events with sequence greater than ``since``, optionally filtered."""
        with self._lock:
            results = [
                e for e in self._history
                if e.sequence > since
                and (track_id is None or e.track_id == track_id)
                and (event_type is None or e.event_type == event_type)
            ]
        if limit is not None:
            results = results[:limit]
        return results
