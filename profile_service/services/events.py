"""
Bounded operational event log for the profile service.
"""

from collections import deque
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Callable


class EventType(str, Enum):
    """Profile service event types."""

    PROFILE_UPDATED = "profile_updated"
    PROFILE_DELETED = "profile_deleted"
    CACHE_HIT = "cache_hit"
    CACHE_MISS = "cache_miss"
    API_ERROR = "api_error"


@dataclass(frozen=True)
class ProfileEvent:
    """A single logged event."""

    type: EventType
    user_id: str | None
    timestamp: datetime
    metadata: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": self.type.value,
            "user_id": self.user_id,
            "timestamp": self.timestamp.isoformat(),
            "metadata": dict(self.metadata),
        }


class EventLog:
    """
    Append-only ring of the most recent events.

    Appending past ``capacity`` drops the oldest event.
    """

    def __init__(
        self,
        capacity: int = 1000,
        clock: Callable[[], datetime] = datetime.now,
    ):
        if capacity < 1:
            raise ValueError("capacity must be at least 1")
        self.capacity = capacity
        self._clock = clock
        self._events: deque[ProfileEvent] = deque(maxlen=capacity)
        self._dropped = 0

    def __len__(self) -> int:
        return len(self._events)

    def append(self, event: ProfileEvent) -> None:
        if len(self._events) == self.capacity:
            self._dropped += 1
        self._events.append(event)

    def record(
        self,
        event_type: EventType,
        user_id: str | None,
        **metadata: Any,
    ) -> ProfileEvent:
        """Create, append and return an event stamped with the current time."""
        event = ProfileEvent(
            type=event_type,
            user_id=user_id,
            timestamp=self._clock(),
            metadata=metadata,
        )
        self.append(event)
        return event

    def snapshot(self) -> list[ProfileEvent]:
        """Copy of the events, oldest first."""
        return list(self._events)

    def filter(
        self,
        event_type: EventType | None = None,
        user_id: str | None = None,
    ) -> list[ProfileEvent]:
        return [
            e
            for e in self._events
            if (event_type is None or e.type == event_type)
            and (user_id is None or e.user_id == user_id)
        ]

    @property
    def dropped(self) -> int:
        """Number of events discarded because the ring was full."""
        return self._dropped

    def clear(self) -> None:
        self._events.clear()
