"""Event payload types."""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from typing import Any, Mapping

from . import __version__


LIBRARY_NAME = "sona-analytics"


@dataclass(frozen=True, slots=True)
class AnalyticsEvent:
    """
    A single tracked event, stamped and ready to be stored.

    The stored form is to_dict(); the collector receives it unchanged as one
    element of the batch array.
    """
    event_type: str
    timestamp: int  # epoch millis
    session_id: int
    uuid: str

    # Device snapshot taken when the event was tracked
    context: dict[str, Any] = field(default_factory=dict)

    properties: dict[str, Any] = field(default_factory=dict)

    # Present only for revenue events
    revenue: dict[str, Any] | None = None

    @classmethod
    def create(
        cls,
        event_type: str,
        timestamp: int,
        session_id: int,
        context: Mapping[str, Any] | None = None,
        properties: Mapping[str, Any] | None = None,
        revenue: dict[str, Any] | None = None,
    ) -> AnalyticsEvent:
        """Factory method assigning a fresh uuid."""
        return cls(
            event_type=event_type,
            timestamp=timestamp,
            session_id=session_id,
            uuid=str(uuid.uuid4()),
            context=dict(context or {}),
            properties=dict(properties or {}),
            revenue=revenue,
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert to the canonical JSON-ready payload."""
        data = {
            "event_type": self.event_type,
            "timestamp": self.timestamp,
            "session_id": self.session_id,
            "uuid": self.uuid,
            "context": self.context,
            "properties": self.properties,
            "library": {"name": LIBRARY_NAME, "version": __version__},
        }
        if self.revenue is not None:
            data["revenue"] = self.revenue
        return data
