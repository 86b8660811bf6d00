"""Console delivery for development/debugging."""

from __future__ import annotations

import json
import sys
from dataclasses import dataclass

from ..batcher import Batch
from .base import DeliveryClient, DeliveryOutcome


@dataclass
class ConsoleDelivery(DeliveryClient):
    """
    Delivery that writes events to console (stdout/stderr).

    Every batch counts as accepted, so the local queue drains as it would
    against a healthy collector.
    """
    # Output destination
    stream: str = "stdout"  # stdout | stderr

    # Output format
    format: str = "json"  # json | compact | pretty

    # Prefix for each line
    prefix: str = "[ANALYTICS] "

    def send(self, batch: Batch) -> DeliveryOutcome:
        out = sys.stdout if self.stream == "stdout" else sys.stderr

        for record in batch.records:
            line = self._format_event(record.payload)
            print(f"{self.prefix}{line}", file=out)

        return DeliveryOutcome.success()

    def _format_event(self, payload: dict) -> str:
        if self.format == "json":
            return json.dumps(payload, default=str)
        elif self.format == "compact":
            return (
                f"{payload.get('timestamp')} "
                f"session={payload.get('session_id')} "
                f"{payload.get('event_type')} "
                f"{json.dumps(payload.get('properties', {}), default=str)}"
            )
        else:  # pretty
            return json.dumps(payload, indent=2, default=str)
