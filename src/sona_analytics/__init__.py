"""
Sona Analytics - client-side event pipeline

An embeddable analytics library providing:
- Durable local event log that survives process death
- Session stamping based on idle-time gaps
- Batched, at-least-once delivery to a remote collector
- Non-blocking tracking API that never raises into the host application
"""

__version__ = "0.1.0"

from .client import AnalyticsClient
from .config import AnalyticsConfig
from .revenue import Revenue

__all__ = [
    "AnalyticsClient",
    "AnalyticsConfig",
    "Revenue",
]
