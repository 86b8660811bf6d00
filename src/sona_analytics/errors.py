"""Fault types raised inside the pipeline."""

from __future__ import annotations


class AnalyticsError(Exception):
    """Base exception for analytics pipeline errors."""
    pass


class StorageFault(AnalyticsError):
    """Local persistence failed (disk full, corruption, closed store)."""
    pass


class ConfigurationFault(AnalyticsError):
    """Collector configuration is missing or invalid."""
    pass
