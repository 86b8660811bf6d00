"""Public producer API."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Mapping

from .batcher import Batch
from .config import AnalyticsConfig
from .context import ContextProvider, PlatformContextProvider
from .coordinator import PipelineCoordinator
from .delivery.base import DeliveryClient, DeliveryOutcome
from .delivery.console import ConsoleDelivery
from .delivery.http import HttpDeliveryClient
from .errors import ConfigurationFault, StorageFault
from .events import AnalyticsEvent
from .revenue import REVENUE_EVENT, Revenue
from .session import SessionTracker
from .store.base import EventStore
from .store.memory import InMemoryEventStore
from .store.preferences import InMemoryPreferences, PreferenceStore, SqlitePreferences
from .store.sqlite import SqliteEventStore


logger = logging.getLogger(__name__)


def current_time_millis() -> int:
    return int(time.time() * 1000)


@dataclass
class AnalyticsClient:
    """
    Entry point for the host application.

    Usage:
        client = AnalyticsClient(AnalyticsConfig.from_yaml("analytics.yaml"))
        client.start()
        client.track("level_complete", {"level": 3})
        client.track_revenue(Revenue().set_product_id("coins").set_price(0.99))
        client.flush()          # e.g. when the app goes to background
        client.shutdown()

    track() only stamps the event and writes it to the local store; delivery
    happens on a background worker. None of the public methods raise: every
    failure is logged and the affected event is dropped.

    When the collector URL is missing or invalid the client runs store-only:
    events accumulate locally until a valid configuration is supplied.
    """
    config: AnalyticsConfig = field(default_factory=AnalyticsConfig)
    context_provider: ContextProvider | None = None

    # Injected collaborators (built from config when omitted)
    store: EventStore | None = None
    delivery: DeliveryClient | None = None
    preferences: PreferenceStore | None = None
    clock: Callable[[], int] = current_time_millis

    on_fatal_failure: Callable[[Batch, DeliveryOutcome], None] | None = None

    # Internal state
    _sessions: SessionTracker = field(init=False)
    _coordinator: PipelineCoordinator = field(init=False)
    _started: bool = field(default=False, init=False)
    _stats: dict = field(default_factory=dict, init=False)

    def __post_init__(self):
        self._stats = {
            "tracked": 0,
            "dropped": 0,
            "invalid_revenue": 0,
        }

        if self.context_provider is None:
            self.context_provider = PlatformContextProvider(app_version=self.config.app_version)

        db_path = self.config.storage.db_path
        if self.store is None:
            self.store = self._open_store(db_path)
        if self.preferences is None:
            self.preferences = self._open_preferences(db_path)
        if self.delivery is None:
            self.delivery = self._create_delivery()

        self._sessions = SessionTracker(
            self.preferences,
            min_time_between_sessions_ms=self.config.session.min_time_between_sessions_ms,
        )
        batching = self.config.batching
        self._coordinator = PipelineCoordinator(
            store=self.store,
            delivery=self.delivery,
            max_batch_size=batching.max_batch_size,
            flush_interval_seconds=batching.flush_interval_seconds,
            retry_initial_delay_seconds=batching.retry_initial_delay_seconds,
            retry_max_delay_seconds=batching.retry_max_delay_seconds,
            on_fatal_failure=self.on_fatal_failure,
        )

    def start(self) -> None:
        """Start background delivery (call once on startup)."""
        if self._started:
            return
        try:
            self._coordinator.start()
        except Exception as e:
            logger.error(f"Failed to start analytics delivery: {e}")
            return
        self._started = True
        logger.info(f"Analytics client started ({self.pending_count} pending events)")

    def shutdown(self, flush: bool = True, timeout: float = 5.0) -> None:
        """Stop background delivery, optionally delivering what is left first."""
        try:
            self._coordinator.stop(timeout=timeout, flush=flush)
        except Exception as e:
            logger.error(f"Error stopping analytics delivery: {e}")
        finally:
            self._started = False
            self.store.close()
            self.preferences.close()
        logger.info(f"Analytics client stopped. Stats: {self.stats}")

    def __enter__(self) -> AnalyticsClient:
        self.start()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.shutdown()

    def track(self, event_name: str, properties: Mapping[str, Any] | None = None) -> bool:
        """
        Record an event (non-blocking).

        Returns True if the event was stored, False if it was dropped.
        """
        return self._log_event(event_name, properties)

    def track_revenue(self, revenue: Revenue) -> bool:
        """Record a revenue event. Invalid revenue is silently ignored."""
        try:
            valid = revenue.is_valid()
        except Exception as e:
            logger.warning(f"Cannot validate revenue, dropping: {e}")
            valid = False
        if not valid:
            self._stats["invalid_revenue"] += 1
            return False
        return self._log_event(REVENUE_EVENT, None, revenue=revenue.to_dict())

    def flush(self) -> None:
        """Ask the worker to deliver everything pending now."""
        try:
            self._coordinator.request_flush()
        except Exception as e:
            logger.error(f"Flush request failed: {e}")

    def _log_event(
        self,
        event_name: str,
        properties: Mapping[str, Any] | None,
        revenue: dict[str, Any] | None = None,
    ) -> bool:
        if not event_name:
            logger.warning("Event name is empty, dropping event")
            self._stats["dropped"] += 1
            return False

        try:
            now = self.clock()
            session_id = self._sessions.on_event(now)
            event = AnalyticsEvent.create(
                event_type=event_name,
                timestamp=now,
                session_id=session_id,
                context=self._collect_context(),
                properties=properties,
                revenue=revenue,
            )
            self.store.append(event.to_dict())
        except StorageFault as e:
            logger.warning(f"Dropping event {event_name!r}: {e}")
            self._stats["dropped"] += 1
            return False
        except Exception as e:
            logger.error(f"Unexpected error tracking {event_name!r}, dropping: {e}")
            self._stats["dropped"] += 1
            return False

        self._stats["tracked"] += 1
        self._coordinator.notify_appended()
        return True

    def _collect_context(self) -> Mapping[str, Any]:
        try:
            return self.context_provider.collect()
        except Exception as e:
            logger.warning(f"Context provider failed, sending event without context: {e}")
            return {}

    def _open_store(self, db_path: str) -> EventStore:
        try:
            return SqliteEventStore(db_path)
        except StorageFault as e:
            logger.error(f"{e}; events will not survive a restart")
            return InMemoryEventStore()

    def _open_preferences(self, db_path: str) -> PreferenceStore:
        try:
            return SqlitePreferences(db_path)
        except StorageFault as e:
            logger.error(f"{e}; session state will not survive a restart")
            return InMemoryPreferences()

    def _create_delivery(self) -> DeliveryClient | None:
        delivery = self.config.delivery
        try:
            delivery.validate()
        except ConfigurationFault as e:
            logger.warning(f"{e}; running in store-only mode, events are kept locally")
            return None

        if delivery.type == "console":
            return ConsoleDelivery(**delivery.console)
        return HttpDeliveryClient(
            collector_url=delivery.collector_url,
            timeout_seconds=delivery.timeout_seconds,
            api_key=delivery.api_key,
            headers=dict(delivery.headers),
        )

    def _safe_count(self) -> int | None:
        try:
            return self.store.count()
        except StorageFault:
            return None

    @property
    def pending_count(self) -> int:
        """Events stored but not yet delivered."""
        return self._safe_count() or 0

    @property
    def session_id(self) -> int:
        return self._sessions.session_id

    @property
    def store_only(self) -> bool:
        return self._coordinator.store_only

    @property
    def coordinator(self) -> PipelineCoordinator:
        return self._coordinator

    @property
    def stats(self) -> dict:
        """Get client statistics."""
        return {
            **self._stats,
            "pending": self.pending_count,
            "store_only": self.store_only,
            "delivery": self._coordinator.stats,
        }
