"""Delivery clients - transmit batches to the collector."""

from .base import DeliveryClient, DeliveryOutcome, OutcomeStatus
from .console import ConsoleDelivery
from .http import HttpDeliveryClient

__all__ = [
    "DeliveryClient",
    "DeliveryOutcome",
    "OutcomeStatus",
    "ConsoleDelivery",
    "HttpDeliveryClient",
]
