"""Revenue value object."""

from __future__ import annotations

import copy
import logging
from dataclasses import dataclass
from typing import Any


logger = logging.getLogger(__name__)

REVENUE_EVENT = "_revenue"

# Setter policy for string fields.
# "ignore_empty": None and "" leave the previous value in place.
# "allow_clear": None and "" are stored as given.
_STRING_FIELD_POLICY = {
    "product_id": "ignore_empty",
    "receipt": "ignore_empty",
    "receipt_sig": "ignore_empty",
    "revenue_type": "allow_clear",
}


@dataclass
class Revenue:
    """
    A purchase to be tracked as a revenue event.

    Usage:
        revenue = Revenue().set_product_id("com.app.coins").set_price(0.99)
        revenue.set_quantity(3).set_revenue_type("consumable")
        client.track_revenue(revenue)

    Only valid revenue (price set, positive quantity, non-empty product id)
    is ever queued; anything else is ignored by the client.
    """
    product_id: str | None = None
    quantity: int = 1
    price: float | None = None
    receipt: str | None = None
    receipt_sig: str | None = None
    revenue_type: str | None = None
    properties: dict[str, Any] | None = None

    def set_product_id(self, product_id: str | None) -> Revenue:
        return self._set_string("product_id", product_id)

    def set_quantity(self, quantity: int) -> Revenue:
        self.quantity = quantity
        return self

    def set_price(self, price: float) -> Revenue:
        self.price = price
        return self

    def set_receipt(self, receipt: str | None, receipt_sig: str | None) -> Revenue:
        self._set_string("receipt", receipt)
        return self._set_string("receipt_sig", receipt_sig)

    def set_revenue_type(self, revenue_type: str | None) -> Revenue:
        return self._set_string("revenue_type", revenue_type)

    def set_event_properties(self, properties: dict[str, Any] | None) -> Revenue:
        self.properties = copy.deepcopy(properties) if properties is not None else None
        return self

    def _set_string(self, name: str, value: str | None) -> Revenue:
        if _STRING_FIELD_POLICY[name] == "ignore_empty" and not value:
            logger.debug(f"Ignoring empty value for revenue {name}")
            return self
        setattr(self, name, value)
        return self

    def is_valid(self) -> bool:
        """Whether this revenue can be tracked."""
        if self.price is None:
            logger.debug("Invalid revenue, need to set price")
            return False
        if self.quantity <= 0:
            logger.debug("Invalid revenue, quantity must be positive")
            return False
        if not self.product_id:
            logger.debug("Invalid revenue, need to set product id")
            return False
        return True

    def to_dict(self) -> dict[str, Any]:
        """Serialize, merging event properties with the revenue fields."""
        data = copy.deepcopy(self.properties) if self.properties else {}
        data["_quantity"] = self.quantity
        if self.product_id is not None:
            data["_product_id"] = self.product_id
        if self.price is not None:
            data["_price"] = self.price
        if self.receipt is not None:
            data["_receipt"] = self.receipt
        if self.receipt_sig is not None:
            data["_receipt_sig"] = self.receipt_sig
        if self.revenue_type is not None:
            data["_revenue_type"] = self.revenue_type
        return data
