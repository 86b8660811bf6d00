"""HTTP delivery to the remote collector."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

import httpx

from .. import __version__
from ..batcher import Batch
from .base import DeliveryClient, DeliveryOutcome


logger = logging.getLogger(__name__)


@dataclass
class HttpDeliveryClient(DeliveryClient):
    """
    Posts each batch as a JSON array to the collector.

    Status mapping:
    - 2xx: success
    - 4xx: fatal (the collector will never accept this payload)
    - 5xx, other statuses, timeouts, transport errors: retryable

    Config:
        collector_url: Endpoint receiving the POST
        timeout_seconds: Hard limit for the whole request
        api_key: Sent as X-API-Key when set
        transport: Optional httpx transport (tests use httpx.MockTransport)
    """
    collector_url: str
    timeout_seconds: float = 10.0
    api_key: str | None = None
    headers: dict[str, str] = field(default_factory=dict)
    transport: httpx.BaseTransport | None = None

    # Internal state
    _client: httpx.Client | None = field(default=None, init=False)

    def start(self) -> None:
        if self._client is None:
            self._client = httpx.Client(
                timeout=self.timeout_seconds,
                headers=self._get_headers(),
                transport=self.transport,
            )
            logger.info(f"HTTP delivery started (collector={self.collector_url})")

    def stop(self) -> None:
        if self._client is not None:
            self._client.close()
            self._client = None
            logger.info("HTTP delivery stopped")

    def send(self, batch: Batch) -> DeliveryOutcome:
        if self._client is None:
            self.start()

        try:
            response = self._client.post(self.collector_url, content=batch.to_json())
        except httpx.TimeoutException as e:
            return DeliveryOutcome.retryable(f"timeout: {e}")
        except httpx.HTTPError as e:
            return DeliveryOutcome.retryable(f"transport error: {e}")

        status = response.status_code
        if 200 <= status < 300:
            return DeliveryOutcome.success(status)
        if 400 <= status < 500:
            return DeliveryOutcome.fatal(
                f"collector rejected batch: HTTP {status} {_snippet(response)}",
                status,
            )
        return DeliveryOutcome.retryable(f"HTTP {status}", status)

    def _get_headers(self) -> dict[str, str]:
        """Build request headers."""
        headers = {
            "Content-Type": "application/json",
            "User-Agent": f"sona-analytics/{__version__}",
        }
        if self.api_key:
            headers["X-API-Key"] = self.api_key
        headers.update(self.headers)
        return headers


def _snippet(response: httpx.Response, limit: int = 200) -> str:
    try:
        text = response.text
    except UnicodeDecodeError:
        return ""
    return text[:limit]
