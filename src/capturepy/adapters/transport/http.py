"""HTTP delivery backend posting NDJSON batches with httpx."""

import logging
from collections.abc import Sequence

import httpx

from capturepy.core.encoding.ndjson import encode_ndjson
from capturepy.core.models import Envelope
from capturepy.exceptions import DeliveryError

logger = logging.getLogger(__name__)

NDJSON_CONTENT_TYPE = "application/x-ndjson"


class HttpDelivery:
    """DeliveryPort that POSTs batches to the capture endpoint.

    Args:
        endpoint: Absolute http(s) URL of the ingest endpoint.
        timeout: Request timeout in seconds.
        client: Optional preconfigured ``httpx.Client`` (owned by the caller).
    """

    def __init__(
        self,
        endpoint: str,
        timeout: float = 5.0,
        client: httpx.Client | None = None,
    ) -> None:
        self.endpoint = endpoint
        self._owns_client = client is None
        self._client = client or httpx.Client(timeout=httpx.Timeout(timeout))

    def deliver(self, items: Sequence[Envelope]) -> None:
        """POST ``items`` as one NDJSON body.

        Raises:
            DeliveryError: On transport failure or a non-2xx response.
        """
        if not items:
            return
        body = encode_ndjson(items)
        try:
            response = self._client.post(
                self.endpoint,
                content=body.encode(),
                headers={"Content-Type": NDJSON_CONTENT_TYPE},
            )
        except httpx.HTTPError as exc:
            raise DeliveryError(f"delivery to {self.endpoint} failed: {exc}") from exc
        if not response.is_success:
            raise DeliveryError(
                f"endpoint rejected {len(items)} item(s) with "
                f"HTTP {response.status_code}",
                status_code=response.status_code,
            )
        logger.debug("Delivered %d item(s) to %s", len(items), self.endpoint)

    def close(self) -> None:
        if self._owns_client:
            self._client.close()
