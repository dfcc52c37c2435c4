"""Pyth Hermes price service collaborator.

Endpoint: {base_url}/v2/updates/price/latest?ids[]={price_id}&parsed=true

Serves the same ``(price, conf, expo, publish_time)`` tuple as the on-chain
Pyth contract, so a confidence-interval source can be read off-chain when
the local chain has no Pyth deployment or its copy is not being updated.
HTTP errors propagate to the adapter, which turns them into invalid quotes.
"""

import logging

import httpx

from ..errors import SourceUnavailable

logger = logging.getLogger(__name__)

DEFAULT_HERMES_URL = "https://hermes.pyth.network"


class HermesConfidenceIntervalFeed:
    """Reads the latest parsed price update from a Hermes instance.

    :cvar DEFAULT_TIMEOUT: Request timeout in seconds.
    :ivar base_url: Hermes base URL.
    """

    DEFAULT_TIMEOUT = 10.0

    def __init__(self, base_url: str = DEFAULT_HERMES_URL, timeout: float | None = None) -> None:
        self.base_url = base_url.rstrip("/")
        self.client = httpx.Client(
            timeout=httpx.Timeout(timeout or self.DEFAULT_TIMEOUT, connect=5.0),
            follow_redirects=True,
        )

    def price_unsafe(self, price_id: str) -> tuple[int, int, int, int]:
        id_hex = (price_id[2:] if price_id.startswith("0x") else price_id).lower()
        logger.debug(f"Hermes request for {id_hex[:10]} at {self.base_url}")
        response = self.client.get(
            f"{self.base_url}/v2/updates/price/latest",
            params={"ids[]": id_hex, "parsed": "true"},
        )
        if response.status_code != 200:
            raise SourceUnavailable(f"HTTP {response.status_code}: {response.text[:200]}")

        for update in response.json().get("parsed", []):
            if update.get("id", "").lower() == id_hex:
                price = update["price"]
                return (
                    int(price["price"]),
                    int(price["conf"]),
                    int(price["expo"]),
                    int(price["publish_time"]),
                )
        raise SourceUnavailable(f"No update for price id {id_hex[:10]} in response")

    def close(self) -> None:
        self.client.close()

    def __repr__(self) -> str:
        return f"HermesConfidenceIntervalFeed({self.base_url})"
