"""Price plus exponent feed adapter.

Collaborator: ``price_unsafe(price_id) -> (price, confidence, exponent,
publish_time)``. The real price is ``price * 10**exponent``; it is rescaled
to ``price * 10**(18 + exponent)``, dividing when that power is negative.
The confidence interval is not used for acceptance.
"""

from ..errors import SourceUnavailable
from .base import BaseAdapter, FeedKind, FeedSource, register_adapter, rescale_to_18


@register_adapter
class ConfidenceIntervalAdapter(BaseAdapter):
    """Adapter for feeds publishing a price with a base-10 exponent."""

    kind = FeedKind.CONFIDENCE_INTERVAL

    def _read(self, source: FeedSource, now: int) -> int:
        price, _confidence, exponent, publish_time = source.endpoint.price_unsafe(
            source.extra
        )
        if price <= 0:
            raise SourceUnavailable(f"non-positive price {price}")
        self.check_staleness(source, publish_time, now)
        return rescale_to_18(price, -exponent)
