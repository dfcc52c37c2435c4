"""Externally pushed reference feed adapter.

The structured call ``price_for(symbol) -> (price at 1e9, timestamp)`` is
tried first. If it fails or returns something that is not a pair of
integers, the legacy ``reference_rate(symbol, "USD") -> (rate at 1e18,
updated_base, updated_quote)`` call is used, with the later of the two
update timestamps as the answer's age.
"""

import logging

from ..errors import SourceUnavailable
from .base import BaseAdapter, FeedKind, FeedSource, register_adapter

logger = logging.getLogger(__name__)


@register_adapter
class PushAggregateAdapter(BaseAdapter):
    """Adapter for push-based reference feeds keyed by symbol."""

    kind = FeedKind.PUSH_AGGREGATE

    # Scale of the structured price (1e9) relative to 18 decimals
    STRUCTURED_SCALE = 10**9
    QUOTE_SYMBOL = "USD"

    def _read(self, source: FeedSource, now: int) -> int:
        structured = self._read_structured(source)
        if structured is not None:
            price, timestamp = structured
            if price <= 0:
                raise SourceUnavailable(f"zero structured price for {source.extra}")
            self.check_staleness(source, timestamp, now)
            return price * self.STRUCTURED_SCALE

        rate, updated_base, updated_quote = source.endpoint.reference_rate(
            source.extra, self.QUOTE_SYMBOL
        )
        if rate <= 0:
            raise SourceUnavailable(f"zero reference rate for {source.extra}")
        self.check_staleness(source, max(updated_base, updated_quote), now)
        return rate

    @staticmethod
    def _read_structured(source: FeedSource) -> tuple[int, int] | None:
        """Try the structured call.

        :returns: ``(price, timestamp)`` or None on failure or format mismatch.
        """
        try:
            result = source.endpoint.price_for(source.extra)
        except Exception as e:
            logger.debug(f"[{source.name}] price_for() failed ({e}), using legacy call")
            return None

        if (
            not isinstance(result, (tuple, list))
            or len(result) != 2
            or not all(isinstance(v, int) for v in result)
        ):
            logger.debug(
                f"[{source.name}] Unexpected price_for() format {result!r}, "
                "using legacy call"
            )
            return None
        return result[0], result[1]
