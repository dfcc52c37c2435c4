"""Round-based latest-value feed adapter.

Collaborator: ``latest_value() -> (answer, updated_at)`` and
``decimal_count() -> int``. Answers are rescaled from the reported decimal
count to 18 decimals; when the decimal count cannot be read, 8 is assumed.
"""

import logging

from ..errors import SourceUnavailable
from .base import BaseAdapter, FeedKind, FeedSource, register_adapter, rescale_to_18

logger = logging.getLogger(__name__)


@register_adapter
class PullQuoteAdapter(BaseAdapter):
    """Adapter for round-based feeds reporting their own decimal count."""

    kind = FeedKind.PULL_QUOTE

    # Decimal count assumed when decimal_count() fails
    DEFAULT_DECIMALS = 8

    def _read(self, source: FeedSource, now: int) -> int:
        answer, updated_at = source.endpoint.latest_value()
        if answer <= 0:
            raise SourceUnavailable(f"non-positive answer {answer}")
        self.check_staleness(source, updated_at, now)

        try:
            decimals = int(source.endpoint.decimal_count())
        except Exception as e:
            logger.debug(
                f"[{source.name}] decimal_count() failed ({e}), "
                f"assuming {self.DEFAULT_DECIMALS}"
            )
            decimals = self.DEFAULT_DECIMALS

        return rescale_to_18(answer, decimals)
