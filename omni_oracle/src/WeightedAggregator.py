"""WeightedAggregator: Weighted multi-source aggregation with a fallback ladder.

Algorithm:
    1. Quote every active source through its adapter
    2. Accumulate ``sum(price * weight)``, ``sum(weight)`` and the count
       over valid quotes only
    3. ``count >= min_valid_sources``: weighted mean, refresh the fallback cache
    4. exactly one valid quote while more were required: use it, degraded
    5. fallback cache younger than 24h: use it, degraded
    6. otherwise fail with ``insufficient_sources``

All arithmetic is integer and division truncates.

.. code-block:: python

    >>> aggregator = WeightedAggregator(min_valid_sources=2)
    >>> result = aggregator.aggregate(sources, now=1_700_000_000)
    >>> result.success, result.degraded
    (True, False)
    >>> result.metadata["sources"]
    ['chainlink', 'band', 'pyth']
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, TypedDict

from .adapters import get_adapter, validate_weight
from .errors import InsufficientSources, InvalidConfiguration

if TYPE_CHECKING:
    from .adapters import FeedSource, NormalizedQuote

logger = logging.getLogger(__name__)

# Maximum age of the fallback cache in seconds.
FALLBACK_MAX_AGE = 24 * 60 * 60

MAX_MIN_VALID_SOURCES = 4


class AggregationError(TypedDict, total=False):
    """Error information when aggregation fails.

    :ivar error: Error type identifier.
    :ivar available: Number of valid sources available.
    :ivar failed: Dict of source name to failure reason.
    """

    error: str
    available: int
    failed: dict[str, str]


class AggregationMetadata(TypedDict, total=False):
    """Metadata about a successful aggregation.

    :ivar tier: Ladder tier that produced the price
        (``live``, ``single_source`` or ``fallback_cache``).
    :ivar sources: Sources used in the calculation.
    :ivar failed: Dict of source name to failure reason.
    :ivar count: Number of valid sources.
    :ivar total_weight: Sum of weights of the valid sources.
    :ivar cache_age: Age of the cached price (fallback tier only).
    """

    tier: str
    sources: list[str]
    failed: dict[str, str]
    count: int
    total_weight: int
    cache_age: int


@dataclass
class FallbackCache:
    """Last successful aggregation.

    :ivar price18: Cached price.
    :ivar timestamp: Time the price was aggregated.
    """

    price18: int = 0
    timestamp: int = 0

    def is_usable(self, now: int, max_age: int = FALLBACK_MAX_AGE) -> bool:
        """Check if the cache holds a price no older than ``max_age``."""
        return self.timestamp > 0 and self.price18 > 0 and now - self.timestamp <= max_age


@dataclass
class AggregationResult:
    """Result of one aggregation pass.

    :ivar price: Aggregated price at 18 decimals, or None if aggregation failed.
    :ivar timestamp: Time the result refers to (cache time for the fallback tier).
    :ivar degraded: True if the price did not meet the minimum-source bar.
    :ivar metadata: Additional information about the aggregation.
    """

    price: int | None
    timestamp: int
    degraded: bool
    metadata: AggregationMetadata | AggregationError

    @property
    def success(self) -> bool:
        """Check if aggregation was successful."""
        return self.price is not None

    @property
    def error(self) -> str | None:
        """Get error type if aggregation failed."""
        if self.price is None:
            return self.metadata.get("error")
        return None


class WeightedAggregator:
    """Combines normalized quotes by weight with a minimum-source policy.

    :ivar min_valid_sources: Valid quotes required for a non-degraded result.
    :ivar cache: Last successful aggregation.
    """

    def __init__(self, min_valid_sources: int = 2) -> None:
        """Initialize the aggregator.

        :param min_valid_sources: Minimum number of valid quotes (1..4).
        :raises InvalidConfiguration: If the minimum is out of range.
        """
        self.min_valid_sources = self._check_min_valid_sources(min_valid_sources)
        self.cache = FallbackCache()

    @staticmethod
    def _check_min_valid_sources(value: int) -> int:
        if not 1 <= value <= MAX_MIN_VALID_SOURCES:
            raise InvalidConfiguration(
                f"min_valid_sources must be in 1..{MAX_MIN_VALID_SOURCES}, got {value}"
            )
        return value

    def set_min_valid_sources(self, value: int) -> None:
        """Change the minimum-source threshold.

        :param value: New threshold (1..4).
        :raises InvalidConfiguration: If out of range.
        """
        self.min_valid_sources = self._check_min_valid_sources(value)

    def remember(self, price18: int, timestamp: int) -> None:
        """Store an accepted live price as the fallback value."""
        self.cache = FallbackCache(price18=price18, timestamp=timestamp)

    def collect(self, sources: list[FeedSource], now: int) -> dict[str, NormalizedQuote]:
        """Quote every active source.

        :param sources: Configured sources; inactive ones are skipped.
        :param now: Current unix timestamp.
        :returns: Dict mapping source name to its quote.
        """
        return {
            source.name: get_adapter(source.kind).quote(source, now)
            for source in sources
            if source.active
        }

    def aggregate(
        self, sources: list[FeedSource], now: int, refresh_cache: bool = True
    ) -> AggregationResult:
        """Quote the sources and combine them.

        :param sources: Configured sources.
        :param now: Current unix timestamp.
        :param refresh_cache: Store a live result in the fallback cache
            (default: True). Callers that gate the price afterwards pass
            False and call :meth:`remember` once it is accepted.
        :returns: AggregationResult with price and metadata, or None price with
            error info.
        """
        weights = {source.name: source.weight for source in sources}
        return self.combine(self.collect(sources, now), weights, now, refresh_cache)

    def combine(
        self,
        quotes: dict[str, NormalizedQuote],
        weights: dict[str, int],
        now: int,
        refresh_cache: bool = True,
    ) -> AggregationResult:
        """Run the degradation ladder over already collected quotes.

        :param quotes: Dict mapping source name to quote.
        :param weights: Dict mapping source name to weight.
        :param now: Current unix timestamp.
        :param refresh_cache: Store a live result in the fallback cache.
        :returns: AggregationResult.
        """
        weighted_sum = 0
        total_weight = 0
        used: list[str] = []
        failed: dict[str, str] = {}

        for name, quote in quotes.items():
            if not quote.valid:
                failed[name] = quote.error.value if quote.error else "unknown"
                continue
            weight = weights.get(name, 0)
            validate_weight(weight)
            if weight == 0:
                failed[name] = "zero_weight"
                continue
            weighted_sum += quote.price18 * weight
            total_weight += weight
            used.append(name)

        count = len(used)

        # Tier 1: enough live sources
        if count >= self.min_valid_sources:
            price = weighted_sum // total_weight
            if refresh_cache:
                self.remember(price, now)
            return AggregationResult(
                price=price,
                timestamp=now,
                degraded=False,
                metadata={
                    "tier": "live",
                    "sources": used,
                    "failed": failed,
                    "count": count,
                    "total_weight": total_weight,
                },
            )

        # Tier 2: a lone valid source
        if count == 1 and self.min_valid_sources > 1:
            price = weighted_sum // total_weight
            logger.warning(
                f"Only {used[0]} is valid (need {self.min_valid_sources}), "
                "using it as a degraded price"
            )
            return AggregationResult(
                price=price,
                timestamp=now,
                degraded=True,
                metadata={
                    "tier": "single_source",
                    "sources": used,
                    "failed": failed,
                    "count": count,
                    "total_weight": total_weight,
                },
            )

        # Tier 3: fallback cache
        if self.cache.is_usable(now):
            cache_age = now - self.cache.timestamp
            logger.warning(
                f"No usable live quotes ({count} valid), "
                f"using fallback cache from {cache_age}s ago"
            )
            return AggregationResult(
                price=self.cache.price18,
                timestamp=self.cache.timestamp,
                degraded=True,
                metadata={
                    "tier": "fallback_cache",
                    "sources": [],
                    "failed": failed,
                    "count": count,
                    "cache_age": cache_age,
                },
            )

        # Tier 4: failure
        return AggregationResult(
            price=None,
            timestamp=now,
            degraded=True,
            metadata={
                "error": "insufficient_sources",
                "available": count,
                "failed": failed,
            },
        )

    def aggregate_or_raise(
        self, sources: list[FeedSource], now: int, refresh_cache: bool = True
    ) -> AggregationResult:
        """Like :meth:`aggregate` but raise when every tier fails.

        :raises InsufficientSources: If no price could be produced.
        """
        result = self.aggregate(sources, now, refresh_cache)
        if not result.success:
            raise InsufficientSources(result.metadata.get("available", 0))
        return result
