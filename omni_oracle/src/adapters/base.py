"""Base adapter interface, feed source model and adapter registry.

Every external price input is described by a :class:`FeedSource`. The
adapter registered for the source's :class:`FeedKind` reads the feed
collaborator and normalizes the answer into an 18-decimal integer quote.
Adapters never raise: transport or format failures and staleness violations
are reported through the returned :class:`NormalizedQuote`.

.. code-block:: python

    @register_adapter
    class MyAdapter(BaseAdapter):
        kind = FeedKind.PROXY_READ

        def _read(self, source: FeedSource, now: int) -> int:
            value, updated_at = source.endpoint.read()
            self.check_staleness(source, updated_at, now)
            return value
"""

from __future__ import annotations

import enum
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, ClassVar, Protocol

from ..errors import InvalidConfiguration, SourceStale, SourceUnavailable

logger = logging.getLogger(__name__)

# Canonical fixed-point precision of every normalized price.
PRICE_DECIMALS = 18

MAX_WEIGHT = 255


class FeedKind(str, enum.Enum):
    """Wire formats of the supported external price feeds."""

    PULL_QUOTE = "pull_quote"
    PUSH_AGGREGATE = "push_aggregate"
    PROXY_READ = "proxy_read"
    CONFIDENCE_INTERVAL = "confidence_interval"


class QuoteError(str, enum.Enum):
    """Reason an adapter produced an invalid quote."""

    SOURCE_UNAVAILABLE = "source_unavailable"
    SOURCE_STALE = "source_stale"


class PullQuoteFeed(Protocol):
    """Round-based latest-value feed."""

    def latest_value(self) -> tuple[int, int]:
        """Return ``(answer, updated_at)``."""
        ...

    def decimal_count(self) -> int:
        """Return the number of decimals of ``answer``."""
        ...


class PushAggregateFeed(Protocol):
    """Externally pushed reference feed with a structured and a legacy call."""

    def price_for(self, symbol: str) -> tuple[int, int]:
        """Return ``(price at 1e9, timestamp)``."""
        ...

    def reference_rate(self, base: str, quote: str) -> tuple[int, int, int]:
        """Return ``(rate at 1e18, updated_base, updated_quote)``."""
        ...


class ProxyReadFeed(Protocol):
    """Single read-call feed already reported at 18 decimals."""

    def read(self) -> tuple[int, int]:
        """Return ``(value at 1e18, timestamp)``."""
        ...


class ConfidenceIntervalFeed(Protocol):
    """Price plus exponent feed."""

    def price_unsafe(self, price_id: str) -> tuple[int, int, int, int]:
        """Return ``(price, confidence, exponent, publish_time)``."""
        ...


@dataclass
class FeedSource:
    """Configuration of one external price input.

    :ivar name: Unique source name used in logs and metadata.
    :ivar kind: Feed wire format, selects the adapter.
    :ivar endpoint: Feed collaborator implementing the protocol for ``kind``.
    :ivar weight: Aggregation weight (0..255).
    :ivar max_staleness: Maximum accepted age of an answer in seconds.
    :ivar active: Whether the aggregator reads this source.
    :ivar extra: Symbol (push aggregate) or price id (confidence interval).
    """

    name: str
    kind: FeedKind
    endpoint: Any
    weight: int
    max_staleness: int
    active: bool = True
    extra: str = ""

    def __post_init__(self) -> None:
        """Validate the source, raising InvalidConfiguration on bad input."""
        if not self.name:
            raise InvalidConfiguration("Feed source name must not be empty")
        try:
            self.kind = FeedKind(self.kind)
        except ValueError:
            raise InvalidConfiguration(
                f"Unknown feed kind '{self.kind}' for source {self.name}"
            ) from None
        if self.endpoint is None:
            raise InvalidConfiguration(f"Feed source {self.name} has no endpoint")
        validate_weight(self.weight)
        if self.max_staleness <= 0:
            raise InvalidConfiguration(
                f"max_staleness must be positive for source {self.name}"
            )
        if self.kind == FeedKind.PUSH_AGGREGATE and not self.extra:
            raise InvalidConfiguration(
                f"Push aggregate source {self.name} requires a symbol"
            )
        if self.kind == FeedKind.CONFIDENCE_INTERVAL:
            price_id = self.extra[2:] if self.extra.startswith("0x") else self.extra
            try:
                valid_id = len(bytes.fromhex(price_id)) == 32
            except ValueError:
                valid_id = False
            if not valid_id:
                raise InvalidConfiguration(
                    f"Confidence interval source {self.name} requires a 32-byte "
                    f"hex price id, got '{self.extra}'"
                )


def validate_weight(weight: int) -> None:
    """Check that a weight fits the 0..255 range.

    :param weight: Weight to validate.
    :raises InvalidConfiguration: If the weight is out of range.
    """
    if not isinstance(weight, int) or not 0 <= weight <= MAX_WEIGHT:
        raise InvalidConfiguration(f"Weight must be in 0..{MAX_WEIGHT}, got {weight}")


@dataclass(frozen=True)
class NormalizedQuote:
    """Outcome of one adapter call.

    :ivar price18: Price at 18 fractional digits (0 when invalid).
    :ivar error: Failure reason, or None for a valid quote.
    :ivar detail: Human-readable failure detail for logging.
    """

    price18: int
    error: QuoteError | None = None
    detail: str = ""

    @property
    def valid(self) -> bool:
        """Check if the quote can be used for aggregation."""
        return self.error is None

    @classmethod
    def failed(cls, error: QuoteError, detail: str = "") -> NormalizedQuote:
        """Build an invalid quote."""
        return cls(price18=0, error=error, detail=detail)


def rescale_to_18(value: int, decimals: int) -> int:
    """Rescale an integer with ``decimals`` fractional digits to 18 digits.

    Division truncates toward zero.

    :param value: Raw integer value.
    :param decimals: Number of fractional digits of ``value`` (may be negative).
    :returns: Value with 18 fractional digits.

    .. code-block:: python

        >>> rescale_to_18(12345678900, 8)
        123456789000000000000
        >>> rescale_to_18(10**24, 24)
        1000000000000000000
    """
    if decimals == PRICE_DECIMALS:
        return value
    if decimals < PRICE_DECIMALS:
        return value * 10 ** (PRICE_DECIMALS - decimals)
    factor = 10 ** (decimals - PRICE_DECIMALS)
    quotient = abs(value) // factor
    return quotient if value >= 0 else -quotient


class BaseAdapter(ABC):
    """Abstract base class for feed adapters.

    Subclasses must implement:
        - kind: Class variable naming the feed kind handled
        - _read(): Read the collaborator and return the 18-decimal price,
          raising SourceUnavailable or SourceStale on failure

    :cvar kind: Feed kind handled by this adapter.
    """

    kind: ClassVar[FeedKind | None] = None

    def quote(self, source: FeedSource, now: int) -> NormalizedQuote:
        """Read a feed and normalize its answer.

        :param source: Feed source to read.
        :param now: Current unix timestamp.
        :returns: Valid quote, or an invalid quote carrying the failure reason.
        """
        try:
            price18 = self._read(source, now)
        except SourceStale as e:
            logger.warning(f"[{source.name}] Stale answer: {e}")
            return NormalizedQuote.failed(QuoteError.SOURCE_STALE, str(e))
        except SourceUnavailable as e:
            logger.warning(f"[{source.name}] Unavailable: {e}")
            return NormalizedQuote.failed(QuoteError.SOURCE_UNAVAILABLE, str(e))
        except Exception as e:  # Transport or decoding failure in the collaborator
            logger.warning(f"[{source.name}] Read failed: {e}")
            return NormalizedQuote.failed(QuoteError.SOURCE_UNAVAILABLE, str(e))

        if price18 <= 0:
            detail = f"non-positive normalized price {price18}"
            logger.warning(f"[{source.name}] Unavailable: {detail}")
            return NormalizedQuote.failed(QuoteError.SOURCE_UNAVAILABLE, detail)
        return NormalizedQuote(price18=price18)

    @abstractmethod
    def _read(self, source: FeedSource, now: int) -> int:
        """Read the collaborator and return the price at 18 decimals.

        :param source: Feed source to read.
        :param now: Current unix timestamp.
        :returns: Normalized price.
        :raises SourceUnavailable: On bad or missing answer.
        :raises SourceStale: If the answer is too old.
        """
        pass

    @staticmethod
    def check_staleness(source: FeedSource, updated_at: int, now: int) -> None:
        """Reject answers older than the source's staleness bound.

        :param source: Feed source the answer came from.
        :param updated_at: Answer timestamp.
        :param now: Current unix timestamp.
        :raises SourceUnavailable: If the timestamp is zero.
        :raises SourceStale: If ``now - updated_at`` exceeds ``max_staleness``.
        """
        if updated_at <= 0:
            raise SourceUnavailable("answer has no timestamp")
        age = now - updated_at
        if age > source.max_staleness:
            raise SourceStale(f"answer is {age}s old (max {source.max_staleness}s)")


# Dispatch table of adapters (populated by subclass imports)
ADAPTER_REGISTRY: dict[FeedKind, type[BaseAdapter]] = {}


def register_adapter(cls: type[BaseAdapter]) -> type[BaseAdapter]:
    """Decorator to register an adapter class in the dispatch table.

    :param cls: Adapter class to register.
    :returns: The registered class (unchanged).
    :raises ValueError: If adapter has no kind defined.
    """
    if cls.kind is None:
        raise ValueError(f"Adapter {cls.__name__} must define a 'kind' class variable")
    ADAPTER_REGISTRY[cls.kind] = cls
    return cls


def get_adapter(kind: FeedKind | str) -> BaseAdapter:
    """Get an adapter instance for a feed kind.

    :param kind: Feed kind (enum member or its string value).
    :returns: Adapter instance.
    :raises InvalidConfiguration: If no adapter handles the kind.
    """
    try:
        kind = FeedKind(kind)
    except ValueError:
        kind = None
    if kind not in ADAPTER_REGISTRY:
        available = ", ".join(sorted(k.value for k in ADAPTER_REGISTRY))
        raise InvalidConfiguration(f"Unknown feed kind. Available: {available}")
    return ADAPTER_REGISTRY[kind]()


def get_available_kinds() -> list[str]:
    """Get list of feed kinds that have a registered adapter.

    :returns: Sorted list of kind names.
    """
    return sorted(k.value for k in ADAPTER_REGISTRY)
