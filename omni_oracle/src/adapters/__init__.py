"""
Feed adapters for multiple on-chain price sources.

This module provides a unified interface for normalizing the answers of
heterogeneous price feeds into 18-decimal integer quotes.

Usage:
    from omni_oracle.src.adapters import FeedKind, FeedSource, get_adapter

    source = FeedSource(
        name="chainlink",
        kind=FeedKind.PULL_QUOTE,
        endpoint=Web3PullQuoteFeed(w3, "0xc76dFb89fF298145b417d221B2c747d84952e01d"),
        weight=40,
        max_staleness=3600,
    )
    quote = get_adapter(source.kind).quote(source, now=int(time.time()))
"""

# Import base classes and utilities
from .base import (
    ADAPTER_REGISTRY,
    PRICE_DECIMALS,
    BaseAdapter,
    FeedKind,
    FeedSource,
    NormalizedQuote,
    QuoteError,
    get_adapter,
    get_available_kinds,
    register_adapter,
    rescale_to_18,
    validate_weight,
)

# Import all adapter implementations to trigger registration
from .confidence_interval import ConfidenceIntervalAdapter
from .hermes import DEFAULT_HERMES_URL, HermesConfidenceIntervalFeed
from .onchain import (
    WEB3_FEEDS,
    Web3ConfidenceIntervalFeed,
    Web3ProxyReadFeed,
    Web3PullQuoteFeed,
    Web3PushAggregateFeed,
)
from .proxy_read import ProxyReadAdapter
from .pull_quote import PullQuoteAdapter
from .push_aggregate import PushAggregateAdapter

__all__ = [
    # Base classes
    "BaseAdapter",
    "FeedKind",
    "FeedSource",
    "NormalizedQuote",
    "QuoteError",
    "PRICE_DECIMALS",
    # Registry functions
    "register_adapter",
    "get_adapter",
    "get_available_kinds",
    "rescale_to_18",
    "validate_weight",
    "ADAPTER_REGISTRY",
    # Adapter implementations
    "ConfidenceIntervalAdapter",
    "ProxyReadAdapter",
    "PullQuoteAdapter",
    "PushAggregateAdapter",
    # Web3 collaborators
    "WEB3_FEEDS",
    "DEFAULT_HERMES_URL",
    "HermesConfidenceIntervalFeed",
    "Web3ConfidenceIntervalFeed",
    "Web3ProxyReadFeed",
    "Web3PullQuoteFeed",
    "Web3PushAggregateFeed",
]
