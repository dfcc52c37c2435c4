"""
Omni Oracle - Cross-Chain Asset Pricing Module

This module provides the pricing and synchronization engine:
- adapters: Normalization of heterogeneous on-chain price feeds
- WeightedAggregator: Weighted mean with a fallback ladder
- LiquidityRatioEstimator: TWAP and reserve-based asset/native ratio
- DerivedPriceComposer: Asset/USD from native/USD and the ratio
- ModeStateMachine: Producer/consumer role, emergency override, deviation gate
- PeerSyncManager: Peer registry and remote-read request/response cycle
- OmniOracle: Owner of all state and main service loop
"""

from .DerivedPriceComposer import compose
from .LiquidityRatioEstimator import LiquidityRatioEstimator, PoolConfig, RatioEstimate
from .ModeStateMachine import ModeStateMachine, OracleMode
from .OmniOracle import OmniOracle, PriceUpdate
from .PeerSyncManager import PeerPrice, PeerSyncManager
from .WeightedAggregator import AggregationResult, WeightedAggregator

__all__ = [
    "AggregationResult",
    "LiquidityRatioEstimator",
    "ModeStateMachine",
    "OmniOracle",
    "OracleMode",
    "PeerPrice",
    "PeerSyncManager",
    "PoolConfig",
    "PriceUpdate",
    "RatioEstimate",
    "WeightedAggregator",
    "compose",
]
