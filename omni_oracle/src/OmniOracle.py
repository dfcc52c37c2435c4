"""OmniOracle: Owner of all pricing state and entry point for callers.

This module ties the pipeline together:

Architecture:
    - Feed adapters normalize every configured source
    - WeightedAggregator combines them into a native/USD price with a
      fallback ladder
    - LiquidityRatioEstimator supplies the asset/native ratio from pools
    - DerivedPriceComposer turns both into the asset/USD price
    - ModeStateMachine decides whether this instance aggregates (producer)
      or adopts peer prices (consumer), and applies emergency override and
      deviation gate
    - PeerSyncManager exchanges prices with oracles on other chains
    - PricePublisher makes a producer's price readable on-chain

Updates are serialized by a non-reentrant lock; queries copy the shared
state under a short lock so every call sees one consistent snapshot.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
import threading
import time
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, cast

from .DerivedPriceComposer import compose
from .LiquidityRatioEstimator import LiquidityRatioEstimator, PoolConfig
from .ModeStateMachine import BPS, ModeStateMachine, OracleMode
from .PeerSyncManager import DEFAULT_REQUEST_TTL, PeerPrice, PeerSyncManager, PendingRequest
from .WeightedAggregator import FALLBACK_MAX_AGE, WeightedAggregator
from .adapters import FeedSource, validate_weight
from .errors import (
    InvalidConfiguration,
    ModeError,
    OracleError,
    ReadChannelError,
    StaleCrossChainData,
)

if TYPE_CHECKING:
    from .PricePublisher import PricePublisher
    from .ReadChannel import ReadChannel
    from .Registry import Registry

logger = logging.getLogger(__name__)

# Prices older than this are reported as "no data" by latest_price().
MAX_PRICE_AGE = FALLBACK_MAX_AGE


@dataclass(frozen=True)
class PriceUpdate:
    """Outcome of one successful :meth:`OmniOracle.update_price` call.

    :ivar price: Asset/USD price at 18 decimals.
    :ivar timestamp: Time the price refers to.
    :ivar native_price: Native/USD price used (0 under emergency override).
    :ivar ratio18: Asset/native ratio used (0 if no pool is configured).
    :ivar degraded: True if the native price came from a degraded tier.
    :ivar tier: Aggregation tier, or ``emergency``.
    """

    price: int
    timestamp: int
    native_price: int
    ratio18: int
    degraded: bool
    tier: str


class OmniOracle:
    """Canonical asset/USD price kept consistent across chains.

    :ivar chain_id: Chain id of this instance.
    :ivar sources: Configured feed sources by name.
    :ivar aggregator: Weighted aggregator (owns the fallback cache).
    :ivar estimator: Liquidity ratio estimator (owns the TWAP state).
    :ivar machine: Mode and circuit-breaker state machine.
    :ivar peers: Peer synchronization manager.
    :ivar publisher: Optional on-chain publisher.
    :ivar min_peer_agreement: Fresh peers that must agree before a consumer
        adopts a received price.
    :ivar peer_agreement_bps: Max distance in basis points for peers to agree.
    :ivar update_period: Seconds between loop iterations.
    :ivar request_period: Seconds between consumer read rounds.
    """

    def __init__(
        self,
        chain_id: int,
        sources: list[FeedSource] | None = None,
        min_valid_sources: int = 2,
        estimator: LiquidityRatioEstimator | None = None,
        read_channel: ReadChannel | None = None,
        publisher: PricePublisher | None = None,
        max_deviation_bps: int = 0,
        grace_period: int = 0,
        min_peer_agreement: int = 1,
        peer_agreement_bps: int = 100,
        request_ttl: int = DEFAULT_REQUEST_TTL,
        update_period: int = 60,
        request_period: int = 300,
    ) -> None:
        """Initialize the oracle.

        :param chain_id: Chain id of this instance.
        :param sources: Initial feed sources.
        :param min_valid_sources: Minimum valid quotes (1..4, default: 2).
        :param estimator: Ratio estimator; a pool-less one if omitted.
        :param read_channel: Optional remote-read channel.
        :param publisher: Optional on-chain publisher.
        :param max_deviation_bps: Deviation gate threshold (default: 0, disabled).
        :param grace_period: Deviation gate grace period in seconds (default: 0).
        :param min_peer_agreement: Peers required to agree (default: 1).
        :param peer_agreement_bps: Agreement tolerance (default: 100 = 1%).
        :param request_ttl: Expiry of unanswered reads (default: 900).
        :param update_period: Loop period in seconds (default: 60).
        :param request_period: Consumer read period in seconds (default: 300).
        :raises InvalidConfiguration: On invalid parameters.
        """
        if chain_id <= 0:
            raise InvalidConfiguration(f"Invalid chain id {chain_id}")
        if min_peer_agreement < 1:
            raise InvalidConfiguration("min_peer_agreement must be at least 1")
        if peer_agreement_bps < 0:
            raise InvalidConfiguration("peer_agreement_bps must not be negative")

        self.chain_id = chain_id
        self.sources: dict[str, FeedSource] = {}
        for source in sources or []:
            self.add_source(source)

        self.aggregator = WeightedAggregator(min_valid_sources)
        self.estimator = estimator or LiquidityRatioEstimator()
        self.machine = ModeStateMachine(max_deviation_bps, grace_period)
        self.peers = PeerSyncManager(chain_id, read_channel, request_ttl=request_ttl)
        self.peers.set_listener(self._on_peer_price)
        self.publisher = publisher

        self.min_peer_agreement = min_peer_agreement
        self.peer_agreement_bps = peer_agreement_bps
        self.update_period = max(1, update_period)
        self.request_period = max(1, request_period)
        self.endpoint_ref: str | None = None

        self._update_lock = threading.Lock()
        self._state_lock = threading.Lock()
        self._latest: tuple[int, int] = (0, 0)
        self._native: tuple[int, int] = (0, 0)
        self._last_degraded = False
        self.price_initialized = False

    # Configuration

    def add_source(self, source: FeedSource) -> None:
        """Add or replace a feed source (keyed by name)."""
        self.sources[source.name] = source
        logger.info(
            f"Source {source.name}: kind={source.kind.value}, weight={source.weight}, "
            f"max_staleness={source.max_staleness}s, active={source.active}"
        )

    def remove_source(self, name: str) -> None:
        """Remove a feed source."""
        self._source(name)
        del self.sources[name]

    def _source(self, name: str) -> FeedSource:
        source = self.sources.get(name)
        if source is None:
            raise InvalidConfiguration(f"Unknown source '{name}'")
        return source

    def set_source_active(self, name: str, active: bool) -> None:
        """Enable or disable a feed source."""
        self._source(name).active = active

    def set_source_weight(self, name: str, weight: int) -> None:
        """Change a feed source's weight.

        :raises InvalidConfiguration: If the weight is out of range or the
            source is unknown.
        """
        source = self._source(name)
        validate_weight(weight)
        source.weight = weight

    def set_min_valid_sources(self, value: int) -> None:
        """Change the minimum-source threshold (1..4)."""
        self.aggregator.set_min_valid_sources(value)

    def configure_pools(self, pools: list[PoolConfig]) -> None:
        """Replace the liquidity pools and take a fresh TWAP snapshot."""
        self.estimator.set_pools(pools)
        if self.estimator.twap_enabled:
            self.estimator.init_twap()

    def set_twap_enabled(self, enabled: bool) -> None:
        """Enable or disable the TWAP path of the ratio estimator."""
        self.estimator.set_twap_enabled(enabled)
        if enabled and not self.estimator.twap.initialized:
            self.estimator.init_twap()

    def set_read_channel(self, read_channel: ReadChannel | None) -> None:
        """Attach or detach the remote-read channel."""
        self.peers.set_read_channel(read_channel)

    def configure_from_registry(self, registry: Registry) -> str:
        """Apply this chain's registry entry.

        Sets the read channel id and remembers the messaging endpoint.

        :param registry: Registry collaborator.
        :returns: Address of the primary oracle named by the registry.
        :raises InvalidConfiguration: If the chain is not configured.
        """
        primary_ref, channel_id, configured = registry.oracle_config_for(self.chain_id)
        if not configured:
            raise InvalidConfiguration(f"Chain {self.chain_id} is not configured in the registry")
        self.endpoint_ref = registry.endpoint_for(self.chain_id)
        if self.peers.read_channel is not None:
            self.peers.read_channel.channel_id = channel_id
        logger.info(
            f"Registry: endpoint={self.endpoint_ref}, primary={primary_ref}, "
            f"read_channel={channel_id}"
        )
        return primary_ref

    def register_peer(self, chain_id: int, remote_ref: str | None, active: bool = True) -> None:
        """Register, update or deactivate a peer oracle."""
        self.peers.register_peer(chain_id, remote_ref, active)

    # Mode and overrides

    @property
    def mode(self) -> OracleMode:
        return self.machine.mode

    def set_mode(self, mode: OracleMode | int) -> None:
        """Switch to producer or consumer mode."""
        with self._state_lock:
            self.machine.set_mode(mode)

    def activate_emergency_mode(self, price18: int) -> None:
        """Pin the price to an operator-set value."""
        with self._state_lock:
            self.machine.activate_emergency(price18)

    def deactivate_emergency_mode(self) -> None:
        """Return to normal operation."""
        with self._state_lock:
            self.machine.deactivate_emergency()

    def reset_circuit_breaker(self) -> None:
        """Clear a tripped deviation gate."""
        with self._state_lock:
            self.machine.reset_circuit_breaker()

    # Update pipeline

    def update_price(self) -> PriceUpdate:
        """Run the local pipeline and store the result as the latest price.

        Under the emergency override the operator price is returned without
        aggregating.

        :returns: PriceUpdate.
        :raises ModeError: If not in producer mode.
        :raises InsufficientSources: If no aggregation tier yields a price.
        :raises RatioUndefined: If pools are configured but yield no ratio.
        :raises CircuitBreakerTripped: If the deviation gate rejects the price.
        """
        with self._update_lock:
            now = int(time.time())
            with self._state_lock:
                emergency = self.machine.state.emergency_mode
                emergency_price = self.machine.state.emergency_price
            if emergency:
                logger.info(f"Emergency mode: serving operator price {emergency_price}")
                return PriceUpdate(
                    price=emergency_price,
                    timestamp=now,
                    native_price=0,
                    ratio18=0,
                    degraded=False,
                    tier="emergency",
                )

            self.machine.require_producer()
            result = self.aggregator.aggregate_or_raise(
                list(self.sources.values()), now, refresh_cache=False
            )
            native_price = cast(int, result.price)

            ratio18 = 0
            price = native_price
            if self.estimator.configured:
                estimate = self.estimator.ratio()
                ratio18 = estimate.ratio18
                price = compose(native_price, ratio18)

            with self._state_lock:
                deviation = self.machine.check_deviation(price, now)
                self.machine.record_accepted(price, now)
                if result.metadata.get("tier") == "live":
                    self.aggregator.remember(native_price, result.timestamp)
                self._native = (native_price, result.timestamp)
                self._latest = (price, result.timestamp)
                self._last_degraded = result.degraded
                self.price_initialized = True

            tier = result.metadata.get("tier", "live")
            log_msg = (
                f"Price updated: {price} (native={native_price}, ratio18={ratio18}, "
                f"tier={tier}, sources={result.metadata.get('sources', [])}"
            )
            if deviation:
                log_msg += f", deviation={deviation}bps"
            log_msg += ")"
            if result.degraded:
                logger.warning(log_msg)
            else:
                logger.info(log_msg)

            return PriceUpdate(
                price=price,
                timestamp=result.timestamp,
                native_price=native_price,
                ratio18=ratio18,
                degraded=result.degraded,
                tier=tier,
            )

    def _on_peer_price(self, chain_id: int, price: int, timestamp: int) -> None:
        """Adopt a peer price as the local latest price when allowed."""
        now = int(time.time())
        with self._state_lock:
            if self.machine.mode != OracleMode.CONSUMER:
                return
            if self.machine.state.emergency_mode:
                logger.debug(f"[chain {chain_id}] Not adopting price during emergency mode")
                return
            peer = self.peers.peers.get(chain_id)
            if peer is None or not peer.active:
                logger.warning(f"[chain {chain_id}] Not adopting price from inactive peer")
                return
            if price <= 0:
                logger.warning(f"[chain {chain_id}] Not adopting non-positive price {price}")
                return
            if timestamp <= self._latest[1]:
                logger.debug(f"[chain {chain_id}] Not adopting price older than local one")
                return
            agreeing = self._agreeing_peers(price, now)
            if agreeing < self.min_peer_agreement:
                logger.warning(
                    f"[chain {chain_id}] Not adopting price {price}: "
                    f"{agreeing}/{self.min_peer_agreement} peers agree"
                )
                return
            self._latest = (price, timestamp)
            self.price_initialized = True
        logger.info(f"Adopted price {price} @ {timestamp} from chain {chain_id}")

    def _agreeing_peers(self, price: int, now: int) -> int:
        """Count fresh active peers whose price is within the agreement band."""
        if self.min_peer_agreement <= 1:
            return 1
        return sum(
            1
            for peer_price in self.peers.fresh_peer_prices(now).values()
            if peer_price > 0 and abs(peer_price - price) * BPS // price <= self.peer_agreement_bps
        )

    # Queries

    def latest_price(self) -> tuple[int, int]:
        """Get the latest price.

        :returns: ``(price, timestamp)``, or ``(0, 0)`` when there is no
            usable price (uninitialized, non-positive, or older than 24h).
        """
        now = int(time.time())
        with self._state_lock:
            if self.machine.state.emergency_mode:
                return self.machine.state.emergency_price, now
            price, timestamp = self._latest
        if price <= 0 or timestamp == 0 or now - timestamp > MAX_PRICE_AGE:
            return 0, 0
        return price, timestamp

    def native_price(self) -> tuple[int, int]:
        """Get the last aggregated native/USD price and its timestamp."""
        with self._state_lock:
            return self._native

    def is_fresh(self) -> bool:
        """Check if the local price is inside the freshness window."""
        return self.validate()[0]

    def validate(self) -> tuple[bool, bool]:
        """Report ``(local_valid, cross_chain_valid)``."""
        now = int(time.time())
        with self._state_lock:
            local_timestamp = self._latest[1]
        return self.peers.validate(local_timestamp, now)

    def get_peer_price(self, chain_id: int) -> PeerPrice:
        """Get a peer's cached price and whether it is valid."""
        return self.peers.get_peer_price(chain_id, int(time.time()))

    def require_peer_price(self, chain_id: int) -> tuple[int, int]:
        """Get a peer's cached price, failing if it is not valid.

        :raises StaleCrossChainData: If the peer price is missing or stale.
        """
        peer_price = self.get_peer_price(chain_id)
        if not peer_price.valid:
            raise StaleCrossChainData(
                f"No fresh price from chain {chain_id} (timestamp {peer_price.timestamp})"
            )
        return peer_price.price, peer_price.timestamp

    def active_peer_ids(self) -> list[int]:
        return self.peers.active_peer_ids()

    # Cross-chain

    def quote_fee(self, chain_id: int) -> int:
        """Quote the fee of reading a peer's price."""
        return self.peers.quote_fee(chain_id, int(time.time()))

    def request_remote_price(self, chain_id: int) -> tuple[PendingRequest, int]:
        """Issue a remote read of a peer's price.

        :returns: Tuple of (pending request handle, fee quote).
        :raises ReadChannelError: If the read cannot be issued.
        """
        return self.peers.request_remote_price(chain_id, int(time.time()))

    def on_remote_response(self, chain_id: int, price: int, timestamp: int) -> bool:
        """Record a peer price (and adopt it locally in consumer mode).

        :returns: True if the peer cache was updated.
        """
        return self.peers.on_remote_response(chain_id, price, timestamp)

    def publish(self) -> bool:
        """Publish the latest price through the configured publisher.

        :returns: True if a transaction was submitted successfully.
        :raises ModeError: If not in producer mode.
        """
        self.machine.require_producer()
        if self.publisher is None:
            return False
        price, timestamp = self.latest_price()
        if price <= 0:
            return False
        return self.publisher.publish(price, timestamp)

    # Reporting

    def get_oracle_status(self) -> dict[str, Any]:
        """Summarize mode, overrides and data availability."""
        now = int(time.time())
        with self._state_lock:
            state = self.machine.state
            status = {
                "mode": state.mode.name,
                "emergency_mode": state.emergency_mode,
                "circuit_breaker_active": state.circuit_breaker_active,
                "in_grace_period": self.machine.in_grace_period(now),
                "max_deviation_bps": self.machine.max_deviation_bps,
                "price_initialized": self.price_initialized,
                "last_update": self._latest[1],
                "degraded": self._last_degraded,
            }
        status["active_sources"] = sum(1 for s in self.sources.values() if s.active)
        status["active_peers"] = self.peers.active_peer_ids()
        status["pending_requests"] = len(self.peers.pending_requests)
        return status

    def get_oracle_config(self) -> dict[str, Any]:
        """Describe the configured sources and thresholds."""
        return {
            "sources": {
                name: {
                    "kind": source.kind.value,
                    "endpoint": repr(source.endpoint),
                    "weight": source.weight,
                    "max_staleness": source.max_staleness,
                    "active": source.active,
                    "extra": source.extra,
                }
                for name, source in self.sources.items()
            },
            "min_valid_sources": self.aggregator.min_valid_sources,
            "pools": len(self.estimator.pools),
            "twap_enabled": self.estimator.twap_enabled,
            "twap_period": self.estimator.twap_period,
            "peers": {
                chain_id: peer.remote_ref for chain_id, peer in self.peers.peers.items()
            },
        }

    # Service loop

    async def _producer_tick(self) -> None:
        try:
            self.update_price()
        except OracleError as e:
            logger.warning(f"Price update failed: {e}")
            return
        if self.publisher is not None:
            self.publish()

    async def _consumer_tick(self) -> None:
        now = int(time.time())
        self.peers.expire_pending(now)
        for chain_id in self.peers.active_peer_ids():
            try:
                self.peers.request_remote_price(chain_id, now)
            except ReadChannelError as e:
                logger.warning(f"[chain {chain_id}] Cannot request price: {e}")
            except Exception as e:  # unreachable peer RPC
                logger.warning(f"[chain {chain_id}] Request failed: {e!r}")

        channel = self.peers.read_channel
        flush = getattr(channel, "flush", None)
        if flush is not None:
            delivered = flush()
            if inspect.isawaitable(delivered):
                delivered = await delivered
            logger.debug(f"Read channel delivered {delivered} responses")

    async def run(self, max_iterations: int | None = None) -> None:
        """Run the oracle service loop.

        Producers update (and publish) every ``update_period``; consumers
        issue a read round every ``request_period`` and flush the channel.

        :param max_iterations: Stop after this many iterations (None runs forever).
        :raises ModeError: If the mode was never set.
        """
        if self.machine.mode == OracleMode.UNINITIALIZED:
            raise ModeError("Set PRODUCER or CONSUMER mode before running")

        if self.estimator.configured and self.estimator.twap_enabled:
            self.estimator.init_twap()

        logger.info(
            f"Starting {self.machine.mode.name} loop on chain {self.chain_id} "
            f"(update_period={self.update_period}s, request_period={self.request_period}s)"
        )

        iteration = 0
        last_request = 0.0
        while max_iterations is None or iteration < max_iterations:
            iteration += 1
            if self.machine.mode == OracleMode.PRODUCER:
                await self._producer_tick()
            elif time.time() - last_request >= self.request_period:
                last_request = time.time()
                await self._consumer_tick()

            await asyncio.sleep(self.update_period)
