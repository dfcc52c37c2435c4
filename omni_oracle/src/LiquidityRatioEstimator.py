"""LiquidityRatioEstimator: Asset/native ratio from AMM pool reserves.

The ratio is expressed as **asset units per one native unit**, with 18
fractional digits. Two estimates are available:

    - TWAP: the change of the pool's cumulative price accumulator over a
      completed window, divided by the elapsed time. Accumulators are
      UQ112.112 fixed-point numbers, so the average is shifted right by 112
      bits after scaling to 1e18.
    - Instantaneous: ``reserve_asset * 1e18 / reserve_native``.

Both are corrected for the token decimals with ``10**|native - asset|``
(multiplying when the native token has more decimals). With two pools, the
instantaneous ratios are combined weighted by each pool's native reserve.

.. code-block:: python

    >>> estimator = LiquidityRatioEstimator([pool_config], twap_period=1800)
    >>> estimator.init_twap()
    >>> estimator.ratio(now)
    RatioEstimate(ratio18=3378000000000000000000, source='instant', pools=1)
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Protocol

from web3 import Web3

from .ContractUtility import ContractUtility
from .errors import InvalidConfiguration, RatioUndefined

if TYPE_CHECKING:
    from web3.contract import Contract

logger = logging.getLogger(__name__)

DEFAULT_TWAP_PERIOD = 1800

# Fractional bits of the UQ112.112 cumulative price accumulators.
Q112_BITS = 112

_UINT32 = 2**32
_UINT256 = 2**256

SCALE = 10**18
MAX_POOLS = 2


class LiquidityPool(Protocol):
    """Read-only AMM pair."""

    def reserves(self) -> tuple[int, int, int]:
        """Return ``(reserve0, reserve1, last_timestamp)``."""
        ...

    def token0(self) -> str: ...

    def token1(self) -> str: ...

    def cumulative_price0(self) -> int: ...

    def cumulative_price1(self) -> int: ...


@dataclass
class PoolConfig:
    """A pool paired with the decimals needed to read it.

    :ivar pool: Pool collaborator.
    :ivar asset_is_token0: True if the priced asset is the pool's token0.
    :ivar asset_decimals: Decimals of the priced asset.
    :ivar native_decimals: Decimals of the native token.
    """

    pool: LiquidityPool
    asset_is_token0: bool
    asset_decimals: int = 18
    native_decimals: int = 18

    def split(self, reserve0: int, reserve1: int) -> tuple[int, int]:
        """Order a reserve pair as ``(asset_reserve, native_reserve)``."""
        if self.asset_is_token0:
            return reserve0, reserve1
        return reserve1, reserve0


@dataclass
class TwapState:
    """Snapshot of the cumulative accumulators at the last window boundary.

    :ivar cumulative_price0_last: price0 accumulator at ``last_timestamp``.
    :ivar cumulative_price1_last: price1 accumulator at ``last_timestamp``.
    :ivar last_timestamp: Pool timestamp of the snapshot.
    :ivar ratio18: Ratio computed at the last completed window (0 if none).
    :ivar initialized: True once a snapshot was taken.
    """

    cumulative_price0_last: int = 0
    cumulative_price1_last: int = 0
    last_timestamp: int = 0
    ratio18: int = 0
    initialized: bool = False


@dataclass
class RatioEstimate:
    """A computed asset/native ratio.

    :ivar ratio18: Asset units per native unit at 18 decimals.
    :ivar source: ``twap`` or ``instant``.
    :ivar pools: Number of pools that contributed.
    """

    ratio18: int
    source: str
    pools: int = 1


def decimal_correct(value: int, asset_decimals: int, native_decimals: int) -> int:
    """Apply the token decimal correction to a raw ratio.

    :param value: Raw ratio at 18 decimals.
    :param asset_decimals: Decimals of the asset token.
    :param native_decimals: Decimals of the native token.
    :returns: Corrected ratio.
    """
    if native_decimals >= asset_decimals:
        return value * 10 ** (native_decimals - asset_decimals)
    return value // 10 ** (asset_decimals - native_decimals)


class LiquidityRatioEstimator:
    """Computes spot and time-weighted asset/native ratios.

    :ivar pools: Configured pools (the first one is used for the TWAP).
    :ivar twap_period: Minimum window length in seconds.
    :ivar twap_enabled: Whether the TWAP path is used.
    :ivar twap: TWAP state of the primary pool.
    """

    def __init__(
        self,
        pools: list[PoolConfig] | None = None,
        twap_period: int = DEFAULT_TWAP_PERIOD,
        twap_enabled: bool = True,
    ) -> None:
        """Initialize the estimator.

        :param pools: One or two pool configurations.
        :param twap_period: TWAP window in seconds (default: 1800).
        :param twap_enabled: Whether to use the TWAP (default: True).
        :raises InvalidConfiguration: On invalid pool list or period.
        """
        self.pools: list[PoolConfig] = []
        self.twap = TwapState()
        self.twap_enabled = twap_enabled
        self.set_twap_period(twap_period)
        self.set_pools(pools or [])

    def set_pools(self, pools: list[PoolConfig]) -> None:
        """Replace the pool list and reset the TWAP state.

        :param pools: Up to two pool configurations.
        :raises InvalidConfiguration: If more than two pools are given.
        """
        if len(pools) > MAX_POOLS:
            raise InvalidConfiguration(f"At most {MAX_POOLS} pools are supported")
        self.pools = list(pools)
        self.twap = TwapState()

    def set_twap_period(self, period: int) -> None:
        """Change the TWAP window length.

        :param period: Window in seconds, must be positive.
        :raises InvalidConfiguration: If not positive.
        """
        if period <= 0:
            raise InvalidConfiguration("twap_period must be positive")
        self.twap_period = period

    def set_twap_enabled(self, enabled: bool) -> None:
        """Enable or disable the TWAP path."""
        self.twap_enabled = enabled

    @property
    def configured(self) -> bool:
        """Check if at least one pool is configured."""
        return bool(self.pools)

    def init_twap(self) -> bool:
        """Snapshot the primary pool's accumulators.

        A no-op returning False when no pool is configured or the pool
        cannot be read.

        :returns: True if a snapshot was taken.
        """
        if not self.pools:
            return False
        pool = self.pools[0].pool
        try:
            _, _, pool_timestamp = pool.reserves()
            cumulative0 = pool.cumulative_price0()
            cumulative1 = pool.cumulative_price1()
        except Exception as e:
            logger.warning(f"TWAP init skipped, pool unavailable: {e}")
            return False

        self.twap = TwapState(
            cumulative_price0_last=cumulative0,
            cumulative_price1_last=cumulative1,
            last_timestamp=pool_timestamp,
            initialized=True,
        )
        logger.debug(f"TWAP initialized at pool timestamp {pool_timestamp}")
        return True

    def update_twap(self) -> int | None:
        """Advance the TWAP if a full window has elapsed.

        :returns: New ratio if a window completed, otherwise None.
        """
        if not self.twap_enabled or not self.twap.initialized or not self.pools:
            return None

        config = self.pools[0]
        try:
            _, _, pool_timestamp = config.pool.reserves()
            cumulative0 = config.pool.cumulative_price0()
            cumulative1 = config.pool.cumulative_price1()
        except Exception as e:
            logger.warning(f"TWAP update skipped, pool unavailable: {e}")
            return None

        # Pool timestamps are uint32 and wrap
        elapsed = (pool_timestamp - self.twap.last_timestamp) % _UINT32
        if elapsed == 0 or elapsed < self.twap_period:
            return None

        # Asset per native: the accumulator of the native token's price
        if config.asset_is_token0:
            delta = (cumulative1 - self.twap.cumulative_price1_last) % _UINT256
        else:
            delta = (cumulative0 - self.twap.cumulative_price0_last) % _UINT256
        average = delta // elapsed
        ratio18 = decimal_correct(
            (average * SCALE) >> Q112_BITS,
            config.asset_decimals,
            config.native_decimals,
        )

        self.twap = TwapState(
            cumulative_price0_last=cumulative0,
            cumulative_price1_last=cumulative1,
            last_timestamp=pool_timestamp,
            ratio18=ratio18,
            initialized=True,
        )
        logger.info(f"TWAP window of {elapsed}s completed, ratio18={ratio18}")
        return ratio18

    @staticmethod
    def instant_ratio(config: PoolConfig) -> tuple[int, int]:
        """Compute the instantaneous ratio of one pool.

        :param config: Pool configuration.
        :returns: Tuple of (ratio18, native_reserve).
        :raises RatioUndefined: If a reserve is zero.
        """
        reserve0, reserve1, _ = config.pool.reserves()
        asset_reserve, native_reserve = config.split(reserve0, reserve1)
        if asset_reserve == 0 or native_reserve == 0:
            raise RatioUndefined("pool has a zero reserve")
        ratio18 = decimal_correct(
            asset_reserve * SCALE // native_reserve,
            config.asset_decimals,
            config.native_decimals,
        )
        if ratio18 == 0:
            raise RatioUndefined("ratio truncated to zero")
        return ratio18, native_reserve

    def instant(self) -> RatioEstimate:
        """Reserve-weighted instantaneous ratio over all configured pools.

        :returns: RatioEstimate.
        :raises RatioUndefined: If no pool yields a ratio.
        """
        weighted_sum = 0
        total_reserve = 0
        used = 0
        for config in self.pools:
            try:
                ratio18, native_reserve = self.instant_ratio(config)
            except Exception as e:
                logger.warning(f"Pool skipped for ratio: {e}")
                continue
            weighted_sum += ratio18 * native_reserve
            total_reserve += native_reserve
            used += 1

        if used == 0:
            raise RatioUndefined("no pool yields a ratio")
        return RatioEstimate(
            ratio18=weighted_sum // total_reserve, source="instant", pools=used
        )

    def ratio(self) -> RatioEstimate:
        """Current best ratio: the TWAP when a window completed, else instantaneous.

        :returns: RatioEstimate.
        :raises RatioUndefined: If no ratio can be computed.
        """
        if not self.pools:
            raise RatioUndefined("no liquidity pool configured")

        if self.twap_enabled and self.twap.initialized:
            ratio18 = self.update_twap()
            if ratio18:
                return RatioEstimate(ratio18=ratio18, source="twap")
        elif self.twap_enabled:
            self.init_twap()

        return self.instant()


class Web3LiquidityPool:
    """UniswapV2-style pair read through web3."""

    def __init__(self, w3: Web3, address: str) -> None:
        self.address = address
        abi, _ = ContractUtility.get_contract("IUniswapV2Pair")
        self.contract: Contract = w3.eth.contract(
            address=Web3.to_checksum_address(address), abi=abi
        )

    def reserves(self) -> tuple[int, int, int]:
        reserve0, reserve1, timestamp = self.contract.functions.getReserves().call()
        return reserve0, reserve1, timestamp

    def token0(self) -> str:
        return self.contract.functions.token0().call()

    def token1(self) -> str:
        return self.contract.functions.token1().call()

    def cumulative_price0(self) -> int:
        return self.contract.functions.price0CumulativeLast().call()

    def cumulative_price1(self) -> int:
        return self.contract.functions.price1CumulativeLast().call()

    def __repr__(self) -> str:
        return f"Web3LiquidityPool({self.address})"


def pool_config_for(w3: Web3, pool_address: str, asset_token: str) -> PoolConfig:
    """Build a PoolConfig by reading the pool tokens and their decimals.

    :param w3: Web3 instance.
    :param pool_address: Pair contract address.
    :param asset_token: Address of the priced asset.
    :returns: PoolConfig.
    :raises InvalidConfiguration: If the asset is not one of the pool tokens.
    """
    pool = Web3LiquidityPool(w3, pool_address)
    token0 = pool.token0()
    token1 = pool.token1()
    asset = Web3.to_checksum_address(asset_token)
    if asset not in (token0, token1):
        raise InvalidConfiguration(
            f"Asset {asset} is not a token of pool {pool_address}"
        )
    asset_is_token0 = asset == token0
    native = token1 if asset_is_token0 else token0

    erc20_abi, _ = ContractUtility.get_contract("IERC20Metadata")
    asset_decimals = w3.eth.contract(address=asset, abi=erc20_abi).functions.decimals().call()
    native_decimals = w3.eth.contract(address=native, abi=erc20_abi).functions.decimals().call()

    logger.info(
        f"Pool {pool_address}: asset={asset} ({asset_decimals} decimals), "
        f"native={native} ({native_decimals} decimals)"
    )
    return PoolConfig(
        pool=pool,
        asset_is_token0=asset_is_token0,
        asset_decimals=asset_decimals,
        native_decimals=native_decimals,
    )
