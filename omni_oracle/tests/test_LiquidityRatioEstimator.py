"""Unit tests for LiquidityRatioEstimator."""

import pytest

from omni_oracle.src.LiquidityRatioEstimator import (
    LiquidityRatioEstimator,
    PoolConfig,
    decimal_correct,
)
from omni_oracle.src.errors import InvalidConfiguration, RatioUndefined

E18 = 10**18
Q112 = 2**112


class FakePool:
    """Pair whose reserves and accumulators are set by the test."""

    def __init__(self, reserve0, reserve1, timestamp=1000, cumulative0=0, cumulative1=0):
        self.reserve0 = reserve0
        self.reserve1 = reserve1
        self.timestamp = timestamp
        self.cumulative0 = cumulative0
        self.cumulative1 = cumulative1
        self.fail = False

    def reserves(self):
        if self.fail:
            raise ConnectionError("pool unreachable")
        return self.reserve0, self.reserve1, self.timestamp

    def token0(self):
        return "0x0000000000000000000000000000000000000001"

    def token1(self):
        return "0x0000000000000000000000000000000000000002"

    def cumulative_price0(self):
        return self.cumulative0

    def cumulative_price1(self):
        return self.cumulative1

    def advance(self, seconds, asset_per_native, denominator=1):
        """Accumulate a constant raw price for ``seconds`` (asset is token0).

        The raw price is ``asset_per_native / denominator`` in token base units.
        """
        self.timestamp = (self.timestamp + seconds) % 2**32
        step = asset_per_native * Q112 // denominator
        self.cumulative1 = (self.cumulative1 + step * seconds) % 2**256


class TestDecimalCorrection:
    """Test token decimal correction."""

    def test_equal_decimals(self) -> None:
        """Equal decimals should leave the value unchanged."""
        assert decimal_correct(5 * E18, 18, 18) == 5 * E18

    def test_native_has_more_decimals(self) -> None:
        """Native with more decimals should multiply."""
        assert decimal_correct(5, 6, 18) == 5 * 10**12

    def test_asset_has_more_decimals(self) -> None:
        """Asset with more decimals should divide with truncation."""
        assert decimal_correct(5 * 10**12 + 7, 18, 6) == 5


class TestEstimatorConfig:
    """Test estimator configuration."""

    def test_defaults(self) -> None:
        """Default period should be 1800s with TWAP enabled."""
        estimator = LiquidityRatioEstimator()
        assert estimator.twap_period == 1800
        assert estimator.twap_enabled
        assert not estimator.configured

    def test_too_many_pools(self) -> None:
        """More than two pools should be rejected."""
        pools = [PoolConfig(FakePool(1, 1), True) for _ in range(3)]
        with pytest.raises(InvalidConfiguration, match="At most 2 pools"):
            LiquidityRatioEstimator(pools)

    def test_invalid_period(self) -> None:
        """Non-positive TWAP periods should be rejected."""
        with pytest.raises(InvalidConfiguration, match="twap_period must be positive"):
            LiquidityRatioEstimator(twap_period=0)

    def test_no_pool(self) -> None:
        """ratio() without pools should raise RatioUndefined."""
        with pytest.raises(RatioUndefined, match="no liquidity pool configured"):
            LiquidityRatioEstimator().ratio()


class TestInstantRatio:
    """Test reserve-based ratios."""

    def test_same_decimals(self) -> None:
        """4000 asset against 1 native should give 4000."""
        config = PoolConfig(FakePool(4000 * E18, 1 * E18), asset_is_token0=True)
        assert LiquidityRatioEstimator.instant_ratio(config) == (4000 * E18, E18)

    def test_asset_is_token1(self) -> None:
        """Reserves should be ordered by the asset flag."""
        config = PoolConfig(FakePool(1 * E18, 4000 * E18), asset_is_token0=False)
        assert LiquidityRatioEstimator.instant_ratio(config)[0] == 4000 * E18

    def test_native_with_fewer_decimals(self) -> None:
        """An 18-decimal asset against a 6-decimal native should divide."""
        config = PoolConfig(
            FakePool(4000 * E18, 10**6), asset_is_token0=True, asset_decimals=18, native_decimals=6
        )
        assert LiquidityRatioEstimator.instant_ratio(config)[0] == 4000 * E18

    def test_native_with_more_decimals(self) -> None:
        """A 6-decimal asset against an 18-decimal native should multiply."""
        config = PoolConfig(
            FakePool(4000 * 10**6, E18), asset_is_token0=True, asset_decimals=6, native_decimals=18
        )
        assert LiquidityRatioEstimator.instant_ratio(config)[0] == 4000 * E18

    @pytest.mark.parametrize("reserves", [(0, E18), (E18, 0)])
    def test_zero_reserve(self, reserves) -> None:
        """A zero reserve should raise RatioUndefined."""
        config = PoolConfig(FakePool(*reserves), asset_is_token0=True)
        with pytest.raises(RatioUndefined, match="zero reserve"):
            LiquidityRatioEstimator.instant_ratio(config)

    def test_two_pools_weighted_by_native_reserve(self) -> None:
        """Two pools should be combined weighted by native reserve."""
        estimator = LiquidityRatioEstimator(
            [
                PoolConfig(FakePool(400_000 * E18, 100 * E18), asset_is_token0=True),
                PoolConfig(FakePool(1_500_000 * E18, 300 * E18), asset_is_token0=True),
            ],
            twap_enabled=False,
        )
        estimate = estimator.instant()
        assert estimate.ratio18 == 4750 * E18
        assert estimate.source == "instant"
        assert estimate.pools == 2

    def test_broken_pool_skipped(self) -> None:
        """A pool with a zero reserve should be skipped if another works."""
        estimator = LiquidityRatioEstimator(
            [
                PoolConfig(FakePool(0, E18), asset_is_token0=True),
                PoolConfig(FakePool(3000 * E18, E18), asset_is_token0=True),
            ],
            twap_enabled=False,
        )
        estimate = estimator.ratio()
        assert estimate.ratio18 == 3000 * E18
        assert estimate.pools == 1

    def test_all_pools_broken(self) -> None:
        """No usable pool should raise RatioUndefined."""
        estimator = LiquidityRatioEstimator(
            [PoolConfig(FakePool(0, E18), asset_is_token0=True)], twap_enabled=False
        )
        with pytest.raises(RatioUndefined, match="no pool yields a ratio"):
            estimator.ratio()


class TestTwap:
    """Test the time-weighted ratio."""

    def make(self, pool=None, **kwargs):
        pool = pool or FakePool(4000 * E18, E18, timestamp=1000)
        return pool, LiquidityRatioEstimator([PoolConfig(pool, asset_is_token0=True)], **kwargs)

    def test_init_snapshots_accumulators(self) -> None:
        """init_twap() should record the pool state."""
        pool, estimator = self.make()
        pool.cumulative0, pool.cumulative1 = 11, 22
        assert estimator.init_twap()
        assert estimator.twap.initialized
        assert estimator.twap.last_timestamp == 1000
        assert estimator.twap.cumulative_price0_last == 11
        assert estimator.twap.cumulative_price1_last == 22

    def test_init_with_unreachable_pool(self) -> None:
        """init_twap() should be a no-op if the pool cannot be read."""
        pool, estimator = self.make()
        pool.fail = True
        assert not estimator.init_twap()
        assert not estimator.twap.initialized

    def test_full_window(self) -> None:
        """A completed 1800s window should yield the average ratio."""
        pool, estimator = self.make(twap_period=1800)
        estimator.init_twap()
        pool.advance(1800, asset_per_native=4000)

        assert pool.timestamp == 2800
        assert estimator.update_twap() == 4000 * E18
        assert estimator.twap.last_timestamp == 2800
        assert estimator.twap.ratio18 == 4000 * E18

    def test_partial_window(self) -> None:
        """An incomplete window should not produce a TWAP."""
        pool, estimator = self.make(twap_period=1800)
        estimator.init_twap()
        pool.advance(1799, asset_per_native=4000)
        assert estimator.update_twap() is None
        assert estimator.twap.last_timestamp == 1000

    def test_timestamp_and_accumulator_wrap(self) -> None:
        """uint32 timestamps and uint256 accumulators should wrap."""
        pool = FakePool(4000 * E18, E18, timestamp=2**32 - 100, cumulative1=2**256 - 5)
        pool, estimator = self.make(pool)
        estimator.init_twap()
        pool.advance(1800, asset_per_native=2500)

        assert pool.timestamp == 1700
        assert estimator.update_twap() == 2500 * E18

    def test_ratio_uses_twap_only_on_completed_window(self) -> None:
        """ratio() should return the TWAP on completion and spot otherwise."""
        pool, estimator = self.make(twap_period=1800)

        first = estimator.ratio()
        assert first.source == "instant"
        assert estimator.twap.initialized

        # Average price differs from the spot reserves
        pool.advance(1800, asset_per_native=3500)
        second = estimator.ratio()
        assert second.source == "twap"
        assert second.ratio18 == 3500 * E18

        third = estimator.ratio()
        assert third.source == "instant"
        assert third.ratio18 == 4000 * E18

    def test_native_with_fewer_decimals(self) -> None:
        """An 18-decimal asset against a 6-decimal native should divide by 1e12."""
        pool = FakePool(4000 * E18, 10**6, timestamp=1000)
        estimator = LiquidityRatioEstimator(
            [PoolConfig(pool, asset_is_token0=True, asset_decimals=18, native_decimals=6)]
        )
        estimator.init_twap()
        # 4000 asset per native is 4000e12 base units per base unit
        pool.advance(1800, asset_per_native=4000 * 10**12)
        assert estimator.update_twap() == 4000 * E18

    def test_native_with_more_decimals(self) -> None:
        """A 6-decimal asset against an 18-decimal native should multiply by 1e12."""
        pool = FakePool(4000 * 10**6, E18, timestamp=1000)
        estimator = LiquidityRatioEstimator(
            [PoolConfig(pool, asset_is_token0=True, asset_decimals=6, native_decimals=18)]
        )
        estimator.init_twap()
        # 4000 asset per native is 4e-9 base units per base unit
        pool.advance(1800, asset_per_native=4000 * 10**6, denominator=E18)
        # The UQ112.112 accumulator cannot hold 4e-9 exactly, the average truncates
        assert estimator.update_twap() == 3_999_999_999 * 10**12

    def test_disabled_twap(self) -> None:
        """With TWAP disabled ratio() should always be instantaneous."""
        pool, estimator = self.make(twap_enabled=False)
        estimator.init_twap()
        pool.advance(1800, asset_per_native=3500)
        assert estimator.update_twap() is None
        assert estimator.ratio().source == "instant"

    def test_set_pools_resets_twap(self) -> None:
        """Replacing the pools should discard the TWAP state."""
        pool, estimator = self.make()
        estimator.init_twap()
        estimator.set_pools([PoolConfig(FakePool(E18, E18), asset_is_token0=True)])
        assert not estimator.twap.initialized
