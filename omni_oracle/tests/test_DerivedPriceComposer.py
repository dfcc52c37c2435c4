"""Unit tests for DerivedPriceComposer."""

import pytest

from omni_oracle.src.DerivedPriceComposer import compose
from omni_oracle.src.errors import InsufficientSources, RatioUndefined

E18 = 10**18


class TestCompose:
    """Test asset/USD derivation."""

    def test_compose(self) -> None:
        """A $2 native with 4000 asset per native should price the asset at $0.0005."""
        assert compose(2 * E18, 4000 * E18) == 5 * 10**14

    def test_unit_ratio(self) -> None:
        """A ratio of 1 should return the native price."""
        assert compose(3 * E18, E18) == 3 * E18

    def test_truncates(self) -> None:
        """Division should truncate."""
        assert compose(1, 3 * E18) == 0
        assert compose(10 * E18, 3 * E18) == 3333333333333333333

    @pytest.mark.parametrize("ratio", [0, -1])
    def test_non_positive_ratio(self, ratio) -> None:
        """A non-positive ratio should raise RatioUndefined."""
        with pytest.raises(RatioUndefined, match="ratio must be positive"):
            compose(E18, ratio)

    def test_non_positive_native(self) -> None:
        """A non-positive native price should raise InsufficientSources."""
        with pytest.raises(InsufficientSources, match="native price must be positive"):
            compose(0, E18)
