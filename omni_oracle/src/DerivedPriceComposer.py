"""DerivedPriceComposer: asset/USD from native/USD and the asset/native ratio.

The ratio is asset units per native unit (see LiquidityRatioEstimator), so
one asset is worth ``native_usd / ratio``:

    asset_usd18 = native_usd18 * 1e18 // ratio18
"""

from .errors import InsufficientSources, RatioUndefined

SCALE = 10**18


def compose(native_usd18: int, ratio18: int) -> int:
    """Derive the asset/USD price.

    :param native_usd18: Native/USD price at 18 decimals.
    :param ratio18: Asset units per native unit at 18 decimals.
    :returns: Asset/USD price at 18 decimals (truncated).
    :raises RatioUndefined: If the ratio is not positive.
    :raises InsufficientSources: If the native price is not positive.

    .. code-block:: python

        >>> compose(2 * 10**18, 4000 * 10**18)  # native=$2, 4000 asset per native
        500000000000000
    """
    if ratio18 <= 0:
        raise RatioUndefined(f"ratio must be positive, got {ratio18}")
    if native_usd18 <= 0:
        raise InsufficientSources(0, f"native price must be positive, got {native_usd18}")
    return native_usd18 * SCALE // ratio18
