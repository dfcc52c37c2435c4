"""Error taxonomy for the pricing and synchronization engine.

Adapter-level failures (:class:`SourceUnavailable`, :class:`SourceStale`)
never leave an adapter; they are converted into an invalid
:class:`~omni_oracle.src.adapters.base.NormalizedQuote`. Everything else is
raised to the caller of the operation that failed.
"""


class OracleError(Exception):
    """Base exception for oracle errors."""

    pass


class SourceUnavailable(OracleError):
    """Raised when a feed cannot be read or returns a malformed answer."""

    pass


class SourceStale(OracleError):
    """Raised when a feed answer is older than its staleness bound."""

    pass


class InsufficientSources(OracleError):
    """Raised when no tier of the degradation ladder yields a price.

    :ivar available: Number of valid quotes seen in the failed pass.
    """

    def __init__(self, available: int, message: str | None = None):
        """Initialize the error.

        :param available: Number of valid quotes.
        :param message: Optional override for the error message.
        """
        self.available = available
        super().__init__(message or f"Insufficient valid sources ({available})")


class InvalidConfiguration(OracleError, ValueError):
    """Raised synchronously when a configuration call is rejected."""

    pass


class StaleCrossChainData(OracleError):
    """Raised when a peer price is requested but is not fresh."""

    pass


class RatioUndefined(OracleError):
    """Raised when a liquidity ratio cannot be computed (e.g., zero reserve)."""

    pass


class ModeError(OracleError):
    """Raised when an operation is not allowed in the current mode."""

    pass


class CircuitBreakerTripped(OracleError):
    """Raised when the deviation gate rejects an update.

    :ivar deviation_bps: Observed deviation in basis points.
    """

    def __init__(self, deviation_bps: int, max_deviation_bps: int):
        """Initialize the error.

        :param deviation_bps: Observed deviation in basis points.
        :param max_deviation_bps: Configured threshold in basis points.
        """
        self.deviation_bps = deviation_bps
        self.max_deviation_bps = max_deviation_bps
        super().__init__(
            f"Price deviation {deviation_bps} bps exceeds {max_deviation_bps} bps; "
            "circuit breaker tripped"
        )


class ReadChannelError(OracleError):
    """Raised when a remote read cannot be issued."""

    pass
