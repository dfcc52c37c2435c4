"""ModeStateMachine: Producer/consumer role, emergency override and deviation gate.

Mode transitions only leave ``UNINITIALIZED``; once an instance is a
producer or consumer it may switch between the two but never go back.

The emergency override pins the price to an operator-set value while
active. The optional deviation gate rejects a new price whose relative
change against the last accepted price exceeds ``max_deviation_bps``,
trips the breaker, and blocks updates until :meth:`reset_circuit_breaker`.
The gate is inactive during a grace period that starts with the first
accepted price.

.. code-block:: python

    >>> machine = ModeStateMachine(max_deviation_bps=1000, grace_period=3600)
    >>> machine.set_mode(OracleMode.PRODUCER)
    >>> machine.record_accepted(100 * 10**18, now=0)
    >>> machine.check_deviation(150 * 10**18, now=7200)
    Traceback (most recent call last):
    CircuitBreakerTripped: Price deviation 5000 bps exceeds 1000 bps; ...
"""

from __future__ import annotations

import enum
import logging
from dataclasses import dataclass

from .errors import CircuitBreakerTripped, InvalidConfiguration, ModeError

logger = logging.getLogger(__name__)

BPS = 10_000


class OracleMode(enum.IntEnum):
    """Role of an oracle instance."""

    UNINITIALIZED = 0
    PRODUCER = 1
    CONSUMER = 2


@dataclass
class OracleState:
    """Mode and override flags of one instance.

    :ivar mode: Current role.
    :ivar emergency_mode: True while the operator override is active.
    :ivar emergency_price: Price returned while in emergency mode.
    :ivar circuit_breaker_active: True after the deviation gate tripped.
    :ivar last_accepted_price: Last price that passed the gate.
    :ivar first_accepted_at: Time of the first accepted price (0 if none).
    """

    mode: OracleMode = OracleMode.UNINITIALIZED
    emergency_mode: bool = False
    emergency_price: int = 0
    circuit_breaker_active: bool = False
    last_accepted_price: int = 0
    first_accepted_at: int = 0


class ModeStateMachine:
    """Governs which role an instance plays and when updates are accepted.

    :ivar state: Current OracleState.
    :ivar max_deviation_bps: Deviation threshold in basis points (0 disables).
    :ivar grace_period: Seconds after the first accepted price during which
        the deviation gate is not applied.
    """

    def __init__(self, max_deviation_bps: int = 0, grace_period: int = 0) -> None:
        """Initialize the state machine.

        :param max_deviation_bps: Deviation threshold (default: 0, disabled).
        :param grace_period: Grace period in seconds (default: 0).
        :raises InvalidConfiguration: If a parameter is negative.
        """
        if max_deviation_bps < 0:
            raise InvalidConfiguration("max_deviation_bps must not be negative")
        if grace_period < 0:
            raise InvalidConfiguration("grace_period must not be negative")
        self.max_deviation_bps = max_deviation_bps
        self.grace_period = grace_period
        self.state = OracleState()

    @property
    def mode(self) -> OracleMode:
        return self.state.mode

    def set_mode(self, mode: OracleMode | int) -> None:
        """Move to a new mode.

        :param mode: Target mode.
        :raises ModeError: If the target is UNINITIALIZED.
        """
        try:
            mode = OracleMode(mode)
        except ValueError:
            raise ModeError(f"Unknown mode {mode}") from None
        if mode == OracleMode.UNINITIALIZED:
            raise ModeError("Cannot enter UNINITIALIZED mode")
        if mode != self.state.mode:
            logger.info(f"Mode {self.state.mode.name} -> {mode.name}")
        self.state.mode = mode

    def require_producer(self) -> None:
        """Ensure local aggregation is allowed.

        :raises ModeError: If the instance is not a producer.
        """
        if self.state.mode != OracleMode.PRODUCER:
            raise ModeError(
                f"Local aggregation requires PRODUCER mode (current: {self.state.mode.name})"
            )

    def activate_emergency(self, price18: int) -> None:
        """Pin the price to an operator-set value.

        :param price18: Override price at 18 decimals.
        :raises InvalidConfiguration: If the price is not positive.
        """
        if price18 <= 0:
            raise InvalidConfiguration("Emergency price must be positive")
        self.state.emergency_mode = True
        self.state.emergency_price = price18
        logger.warning(f"Emergency mode activated at price {price18}")

    def deactivate_emergency(self) -> None:
        """Leave emergency mode."""
        if self.state.emergency_mode:
            logger.warning("Emergency mode deactivated")
        self.state.emergency_mode = False
        self.state.emergency_price = 0

    def in_grace_period(self, now: int) -> bool:
        """Check if the deviation gate is still suspended."""
        return (
            self.state.first_accepted_at > 0
            and now - self.state.first_accepted_at < self.grace_period
        )

    def check_deviation(self, candidate: int, now: int) -> int:
        """Apply the deviation gate to a candidate price.

        :param candidate: New price at 18 decimals.
        :param now: Current unix timestamp.
        :returns: Deviation in basis points against the last accepted price.
        :raises CircuitBreakerTripped: If the breaker is (or becomes) active.
        """
        if self.state.circuit_breaker_active:
            raise CircuitBreakerTripped(0, self.max_deviation_bps)

        last = self.state.last_accepted_price
        if last <= 0:
            return 0
        deviation = abs(candidate - last) * BPS // last
        if (
            self.max_deviation_bps > 0
            and deviation > self.max_deviation_bps
            and not self.in_grace_period(now)
        ):
            self.state.circuit_breaker_active = True
            logger.error(
                f"Circuit breaker tripped: {last} -> {candidate} "
                f"({deviation} bps > {self.max_deviation_bps} bps)"
            )
            raise CircuitBreakerTripped(deviation, self.max_deviation_bps)
        return deviation

    def record_accepted(self, price18: int, now: int) -> None:
        """Remember a price that passed the gate."""
        self.state.last_accepted_price = price18
        if self.state.first_accepted_at == 0:
            self.state.first_accepted_at = now

    def reset_circuit_breaker(self) -> None:
        """Clear a tripped breaker.

        The reference price is dropped too, so the next candidate is
        accepted and becomes the new reference.
        """
        if self.state.circuit_breaker_active:
            logger.warning("Circuit breaker reset")
        self.state.circuit_breaker_active = False
        self.state.last_accepted_price = 0
