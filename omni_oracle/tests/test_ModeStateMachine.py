"""Unit tests for ModeStateMachine."""

import pytest

from omni_oracle.src.ModeStateMachine import ModeStateMachine, OracleMode
from omni_oracle.src.errors import (
    CircuitBreakerTripped,
    InvalidConfiguration,
    ModeError,
)

E18 = 10**18


class TestModes:
    """Test mode transitions."""

    def test_starts_uninitialized(self) -> None:
        """A new machine should be uninitialized."""
        assert ModeStateMachine().mode == OracleMode.UNINITIALIZED

    def test_mode_numbering(self) -> None:
        """Mode values should be 0, 1 and 2."""
        assert [m.value for m in OracleMode] == [0, 1, 2]

    def test_set_mode(self) -> None:
        """Producer and consumer can be switched between."""
        machine = ModeStateMachine()
        machine.set_mode(OracleMode.PRODUCER)
        assert machine.mode == OracleMode.PRODUCER
        machine.set_mode(2)
        assert machine.mode == OracleMode.CONSUMER

    def test_cannot_return_to_uninitialized(self) -> None:
        """UNINITIALIZED is not a valid target."""
        machine = ModeStateMachine()
        machine.set_mode(OracleMode.PRODUCER)
        with pytest.raises(ModeError, match="Cannot enter UNINITIALIZED"):
            machine.set_mode(OracleMode.UNINITIALIZED)
        assert machine.mode == OracleMode.PRODUCER

    def test_unknown_mode(self) -> None:
        """Unknown mode values should be rejected."""
        with pytest.raises(ModeError, match="Unknown mode 7"):
            ModeStateMachine().set_mode(7)

    def test_require_producer(self) -> None:
        """Local aggregation should require producer mode."""
        machine = ModeStateMachine()
        with pytest.raises(ModeError, match="requires PRODUCER mode"):
            machine.require_producer()
        machine.set_mode(OracleMode.CONSUMER)
        with pytest.raises(ModeError, match="current: CONSUMER"):
            machine.require_producer()
        machine.set_mode(OracleMode.PRODUCER)
        machine.require_producer()


class TestEmergency:
    """Test the emergency override."""

    def test_activate_and_deactivate(self) -> None:
        """The override should pin and then release the price."""
        machine = ModeStateMachine()
        machine.activate_emergency(5 * E18)
        assert machine.state.emergency_mode
        assert machine.state.emergency_price == 5 * E18

        machine.deactivate_emergency()
        assert not machine.state.emergency_mode
        assert machine.state.emergency_price == 0

    def test_non_positive_price(self) -> None:
        """The override price must be positive."""
        with pytest.raises(InvalidConfiguration, match="Emergency price must be positive"):
            ModeStateMachine().activate_emergency(0)


class TestDeviationGate:
    """Test the circuit breaker."""

    def test_invalid_parameters(self) -> None:
        """Negative thresholds should be rejected."""
        with pytest.raises(InvalidConfiguration):
            ModeStateMachine(max_deviation_bps=-1)
        with pytest.raises(InvalidConfiguration):
            ModeStateMachine(grace_period=-1)

    def test_first_price_always_accepted(self) -> None:
        """Without a reference price the deviation is 0."""
        machine = ModeStateMachine(max_deviation_bps=100)
        assert machine.check_deviation(100 * E18, now=1000) == 0

    def test_disabled_gate(self) -> None:
        """A threshold of 0 should never trip."""
        machine = ModeStateMachine(max_deviation_bps=0)
        machine.record_accepted(100 * E18, now=1000)
        assert machine.check_deviation(1000 * E18, now=2000) == 90000
        assert not machine.state.circuit_breaker_active

    def test_within_threshold(self) -> None:
        """A change at the threshold should pass."""
        machine = ModeStateMachine(max_deviation_bps=1000)
        machine.record_accepted(100 * E18, now=1000)
        assert machine.check_deviation(110 * E18, now=2000) == 1000

    def test_trips_above_threshold(self) -> None:
        """A change above the threshold should trip the breaker."""
        machine = ModeStateMachine(max_deviation_bps=1000)
        machine.record_accepted(100 * E18, now=1000)
        with pytest.raises(CircuitBreakerTripped, match="5000 bps exceeds 1000 bps") as exc:
            machine.check_deviation(150 * E18, now=2000)
        assert exc.value.deviation_bps == 5000
        assert machine.state.circuit_breaker_active

    def test_tripped_breaker_blocks_updates(self) -> None:
        """Once tripped, even small changes are rejected until reset."""
        machine = ModeStateMachine(max_deviation_bps=1000)
        machine.record_accepted(100 * E18, now=1000)
        with pytest.raises(CircuitBreakerTripped):
            machine.check_deviation(50 * E18, now=2000)
        with pytest.raises(CircuitBreakerTripped):
            machine.check_deviation(100 * E18, now=2001)

        machine.reset_circuit_breaker()
        assert not machine.state.circuit_breaker_active
        assert machine.check_deviation(50 * E18, now=2002) == 0

    def test_grace_period(self) -> None:
        """Large changes inside the grace period should pass."""
        machine = ModeStateMachine(max_deviation_bps=1000, grace_period=3600)
        machine.record_accepted(100 * E18, now=1000)
        assert machine.in_grace_period(1000 + 3599)
        assert machine.check_deviation(200 * E18, now=1000 + 3599) == 10000

        assert not machine.in_grace_period(1000 + 3600)
        with pytest.raises(CircuitBreakerTripped):
            machine.check_deviation(200 * E18, now=1000 + 3600)

    def test_grace_period_starts_at_first_price(self) -> None:
        """Only the first accepted price starts the grace period."""
        machine = ModeStateMachine(grace_period=3600)
        assert not machine.in_grace_period(0)
        machine.record_accepted(E18, now=1000)
        machine.record_accepted(E18, now=5000)
        assert machine.state.first_accepted_at == 1000
