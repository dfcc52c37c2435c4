"""Unit tests for PeerSyncManager."""

import pytest
from web3 import Web3

from omni_oracle.src.PeerSyncManager import PeerSyncManager
from omni_oracle.src.ReadChannel import READ_SELECTOR, encode_price_response
from omni_oracle.src.ReadChannelLoopback import LoopbackReadChannel
from omni_oracle.src.errors import InvalidConfiguration, ReadChannelError

NOW = 1_700_000_000
E18 = 10**18
PEER_A = "0x" + "11" * 20
PEER_B = "0x" + "22" * 20


class StaticSource:
    def __init__(self, price, timestamp):
        self.price = price
        self.timestamp = timestamp

    def latest_price(self):
        return self.price, self.timestamp


def make_manager(**kwargs):
    channel = LoopbackReadChannel(channel_id=1)
    manager = PeerSyncManager(local_chain_id=146, read_channel=channel, **kwargs)
    return manager, channel


class TestPeerRegistry:
    """Test peer registration and the active list."""

    def test_register_and_deactivate(self) -> None:
        """Registering 10 and 20 then clearing 10 should leave [20]."""
        manager, _ = make_manager()
        manager.register_peer(10, PEER_A)
        manager.register_peer(20, PEER_B)
        assert sorted(manager.active_peer_ids()) == [10, 20]

        manager.register_peer(10, None)
        assert manager.active_peer_ids() == [20]
        assert not manager.peers[10].active
        assert manager.peers[10].remote_ref is None

    def test_zero_address_deactivates(self) -> None:
        """The zero address should count as unset."""
        manager, _ = make_manager()
        manager.register_peer(10, PEER_A)
        manager.register_peer(10, "0x0000000000000000000000000000000000000000")
        assert manager.active_peer_ids() == []

    def test_address_is_checksummed(self) -> None:
        """Peer addresses should be stored checksummed."""
        manager, _ = make_manager()
        manager.register_peer(10, PEER_A)
        assert manager.peers[10].remote_ref == Web3.to_checksum_address(PEER_A)

    def test_reregister_does_not_duplicate(self) -> None:
        """Re-registering an active peer should keep one entry."""
        manager, _ = make_manager()
        manager.register_peer(10, PEER_A)
        manager.register_peer(10, PEER_B)
        assert manager.active_peer_ids() == [10]

    def test_deactivate_keeps_address(self) -> None:
        """deactivate_peer() should keep the address and cached price."""
        manager, _ = make_manager()
        manager.register_peer(10, PEER_A)
        manager.on_remote_response(10, E18, NOW)
        manager.deactivate_peer(10)
        assert manager.active_peer_ids() == []
        assert manager.peers[10].remote_ref is not None
        assert manager.peers[10].last_price18 == E18

    def test_swap_remove(self) -> None:
        """Removing from the middle should move the last id into its slot."""
        manager, _ = make_manager()
        for chain_id in (10, 20, 30):
            manager.register_peer(chain_id, PEER_A)
        manager.deactivate_peer(10)
        assert manager.active_peer_ids() == [30, 20]

    def test_invalid_input(self) -> None:
        """Bad chain ids and addresses should be rejected."""
        manager, _ = make_manager()
        with pytest.raises(InvalidConfiguration, match="Invalid peer chain id"):
            manager.register_peer(0, PEER_A)
        with pytest.raises(InvalidConfiguration, match="Invalid peer address"):
            manager.register_peer(10, "0x1234")


class TestResponses:
    """Test handling of peer responses."""

    def test_zero_timestamp_rejected(self) -> None:
        """A response with timestamp 0 should be rejected."""
        manager, _ = make_manager()
        manager.register_peer(10, PEER_A)
        assert not manager.on_remote_response(10, 5 * E18, 0)
        assert manager.get_peer_price(10, NOW).price == 0

    def test_exact_update(self) -> None:
        """An accepted response should be cached exactly."""
        manager, _ = make_manager()
        manager.register_peer(10, PEER_A)
        assert manager.on_remote_response(10, 1_234_567 * E18, NOW - 30)
        peer_price = manager.get_peer_price(10, NOW)
        assert peer_price.price == 1_234_567 * E18
        assert peer_price.timestamp == NOW - 30
        assert peer_price.valid

    def test_out_of_order_ignored(self) -> None:
        """An older response should not replace a newer cached one."""
        manager, _ = make_manager()
        manager.register_peer(10, PEER_A)
        manager.on_remote_response(10, 2 * E18, NOW)
        assert not manager.on_remote_response(10, 1 * E18, NOW - 1)
        assert manager.get_peer_price(10, NOW).price == 2 * E18

    def test_same_timestamp_replaces(self) -> None:
        """A response with an equal timestamp should be accepted."""
        manager, _ = make_manager()
        manager.register_peer(10, PEER_A)
        manager.on_remote_response(10, 2 * E18, NOW)
        assert manager.on_remote_response(10, 3 * E18, NOW)
        assert manager.get_peer_price(10, NOW).price == 3 * E18

    def test_unknown_peer(self) -> None:
        """Responses from unregistered chains should be rejected."""
        manager, _ = make_manager()
        assert not manager.on_remote_response(99, E18, NOW)
        assert not manager.get_peer_price(99, NOW).valid

    def test_inactive_peer_rejected(self) -> None:
        """Responses from a deactivated peer should not touch its cache."""
        manager, _ = make_manager()
        received = []
        manager.set_listener(lambda *args: received.append(args))
        manager.register_peer(10, PEER_A)
        manager.register_peer(10, PEER_A, active=False)
        assert not manager.on_remote_response(10, E18, NOW)
        assert manager.peers[10].last_timestamp == 0
        assert received == []

    def test_late_answer_after_deactivation(self) -> None:
        """A pending read answered after deactivation should be dropped."""
        manager, channel = make_manager()
        channel.attach(10, StaticSource(E18, NOW))
        manager.register_peer(10, PEER_A)
        manager.request_remote_price(10, NOW)
        manager.deactivate_peer(10)
        channel.flush()
        assert manager.pending_requests == []
        assert manager.get_peer_price(10, NOW).price == 0

    def test_listener_called(self) -> None:
        """Accepted responses should be passed to the listener."""
        manager, _ = make_manager()
        received = []
        manager.set_listener(lambda *args: received.append(args))
        manager.register_peer(10, PEER_A)
        manager.on_remote_response(10, E18, NOW)
        manager.on_remote_response(10, E18, 0)
        assert received == [(10, E18, NOW)]


class TestValidity:
    """Test freshness checks."""

    def test_freshness_window(self) -> None:
        """Peer prices should be valid for 3600s."""
        manager, _ = make_manager()
        manager.register_peer(10, PEER_A)
        manager.on_remote_response(10, E18, NOW)
        assert manager.get_peer_price(10, NOW + 3600).valid
        assert not manager.get_peer_price(10, NOW + 3601).valid

    def test_inactive_peer_invalid(self) -> None:
        """A deactivated peer's price should not be valid."""
        manager, _ = make_manager()
        manager.register_peer(10, PEER_A)
        manager.on_remote_response(10, E18, NOW)
        manager.deactivate_peer(10)
        assert not manager.get_peer_price(10, NOW).valid

    def test_validate(self) -> None:
        """validate() should report local and cross-chain validity."""
        manager, _ = make_manager()
        assert manager.validate(0, NOW) == (False, False)

        manager.register_peer(10, PEER_A)
        manager.register_peer(20, PEER_B)
        manager.on_remote_response(20, E18, NOW - 100)
        assert manager.validate(NOW - 10, NOW) == (True, True)
        assert manager.validate(NOW - 4000, NOW) == (False, True)
        assert manager.fresh_peer_prices(NOW) == {20: E18}


class TestRequests:
    """Test the remote-read request cycle."""

    def test_request_and_flush(self) -> None:
        """A flushed loopback read should update the peer cache."""
        manager, channel = make_manager()
        channel.attach(42161, StaticSource(7 * E18, NOW - 5))
        manager.register_peer(42161, PEER_A)

        pending, fee = manager.request_remote_price(42161, NOW)
        assert fee == 0
        assert pending.chain_id == 42161
        assert pending.expires_at == NOW + 900
        assert pending.request.call_selector == READ_SELECTOR
        assert len(pending.correlation_id) == 32
        assert len(manager.pending_requests) == 1

        assert channel.flush() == 1
        assert manager.pending_requests == []
        assert manager.get_peer_price(42161, NOW).price == 7 * E18

    def test_correlation_ids_unique(self) -> None:
        """Consecutive requests should get different correlation ids."""
        manager, channel = make_manager()
        channel.attach(10, StaticSource(E18, NOW))
        manager.register_peer(10, PEER_A)
        first, _ = manager.request_remote_price(10, NOW)
        second, _ = manager.request_remote_price(10, NOW)
        assert first.correlation_id != second.correlation_id

    def test_channel_not_set(self) -> None:
        """Requests without a channel should fail."""
        manager = PeerSyncManager(local_chain_id=146)
        manager.register_peer(10, PEER_A)
        with pytest.raises(ReadChannelError, match="Read channel not set"):
            manager.request_remote_price(10, NOW)

    def test_channel_id_zero_is_unset(self) -> None:
        """A channel id of 0 should count as unset."""
        manager, channel = make_manager()
        channel.channel_id = 0
        manager.register_peer(10, PEER_A)
        with pytest.raises(ReadChannelError, match="Read channel not set"):
            manager.request_remote_price(10, NOW)

    def test_inactive_peer(self) -> None:
        """Requests to inactive peers should fail."""
        manager, _ = make_manager()
        with pytest.raises(ReadChannelError, match="Peer 10 is not active"):
            manager.request_remote_price(10, NOW)

    def test_quote_fee(self) -> None:
        """quote_fee() should ask the channel without sending."""
        manager, channel = make_manager()
        channel.fee = 12345
        channel.attach(10, StaticSource(E18, NOW))
        manager.register_peer(10, PEER_A)
        assert manager.quote_fee(10, NOW) == 12345
        assert channel.queued == 0

    def test_expiry(self) -> None:
        """Unanswered requests should expire and late answers be dropped."""
        manager, channel = make_manager(request_ttl=900)
        channel.attach(10, StaticSource(E18, NOW))
        manager.register_peer(10, PEER_A)
        pending, _ = manager.request_remote_price(10, NOW)

        assert manager.expire_pending(NOW + 900) == 0
        assert manager.expire_pending(NOW + 901) == 1
        assert manager.pending_requests == []

        assert not manager.on_read_result(pending.correlation_id, encode_price_response(E18, NOW))
        assert manager.get_peer_price(10, NOW).price == 0

    def test_unknown_correlation_id(self) -> None:
        """Responses to unknown requests should be dropped."""
        manager, _ = make_manager()
        assert not manager.on_read_result(b"\x01" * 32, encode_price_response(E18, NOW))

    def test_malformed_payload(self) -> None:
        """Malformed payloads should be dropped."""
        manager, channel = make_manager()
        channel.attach(10, StaticSource(E18, NOW))
        manager.register_peer(10, PEER_A)
        pending, _ = manager.request_remote_price(10, NOW)
        assert not manager.on_read_result(pending.correlation_id, b"\x00" * 10)

    def test_invalid_windows(self) -> None:
        """Non-positive windows should be rejected."""
        with pytest.raises(InvalidConfiguration):
            PeerSyncManager(local_chain_id=146, request_ttl=0)
