"""PeerSyncManager: Peer endpoint registry and remote-read request/response cycle.

Responsibilities:
    - Track peer oracles per chain id and the list of active ids
      (O(1) removal by swapping with the last element)
    - Issue remote reads through a ReadChannel, keyed by correlation id
    - Expire requests that were never answered
    - Cache the latest ``(price, timestamp)`` received from each peer
    - Report peer and cross-chain validity against a freshness window

.. code-block:: python

    >>> manager = PeerSyncManager(local_chain_id=146, read_channel=channel)
    >>> manager.register_peer(42161, "0x692E3212AAF12c715ca49e3e8Ff909ca6A4F7777")
    >>> pending, fee = manager.request_remote_price(42161, now=1_700_000_000)
    >>> channel.flush()  # delivers the answer to manager.on_read_result
    1
    >>> manager.get_peer_price(42161, now=1_700_000_010).valid
    True
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Callable

import eth_abi
from web3 import Web3

from .ReadChannel import READ_SELECTOR, ReadChannel, ReadRequest, decode_price_response
from .errors import InvalidConfiguration, ReadChannelError

logger = logging.getLogger(__name__)

# Maximum age of a peer price (and the local price) to count as valid.
FRESHNESS_WINDOW = 3600

# Unanswered requests are dropped after this many seconds.
DEFAULT_REQUEST_TTL = 900

ZERO_ADDRESS = "0x0000000000000000000000000000000000000000"

PeerPriceListener = Callable[[int, int, int], None]


@dataclass
class PeerEndpoint:
    """A remote oracle and the last price received from it.

    :ivar chain_id: Chain the peer lives on.
    :ivar remote_ref: Address of the peer oracle (None if unset).
    :ivar active: Whether the peer is used.
    :ivar last_price18: Last price received.
    :ivar last_timestamp: Timestamp of the last price (0 if none).
    """

    chain_id: int
    remote_ref: str | None = None
    active: bool = False
    last_price18: int = 0
    last_timestamp: int = 0


@dataclass
class PendingRequest:
    """A read that has been sent and not yet answered.

    :ivar request: The outbound read command.
    :ivar issued_at: Local time the read was sent.
    :ivar expires_at: Local time after which the answer is ignored.
    """

    request: ReadRequest
    issued_at: int
    expires_at: int

    @property
    def correlation_id(self) -> bytes:
        return self.request.correlation_id

    @property
    def chain_id(self) -> int:
        return self.request.target_chain_id


@dataclass(frozen=True)
class PeerPrice:
    """Answer of :meth:`PeerSyncManager.get_peer_price`."""

    price: int
    timestamp: int
    valid: bool


class PeerSyncManager:
    """Tracks peer oracles and exchanges prices with them.

    :ivar local_chain_id: Chain id of this instance.
    :ivar read_channel: Transport for remote reads (None if unset).
    :ivar freshness_window: Max age in seconds of a valid peer price.
    :ivar request_ttl: Seconds before an unanswered request is dropped.
    :ivar confirmations: Block confirmations requested on the target chain.
    """

    def __init__(
        self,
        local_chain_id: int,
        read_channel: ReadChannel | None = None,
        freshness_window: int = FRESHNESS_WINDOW,
        request_ttl: int = DEFAULT_REQUEST_TTL,
        confirmations: int = 1,
    ) -> None:
        """Initialize the manager.

        :param local_chain_id: Chain id of this instance.
        :param read_channel: Optional read channel.
        :param freshness_window: Validity window in seconds (default: 3600).
        :param request_ttl: Request expiry in seconds (default: 900).
        :param confirmations: Confirmations per read (default: 1).
        :raises InvalidConfiguration: On non-positive windows.
        """
        if freshness_window <= 0 or request_ttl <= 0:
            raise InvalidConfiguration("freshness_window and request_ttl must be positive")
        self.local_chain_id = local_chain_id
        self.freshness_window = freshness_window
        self.request_ttl = request_ttl
        self.confirmations = confirmations
        self.peers: dict[int, PeerEndpoint] = {}
        self._active_ids: list[int] = []
        self._pending: dict[bytes, PendingRequest] = {}
        self._nonce = 0
        self._listener: PeerPriceListener | None = None
        self.read_channel: ReadChannel | None = None
        if read_channel is not None:
            self.set_read_channel(read_channel)

    def set_read_channel(self, read_channel: ReadChannel | None) -> None:
        """Attach (or detach with None) the read channel."""
        self.read_channel = read_channel
        if read_channel is not None:
            read_channel.set_response_handler(self.on_read_result)

    def set_listener(self, listener: PeerPriceListener | None) -> None:
        """Register a callback ``(chain_id, price, timestamp)`` for accepted responses."""
        self._listener = listener

    # Peer registry

    def register_peer(self, chain_id: int, remote_ref: str | None, active: bool = True) -> None:
        """Set a peer's oracle address and activity.

        A peer registered with no address (or the zero address) is inactive.

        :param chain_id: Peer chain id.
        :param remote_ref: Peer oracle address.
        :param active: Whether the peer should be active (default: True).
        :raises InvalidConfiguration: On a non-positive chain id or bad address.
        """
        if chain_id <= 0:
            raise InvalidConfiguration(f"Invalid peer chain id {chain_id}")
        if remote_ref in (None, "", ZERO_ADDRESS):
            remote_ref = None
        elif not Web3.is_address(remote_ref):
            raise InvalidConfiguration(f"Invalid peer address '{remote_ref}'")
        else:
            remote_ref = Web3.to_checksum_address(remote_ref)

        peer = self.peers.get(chain_id)
        if peer is None:
            peer = PeerEndpoint(chain_id=chain_id)
            self.peers[chain_id] = peer

        now_active = active and remote_ref is not None
        was_active = peer.active
        peer.remote_ref = remote_ref
        peer.active = now_active

        if now_active and not was_active:
            self._active_ids.append(chain_id)
            logger.info(f"Peer {chain_id} activated ({remote_ref})")
        elif was_active and not now_active:
            self._remove_active(chain_id)
            logger.info(f"Peer {chain_id} deactivated")

    def deactivate_peer(self, chain_id: int) -> None:
        """Deactivate a peer, keeping its address and cached price."""
        peer = self.peers.get(chain_id)
        if peer is None:
            return
        self.register_peer(chain_id, peer.remote_ref, active=False)

    def _remove_active(self, chain_id: int) -> None:
        """Remove an id from the active list by swapping it with the last one."""
        try:
            index = self._active_ids.index(chain_id)
        except ValueError:
            return
        self._active_ids[index] = self._active_ids[-1]
        self._active_ids.pop()

    def active_peer_ids(self) -> list[int]:
        """Get the ids of active peers (order not significant)."""
        return list(self._active_ids)

    # Request / response cycle

    def _new_correlation_id(self, chain_id: int) -> bytes:
        self._nonce += 1
        return bytes(
            Web3.keccak(
                eth_abi.encode(
                    ["uint32", "uint32", "uint64"],
                    [self.local_chain_id, chain_id, self._nonce],
                )
            )
        )

    def _build_request(self, chain_id: int, now: int) -> tuple[ReadChannel, ReadRequest]:
        if self.read_channel is None or self.read_channel.channel_id == 0:
            raise ReadChannelError("Read channel not set")
        peer = self.peers.get(chain_id)
        if peer is None or not peer.active:
            raise ReadChannelError(f"Peer {chain_id} is not active")
        if not peer.remote_ref:
            raise ReadChannelError(f"Peer {chain_id} has no oracle address")
        request = ReadRequest(
            correlation_id=self._new_correlation_id(chain_id),
            target_chain_id=chain_id,
            target_ref=peer.remote_ref,
            call_selector=READ_SELECTOR,
            timestamp_hint=now,
            confirmations=self.confirmations,
        )
        return self.read_channel, request

    def quote_fee(self, chain_id: int, now: int) -> int:
        """Quote the fee of a read without sending it.

        :raises ReadChannelError: If the read cannot be issued.
        """
        channel, request = self._build_request(chain_id, now)
        return channel.quote_fee(request)

    def request_remote_price(self, chain_id: int, now: int) -> tuple[PendingRequest, int]:
        """Issue a remote read of a peer's latest price.

        :param chain_id: Peer chain id.
        :param now: Current unix timestamp.
        :returns: Tuple of (pending request handle, fee quote).
        :raises ReadChannelError: If the channel is unset, the peer is inactive
            or its address is unset.
        """
        self.expire_pending(now)
        channel, request = self._build_request(chain_id, now)
        fee = channel.quote_fee(request)
        channel.send(request)

        pending = PendingRequest(
            request=request, issued_at=now, expires_at=now + self.request_ttl
        )
        self._pending[request.correlation_id] = pending
        logger.info(
            f"Requested price from chain {chain_id} "
            f"(id={request.correlation_id.hex()[:10]}, fee={fee})"
        )
        return pending, fee

    def expire_pending(self, now: int) -> int:
        """Drop requests whose expiry has passed.

        :returns: Number of requests dropped.
        """
        expired = [cid for cid, p in self._pending.items() if now > p.expires_at]
        for cid in expired:
            pending = self._pending.pop(cid)
            logger.warning(
                f"Request {cid.hex()[:10]} to chain {pending.chain_id} expired unanswered"
            )
        return len(expired)

    @property
    def pending_requests(self) -> list[PendingRequest]:
        """Requests awaiting an answer."""
        return list(self._pending.values())

    def on_read_result(self, correlation_id: bytes, payload: bytes) -> bool:
        """Handle a raw response delivered by the read channel.

        :param correlation_id: Id of the answered request.
        :param payload: ABI-encoded ``(int256, uint256)``.
        :returns: True if the response was accepted.
        """
        pending = self._pending.pop(correlation_id, None)
        if pending is None:
            logger.warning(
                f"Dropping response {correlation_id.hex()[:10]}: unknown or expired request"
            )
            return False
        try:
            price, timestamp = decode_price_response(payload)
        except Exception as e:
            logger.warning(f"[chain {pending.chain_id}] Malformed response: {e}")
            return False
        return self.on_remote_response(pending.chain_id, price, timestamp)

    def on_remote_response(self, chain_id: int, price: int, timestamp: int) -> bool:
        """Record a price received from a peer.

        :param chain_id: Peer chain id.
        :param price: Peer price at 18 decimals.
        :param timestamp: Peer price timestamp.
        :returns: True if the peer cache was updated.
        """
        if timestamp == 0:
            logger.warning(f"[chain {chain_id}] Rejected response with zero timestamp")
            return False
        peer = self.peers.get(chain_id)
        if peer is None:
            logger.warning(f"[chain {chain_id}] Rejected response from unknown peer")
            return False
        if not peer.active:
            logger.warning(f"[chain {chain_id}] Rejected response from inactive peer")
            return False
        if timestamp < peer.last_timestamp:
            logger.warning(
                f"[chain {chain_id}] Ignoring out-of-order response "
                f"({timestamp} < {peer.last_timestamp})"
            )
            return False

        peer.last_price18 = price
        peer.last_timestamp = timestamp
        logger.info(f"[chain {chain_id}] Received price {price} @ {timestamp}")

        if self._listener is not None:
            self._listener(chain_id, price, timestamp)
        return True

    # Queries

    def get_peer_price(self, chain_id: int, now: int) -> PeerPrice:
        """Get the cached price of a peer and whether it is valid.

        :param chain_id: Peer chain id.
        :param now: Current unix timestamp.
        :returns: PeerPrice; unknown peers yield ``(0, 0, False)``.
        """
        peer = self.peers.get(chain_id)
        if peer is None:
            return PeerPrice(price=0, timestamp=0, valid=False)
        valid = (
            peer.active
            and peer.last_timestamp > 0
            and now - peer.last_timestamp <= self.freshness_window
        )
        return PeerPrice(price=peer.last_price18, timestamp=peer.last_timestamp, valid=valid)

    def fresh_peer_prices(self, now: int) -> dict[int, int]:
        """Get the prices of all active peers that are currently valid."""
        prices = {}
        for chain_id in self._active_ids:
            peer_price = self.get_peer_price(chain_id, now)
            if peer_price.valid:
                prices[chain_id] = peer_price.price
        return prices

    def validate(self, local_timestamp: int, now: int) -> tuple[bool, bool]:
        """Report ``(local_valid, cross_chain_valid)``.

        :param local_timestamp: Timestamp of the local latest price.
        :param now: Current unix timestamp.
        :returns: Local validity, and whether any active peer is valid.
        """
        local_valid = local_timestamp > 0 and now - local_timestamp <= self.freshness_window
        cross_chain_valid = bool(self.fresh_peer_prices(now))
        return local_valid, cross_chain_valid
