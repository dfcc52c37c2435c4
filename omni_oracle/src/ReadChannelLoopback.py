"""LoopbackReadChannel: Remote reads routed to in-process oracle instances."""

from __future__ import annotations

import logging
from typing import Protocol

from .ReadChannel import ReadChannel, ReadRequest, encode_price_response
from .errors import ReadChannelError

logger = logging.getLogger(__name__)


class PriceSource(Protocol):
    """Anything exposing the peer read entry point."""

    def latest_price(self) -> tuple[int, int]: ...


class LoopbackReadChannel(ReadChannel):
    """Read channel for localnet development and tests.

    Peers are registered by chain id. Requests are queued by :meth:`send`
    and answered by :meth:`flush`, which reads each target's
    ``latest_price()`` at flush time.

    :ivar peers: Dict mapping chain id to the in-process price source.
    :ivar fee: Fixed fee returned by :meth:`quote_fee`.
    """

    def __init__(self, channel_id: int = 1, fee: int = 0) -> None:
        """Initialize the channel.

        :param channel_id: Channel identifier (default: 1).
        :param fee: Fixed fee quote (default: 0).
        """
        super().__init__(channel_id)
        self.peers: dict[int, PriceSource] = {}
        self.fee = fee
        self._queue: list[ReadRequest] = []

    def attach(self, chain_id: int, source: PriceSource) -> None:
        """Make an in-process price source readable as ``chain_id``."""
        self.peers[chain_id] = source

    @property
    def queued(self) -> int:
        """Number of requests waiting for :meth:`flush`."""
        return len(self._queue)

    def quote_fee(self, request: ReadRequest) -> int:
        return self.fee

    def send(self, request: ReadRequest) -> None:
        """Queue a read.

        :raises ReadChannelError: If nothing is attached for the target chain.
        """
        if request.target_chain_id not in self.peers:
            raise ReadChannelError(f"No loopback peer for chain {request.target_chain_id}")
        self._queue.append(request)

    def flush(self) -> int:
        """Answer all queued reads.

        :returns: Number of responses delivered.
        """
        requests, self._queue = self._queue, []
        for request in requests:
            price, timestamp = self.peers[request.target_chain_id].latest_price()
            logger.debug(
                f"Loopback read chain {request.target_chain_id}: "
                f"price={price}, timestamp={timestamp}"
            )
            self.deliver(request.correlation_id, encode_price_response(price, timestamp))
        return len(requests)

    def drop(self) -> int:
        """Discard queued reads without answering them.

        :returns: Number of requests dropped.
        """
        dropped = len(self._queue)
        self._queue = []
        return dropped
