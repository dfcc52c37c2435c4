"""RpcReadChannel: Remote reads executed as eth_call on the peer chain."""

from __future__ import annotations

import asyncio
import logging

from web3 import Web3

from .ReadChannel import ReadChannel, ReadRequest
from .errors import ReadChannelError

logger = logging.getLogger(__name__)


class RpcReadChannel(ReadChannel):
    """Read channel that calls peer oracles directly through their chain's RPC.

    Requests are queued by :meth:`send` and executed concurrently by
    :meth:`flush`, which delivers every successful answer to the response
    handler. Failed reads are logged and produce no response.

    :ivar providers: Dict mapping chain id to a Web3 instance for that chain.
    :ivar read_gas_limit: Gas budget used for fee quotes.
    :ivar fetch_timeout: Timeout for one read in seconds.
    """

    DEFAULT_READ_GAS_LIMIT = 100_000

    def __init__(
        self,
        channel_id: int,
        providers: dict[int, Web3],
        read_gas_limit: int = DEFAULT_READ_GAS_LIMIT,
        fetch_timeout: float = 10.0,
    ) -> None:
        """Initialize the channel.

        :param channel_id: Channel identifier.
        :param providers: Dict mapping chain id to Web3 instance.
        :param read_gas_limit: Gas budget for fee quotes (default: 100000).
        :param fetch_timeout: Timeout for one read (default: 10.0).
        """
        super().__init__(channel_id)
        self.providers = dict(providers)
        self.read_gas_limit = read_gas_limit
        self.fetch_timeout = fetch_timeout
        self._queue: list[ReadRequest] = []

    @classmethod
    def from_rpc_urls(
        cls, channel_id: int, rpc_urls: dict[int, str], **kwargs
    ) -> RpcReadChannel:
        """Build a channel with one HTTP provider per chain.

        :param channel_id: Channel identifier.
        :param rpc_urls: Dict mapping chain id to RPC URL.
        :returns: New RpcReadChannel.
        """
        providers = {
            chain_id: Web3(Web3.HTTPProvider(url)) for chain_id, url in rpc_urls.items()
        }
        return cls(channel_id, providers, **kwargs)

    def _provider(self, chain_id: int) -> Web3:
        w3 = self.providers.get(chain_id)
        if w3 is None:
            raise ReadChannelError(f"No RPC provider for chain {chain_id}")
        return w3

    @property
    def queued(self) -> int:
        """Number of requests waiting for :meth:`flush`."""
        return len(self._queue)

    def quote_fee(self, request: ReadRequest) -> int:
        """Quote the read as ``gas_price * read_gas_limit`` on the target chain."""
        w3 = self._provider(request.target_chain_id)
        return w3.eth.gas_price * self.read_gas_limit

    def send(self, request: ReadRequest) -> None:
        """Queue a read for the next flush.

        :raises ReadChannelError: If the target chain has no provider.
        """
        self._provider(request.target_chain_id)
        self._queue.append(request)
        logger.debug(
            f"Queued read {request.correlation_id.hex()[:10]} "
            f"to chain {request.target_chain_id}"
        )

    async def flush(self) -> int:
        """Execute all queued reads and deliver their answers.

        :returns: Number of responses delivered.
        """
        requests, self._queue = self._queue, []
        if not requests:
            return 0

        tasks = [self._read(request) for request in requests]
        results = await asyncio.gather(*tasks, return_exceptions=True)

        delivered = 0
        for request, result in zip(requests, results, strict=True):
            if isinstance(result, BaseException):
                logger.warning(
                    f"[chain {request.target_chain_id}] Remote read failed: {result}"
                )
                continue
            self.deliver(request.correlation_id, result)
            delivered += 1
        return delivered

    async def _read(self, request: ReadRequest) -> bytes:
        """Run one eth_call in a worker thread with timeout."""
        return await asyncio.wait_for(
            asyncio.to_thread(self._call, request),
            timeout=self.fetch_timeout,
        )

    def _call(self, request: ReadRequest) -> bytes:
        w3 = self._provider(request.target_chain_id)
        block_identifier: int | str = "latest"
        if request.confirmations > 1:
            block_identifier = max(0, w3.eth.block_number - request.confirmations + 1)
        result = w3.eth.call(
            {
                "to": Web3.to_checksum_address(request.target_ref),
                "data": "0x" + request.call_selector.hex(),
            },
            block_identifier,
        )
        return bytes(result)
