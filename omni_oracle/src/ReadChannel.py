"""ReadChannel: Abstract transport for cross-chain remote reads.

A remote read is an explicit message exchange. The local instance sends a
:class:`ReadRequest` naming the peer oracle and its read entry point; some
time later the channel delivers the ABI-encoded answer
``(int256 price, uint256 timestamp)`` together with the request's
correlation id to the registered response handler. Responses may arrive
out of order or never.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Callable

import eth_abi
from web3 import Web3

# Selector of the peer oracle's read entry point.
READ_SIGNATURE = "getLatestPrice()"
READ_SELECTOR: bytes = bytes(Web3.keccak(text=READ_SIGNATURE)[:4])

REQUEST_TYPES = ["bytes32", "uint32", "address", "bytes4", "uint64", "uint16"]
RESPONSE_TYPES = ["int256", "uint256"]

ResponseHandler = Callable[[bytes, bytes], object]


@dataclass(frozen=True)
class ReadRequest:
    """Outbound read command.

    :ivar correlation_id: 32-byte id echoed with the response.
    :ivar target_chain_id: Chain of the peer oracle.
    :ivar target_ref: Address of the peer oracle.
    :ivar call_selector: 4-byte selector of the read entry point.
    :ivar timestamp_hint: Local time the request was issued.
    :ivar confirmations: Block confirmations required on the target chain.
    """

    correlation_id: bytes
    target_chain_id: int
    target_ref: str
    call_selector: bytes = READ_SELECTOR
    timestamp_hint: int = 0
    confirmations: int = 1

    def encode(self) -> bytes:
        """ABI-encode the command."""
        return eth_abi.encode(
            REQUEST_TYPES,
            [
                self.correlation_id,
                self.target_chain_id,
                Web3.to_checksum_address(self.target_ref),
                self.call_selector,
                self.timestamp_hint,
                self.confirmations,
            ],
        )

    @classmethod
    def decode(cls, data: bytes) -> "ReadRequest":
        """Decode a command produced by :meth:`encode`."""
        correlation_id, chain_id, target, selector, hint, confirmations = eth_abi.decode(
            REQUEST_TYPES, data
        )
        return cls(
            correlation_id=correlation_id,
            target_chain_id=chain_id,
            target_ref=Web3.to_checksum_address(target),
            call_selector=selector,
            timestamp_hint=hint,
            confirmations=confirmations,
        )


def encode_price_response(price: int, timestamp: int) -> bytes:
    """ABI-encode a ``(price, timestamp)`` response payload."""
    return eth_abi.encode(RESPONSE_TYPES, [price, timestamp])


def decode_price_response(payload: bytes) -> tuple[int, int]:
    """Decode a ``(int256 price, uint256 timestamp)`` response payload.

    :raises eth_abi.exceptions.DecodingError: On malformed payload.
    """
    price, timestamp = eth_abi.decode(RESPONSE_TYPES, payload)
    return price, timestamp


class ReadChannel(ABC):
    """Abstract base class for remote-read transports.

    :ivar channel_id: Channel identifier; 0 means unset.
    """

    def __init__(self, channel_id: int) -> None:
        """Initialize the channel.

        :param channel_id: Channel identifier.
        """
        self.channel_id = channel_id
        self._handler: ResponseHandler | None = None

    def set_response_handler(self, handler: ResponseHandler) -> None:
        """Register the callback receiving ``(correlation_id, payload)``."""
        self._handler = handler

    def deliver(self, correlation_id: bytes, payload: bytes) -> object:
        """Hand a response to the registered handler.

        :returns: Whatever the handler returns, or None if no handler is set.
        """
        if self._handler is None:
            return None
        return self._handler(correlation_id, payload)

    @abstractmethod
    def quote_fee(self, request: ReadRequest) -> int:
        """Quote the native fee for a read.

        :param request: Read to be sent.
        :returns: Fee in the target chain's smallest unit.
        """
        pass

    @abstractmethod
    def send(self, request: ReadRequest) -> None:
        """Issue a read. Returns without waiting for the answer.

        :param request: Read to be sent.
        """
        pass
