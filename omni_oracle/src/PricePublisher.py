"""PricePublisher: Writes the producer's latest price to an on-chain mirror.

Consumers on other chains read the mirror with the remote-read protocol
(``getLatestPrice()``), so publishing is what makes a producer's price
visible to its peers.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Callable

from web3 import Web3

from .ContractUtility import ContractUtility

if TYPE_CHECKING:
    from web3.contract import Contract

    from .TxSubmitter import TxSubmitter

logger = logging.getLogger(__name__)


class PricePublisher:
    """Submits ``submitPrice(price, timestamp)`` transactions.

    :ivar contract: Mirror contract instance.
    :ivar submitter: Transaction submitter.
    :ivar last_published: ``(price, timestamp)`` of the last successful submission.
    """

    def __init__(
        self,
        contract: Contract,
        submitter: TxSubmitter,
        gas_price_fn: Callable[[], int] | None = None,
    ) -> None:
        """Initialize the publisher.

        :param contract: Mirror contract instance.
        :param submitter: Transaction submitter.
        :param gas_price_fn: Callable returning current gas price.
        """
        self.contract = contract
        self.submitter = submitter
        self.gas_price_fn = gas_price_fn
        self.last_published: tuple[int, int] = (0, 0)

    @classmethod
    def for_address(cls, w3: Web3, address: str, submitter: TxSubmitter) -> PricePublisher:
        """Build a publisher for a mirror contract address."""
        abi, _ = ContractUtility.get_contract("IPriceMirror")
        contract = w3.eth.contract(address=Web3.to_checksum_address(address), abi=abi)
        return cls(contract, submitter, gas_price_fn=lambda: w3.eth.gas_price)

    def publish(self, price18: int, timestamp: int) -> bool:
        """Publish a price unless it is not newer than the last published one.

        :param price18: Price at 18 decimals.
        :param timestamp: Price timestamp.
        :returns: True if a transaction was submitted successfully.
        """
        if price18 <= 0 or timestamp <= self.last_published[1]:
            logger.debug(f"Skipping publish of {price18} @ {timestamp}: nothing new")
            return False

        gas_price = self.gas_price_fn() if self.gas_price_fn else 0
        tx_params = self.contract.functions.submitPrice(price18, timestamp).build_transaction(
            {"gasPrice": gas_price}
        )
        result = self.submitter.submit_tx(tx_params)
        ok = bool(result.get("ok")) if isinstance(result, dict) else bool(result)
        if ok:
            self.last_published = (price18, timestamp)
            logger.info(f"Published price {price18} @ {timestamp}")
        else:
            logger.warning(f"Publishing price {price18} @ {timestamp} failed: {result}")
        return ok
