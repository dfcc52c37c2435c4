"""TxSubmitter: Abstract base class for transaction submission."""

from abc import abstractmethod
from typing import Any

from web3.types import TxParams


class TxSubmitter:
    """Abstract base class for transaction submitters.

    Implementations either sign with the oracle key and send the raw
    transaction, or let a local node with an unlocked account sign it.
    """

    @abstractmethod
    def submit_tx(self, tx: TxParams) -> Any:
        """Submit a transaction.

        :param tx: Transaction parameters.
        :returns: Transaction result.
        """
        pass
