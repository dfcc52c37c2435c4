"""TxSubmitterLocalnet: Transaction submission for local development."""

import os
from typing import Any

from web3 import Web3
from web3.types import TxParams

from .TxSubmitter import TxSubmitter


class TxSubmitterLocalnet(TxSubmitter):
    """Submitter that signs and sends directly via Web3.

    :ivar w3: Web3 instance with a signing middleware installed.
    """

    def __init__(self, w3: Web3 | None = None) -> None:
        """Initialize the localnet submitter.

        :param w3: Optional Web3 instance. Creates default if not provided.
        """
        self.w3 = w3
        if w3 is None:
            rpc_url = os.environ.get("RPC_URL", "http://localhost:8545")
            self.w3 = Web3(Web3.HTTPProvider(rpc_url))

    def submit_tx(self, tx: TxParams) -> Any:
        """Send a transaction and wait for its receipt.

        :param tx: Transaction parameters.
        :returns: Dict with success flag and receipt.
        """
        tx_hash = self.w3.eth.send_transaction(tx)
        tx_receipt = self.w3.eth.wait_for_transaction_receipt(tx_hash)
        return {"ok": tx_receipt["status"] == 1, "tx_receipt": tx_receipt}
