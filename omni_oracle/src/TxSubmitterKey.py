"""TxSubmitterKey: Transaction submission signed with the oracle's own key."""

import logging
import os
from typing import Any

from eth_account import Account
from eth_account.signers.local import LocalAccount
from web3 import Web3
from web3.exceptions import TimeExhausted
from web3.types import TxParams

from .TxSubmitter import TxSubmitter
from .errors import InvalidConfiguration

logger = logging.getLogger(__name__)

# Seconds to wait for a publication to be mined.
RECEIPT_TIMEOUT = 120


class TxSubmitterKey(TxSubmitter):
    """Submitter that signs locally and sends raw transactions.

    The nonce is always read from the pending block so a restarted oracle
    picks up where the previous process stopped.

    :ivar w3: Web3 instance of the publication chain.
    :ivar account: Signing account.
    """

    def __init__(self, w3: Web3, private_key: str | None = None) -> None:
        """Initialize the submitter.

        :param w3: Web3 instance.
        :param private_key: Hex private key (default: ``ORACLE_PRIVATE_KEY`` env var).
        :raises InvalidConfiguration: If no key is available or it is malformed.
        """
        key = private_key or os.environ.get("ORACLE_PRIVATE_KEY")
        if not key:
            raise InvalidConfiguration("ORACLE_PRIVATE_KEY is required to publish prices")
        try:
            self.account: LocalAccount = Account.from_key(key)
        except (ValueError, TypeError) as e:
            raise InvalidConfiguration(f"Invalid oracle private key: {e}") from None
        self.w3 = w3
        logger.info(f"Publishing as {self.account.address}")

    @property
    def address(self) -> str:
        return self.account.address

    def fill(self, tx: TxParams) -> TxParams:
        """Complete sender, nonce, chain id and gas of a built transaction."""
        filled = dict(tx)
        filled["from"] = self.account.address
        filled["nonce"] = self.w3.eth.get_transaction_count(self.account.address, "pending")
        filled.setdefault("chainId", self.w3.eth.chain_id)
        if "gas" not in filled:
            filled["gas"] = self.w3.eth.estimate_gas(filled)
        return filled

    def submit_tx(self, tx: TxParams) -> Any:
        """Sign, send and wait for a transaction.

        :param tx: Transaction parameters.
        :returns: Dict with success flag, transaction hash and receipt.
        """
        filled = self.fill(tx)
        signed = self.account.sign_transaction(filled)
        tx_hash = self.w3.eth.send_raw_transaction(signed.raw_transaction)
        logger.debug(f"Sent {tx_hash.hex()} (nonce {filled['nonce']})")
        try:
            receipt = self.w3.eth.wait_for_transaction_receipt(tx_hash, timeout=RECEIPT_TIMEOUT)
        except TimeExhausted:
            logger.warning(f"Transaction {tx_hash.hex()} not mined within {RECEIPT_TIMEOUT}s")
            return {"ok": False, "tx_hash": tx_hash, "tx_receipt": None}
        return {"ok": receipt["status"] == 1, "tx_hash": tx_hash, "tx_receipt": receipt}
