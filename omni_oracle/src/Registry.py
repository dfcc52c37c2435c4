"""Registry: Read-only configuration source for messaging endpoints and oracles."""

from __future__ import annotations

from typing import TYPE_CHECKING, Protocol

from web3 import Web3

from .ContractUtility import ContractUtility

if TYPE_CHECKING:
    from web3.contract import Contract


class Registry(Protocol):
    """Per-chain configuration lookups."""

    def endpoint_for(self, chain_id: int) -> str:
        """Return the messaging endpoint address for a chain."""
        ...

    def oracle_config_for(self, chain_id: int) -> tuple[str, int, bool]:
        """Return ``(primary_oracle_ref, read_channel_id, configured)``."""
        ...


class Web3Registry:
    """Registry contract read through web3.

    :ivar address: Registry contract address.
    """

    def __init__(self, w3: Web3, address: str) -> None:
        """Initialize the registry reader.

        :param w3: Web3 instance of the local chain.
        :param address: Registry contract address.
        """
        self.address = address
        abi, _ = ContractUtility.get_contract("IOracleRegistry")
        self.contract: Contract = w3.eth.contract(
            address=Web3.to_checksum_address(address), abi=abi
        )

    def endpoint_for(self, chain_id: int) -> str:
        return self.contract.functions.getLayerZeroEndpoint(chain_id).call()

    def oracle_config_for(self, chain_id: int) -> tuple[str, int, bool]:
        primary, channel_id, configured = (
            self.contract.functions.getPriceOracleConfig(chain_id).call()
        )
        return primary, channel_id, configured
