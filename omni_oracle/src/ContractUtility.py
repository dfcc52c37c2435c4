"""ContractUtility: Web3 initialization and contract ABI loading."""

import json
import os
from pathlib import Path

from eth_account import Account
from eth_account.signers.local import LocalAccount
from web3 import Web3
from web3.middleware import SignAndSendRawMiddlewareBuilder

# Default RPC endpoints per network name.
NETWORKS: dict[str, str] = {
    "sonic": "https://rpc.soniclabs.com",
    "arbitrum": "https://arb1.arbitrum.io/rpc",
    "ethereum": "https://ethereum-rpc.publicnode.com",
    "localnet": "http://localhost:8545",
}

# Chain ids of the networks above.
CHAIN_IDS: dict[str, int] = {
    "sonic": 146,
    "arbitrum": 42161,
    "ethereum": 1,
    "localnet": 31337,
}


class ContractUtility:
    """Utility for Web3 connection and contract ABI loading.

    :ivar network: Network RPC URL.
    :ivar w3: Configured Web3 instance.
    """

    def __init__(self, network_name: str, rpc_url: str | None = None) -> None:
        """Initialize the contract utility.

        :param network_name: Name of the network to connect to, or an RPC URL.
        :param rpc_url: Optional explicit RPC URL (takes precedence).
        """
        # RPC_URL env var overrides the default for the network
        self.network = (
            rpc_url
            or os.environ.get("RPC_URL")
            or NETWORKS.get(network_name, network_name)
        )

        self.w3 = Web3(Web3.HTTPProvider(self.network))
        if network_name == "localnet":
            # Localnet uses a well-known test account for signing
            account: LocalAccount = Account.from_key(
                "0xac0974bec39a17e36ba4a6b4d238ff944bacb478cbed5efcae784d7bf4f2ff80"
            )
            self.w3.middleware_onion.add(SignAndSendRawMiddlewareBuilder.build(account))
            self.w3.eth.default_account = account.address

    @staticmethod
    def get_contract(contract_name: str) -> tuple[list, str]:
        """Fetch ABI and bytecode of a contract from the contracts folder.

        :param contract_name: Name of the contract (e.g., "AggregatorV3Interface").
        :returns: Tuple of (abi, bytecode).
        """
        output_path = (
            Path(__file__).parent.parent.parent
            / "contracts"
            / "out"
            / f"{contract_name}.sol"
            / f"{contract_name}.json"
        ).resolve()

        with open(output_path, "r") as file:
            contract_data = json.load(file)

        abi = contract_data["abi"]
        bytecode = contract_data["bytecode"]["object"]
        return abi, bytecode
