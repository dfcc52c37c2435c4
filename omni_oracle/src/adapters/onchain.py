"""Web3-backed feed collaborators.

Each class wraps one deployed feed contract and exposes the protocol the
matching adapter expects. Contract errors propagate to the adapter, which
turns them into invalid quotes.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from web3 import Web3

from ..ContractUtility import ContractUtility

if TYPE_CHECKING:
    from web3.contract import Contract


def _contract(w3: Web3, address: str, contract_name: str) -> Contract:
    abi, _ = ContractUtility.get_contract(contract_name)
    return w3.eth.contract(address=Web3.to_checksum_address(address), abi=abi)


class Web3PullQuoteFeed:
    """AggregatorV3-style round feed (``latestRoundData``/``decimals``)."""

    def __init__(self, w3: Web3, address: str) -> None:
        self.address = address
        self.contract = _contract(w3, address, "AggregatorV3Interface")

    def latest_value(self) -> tuple[int, int]:
        _round_id, answer, _started_at, updated_at, _answered_in = (
            self.contract.functions.latestRoundData().call()
        )
        return answer, updated_at

    def decimal_count(self) -> int:
        return self.contract.functions.decimals().call()

    def __repr__(self) -> str:
        return f"Web3PullQuoteFeed({self.address})"


class Web3PushAggregateFeed:
    """Standard-reference feed with a structured and a legacy getter."""

    def __init__(self, w3: Web3, address: str) -> None:
        self.address = address
        self.contract = _contract(w3, address, "IStdReference")

    def price_for(self, symbol: str) -> tuple[int, int]:
        price, timestamp = self.contract.functions.getPrice(symbol).call()
        return price, timestamp

    def reference_rate(self, base: str, quote: str) -> tuple[int, int, int]:
        rate, updated_base, updated_quote = (
            self.contract.functions.getReferenceData(base, quote).call()
        )
        return rate, updated_base, updated_quote

    def __repr__(self) -> str:
        return f"Web3PushAggregateFeed({self.address})"


class Web3ProxyReadFeed:
    """Data-feed proxy exposing a single ``read()`` call."""

    def __init__(self, w3: Web3, address: str) -> None:
        self.address = address
        self.contract = _contract(w3, address, "IApi3ReaderProxy")

    def read(self) -> tuple[int, int]:
        value, timestamp = self.contract.functions.read().call()
        return value, timestamp

    def __repr__(self) -> str:
        return f"Web3ProxyReadFeed({self.address})"


class Web3ConfidenceIntervalFeed:
    """Pull-oracle contract publishing ``(price, conf, expo, publishTime)``."""

    def __init__(self, w3: Web3, address: str) -> None:
        self.address = address
        self.contract = _contract(w3, address, "IPyth")

    def price_unsafe(self, price_id: str) -> tuple[int, int, int, int]:
        id_hex = price_id[2:] if price_id.startswith("0x") else price_id
        price, confidence, exponent, publish_time = (
            self.contract.functions.getPriceUnsafe(bytes.fromhex(id_hex)).call()
        )
        return price, confidence, exponent, publish_time

    def __repr__(self) -> str:
        return f"Web3ConfidenceIntervalFeed({self.address})"


# Feed kind name -> web3 collaborator class
WEB3_FEEDS = {
    "pull_quote": Web3PullQuoteFeed,
    "push_aggregate": Web3PushAggregateFeed,
    "proxy_read": Web3ProxyReadFeed,
    "confidence_interval": Web3ConfidenceIntervalFeed,
}
