#!/usr/bin/env python3
"""Omni Oracle.

Aggregates the native token's USD price from several on-chain feeds,
derives the asset's USD price from liquidity pools, and keeps it consistent
with peer oracles on other chains.

Start via Docker Compose with env vars. CLI args take precedence.
"""

import argparse
import asyncio
import logging
import os
import sys

from .src.ContractUtility import CHAIN_IDS, NETWORKS, ContractUtility
from .src.LiquidityRatioEstimator import DEFAULT_TWAP_PERIOD, LiquidityRatioEstimator, pool_config_for
from .src.ModeStateMachine import OracleMode
from .src.OmniOracle import OmniOracle
from .src.PeerSyncManager import DEFAULT_REQUEST_TTL
from .src.PricePublisher import PricePublisher
from .src.ReadChannelRpc import RpcReadChannel
from .src.Registry import Web3Registry
from .src.TxSubmitterKey import TxSubmitterKey
from .src.TxSubmitterLocalnet import TxSubmitterLocalnet
from .src.adapters import WEB3_FEEDS, FeedKind, FeedSource, HermesConfidenceIntervalFeed, get_available_kinds
from .src.errors import InvalidConfiguration

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger(__name__)


_LOCATION_FORMAT = "expected address:weight:max_staleness[:extra]"


def _split_location(location: str) -> tuple[str, str, str, str]:
    """Split ``address:weight:max_staleness[:extra]`` from the right.

    Only URL addresses may contain colons.
    """
    parts = location.rsplit(":", 3)
    if len(parts) == 4 and parts[1].strip().isdigit() and parts[2].strip().isdigit():
        address, weight, max_staleness, extra = parts
    else:
        parts = location.rsplit(":", 2)
        if len(parts) != 3:
            raise ValueError(_LOCATION_FORMAT)
        address, weight, max_staleness = parts
        extra = ""
    if ":" in address and not address.startswith("http"):
        raise ValueError(_LOCATION_FORMAT)
    return address, weight, max_staleness, extra


def parse_feed_specs(feeds_str: str | None) -> list[dict]:
    """Parse the comma-separated feed list.

    Format: name=kind@address:weight:max_staleness[:extra]
    Example: chainlink=pull_quote@0xc76d...:40:3600,band=push_aggregate@0x6E...:30:3600:S

    The address of a confidence_interval feed may be a Hermes URL
    (``pyth=confidence_interval@https://hermes.pyth.network:30:60:0xe62d...``);
    URL feeds always carry the price id, so a port in the URL is unambiguous.

    :param feeds_str: Comma-separated feed string.
    :returns: List of dicts with name, kind, address, weight, max_staleness, extra.
    :raises InvalidConfiguration: On a malformed entry.
    """
    if not feeds_str:
        return []

    specs = []
    for item in feeds_str.split(","):
        item = item.strip()
        if not item:
            continue
        try:
            name, rest = item.split("=", 1)
            kind, rest = rest.split("@", 1)
            address, weight, max_staleness, extra = _split_location(rest)
            specs.append(
                {
                    "name": name.strip().lower(),
                    "kind": kind.strip().lower(),
                    "address": address.strip(),
                    "weight": int(weight),
                    "max_staleness": int(max_staleness),
                    "extra": extra.strip(),
                }
            )
        except ValueError as e:
            raise InvalidConfiguration(f"Malformed feed '{item}': {e}") from None
    return specs


def parse_chain_map(map_str: str | None) -> dict[int, str]:
    """Parse a comma-separated ``chain_id=value`` list into a dictionary.

    Used for both peers (``146=0xabc...``) and peer RPC URLs
    (``42161=https://arb1.arbitrum.io/rpc``).

    :param map_str: Comma-separated string.
    :returns: Dict mapping chain id to value.
    :raises InvalidConfiguration: On a malformed entry.
    """
    if not map_str:
        return {}

    result = {}
    for item in map_str.split(","):
        item = item.strip()
        if not item:
            continue
        if "=" not in item:
            raise InvalidConfiguration(f"Malformed entry '{item}', expected chain_id=value")
        chain_id, value = item.split("=", 1)
        try:
            result[int(chain_id.strip())] = value.strip()
        except ValueError:
            raise InvalidConfiguration(f"Invalid chain id in '{item}'") from None
    return result


def build_sources(w3, specs: list[dict]) -> list[FeedSource]:
    """Create feed sources backed by web3 collaborators.

    :param w3: Web3 instance of the local chain.
    :param specs: Parsed feed specs.
    :returns: List of FeedSource.
    :raises InvalidConfiguration: On an unknown kind or invalid source.
    """
    sources = []
    for spec in specs:
        feed_cls = WEB3_FEEDS.get(spec["kind"])
        if feed_cls is None:
            raise InvalidConfiguration(
                f"Unknown feed kind '{spec['kind']}'. Available: {', '.join(get_available_kinds())}"
            )
        if spec["address"].startswith("http"):
            # Off-chain price service instead of a contract
            if spec["kind"] != FeedKind.CONFIDENCE_INTERVAL.value:
                raise InvalidConfiguration(
                    f"Feed '{spec['name']}': only confidence_interval feeds can use a URL"
                )
            endpoint = HermesConfidenceIntervalFeed(spec["address"])
        else:
            endpoint = feed_cls(w3, spec["address"])
        sources.append(
            FeedSource(
                name=spec["name"],
                kind=spec["kind"],
                endpoint=endpoint,
                weight=spec["weight"],
                max_staleness=spec["max_staleness"],
                extra=spec["extra"],
            )
        )
    return sources


def main() -> None:
    """Main entry point for the Omni Oracle CLI."""
    available_kinds = get_available_kinds()

    parser = argparse.ArgumentParser(
        description="Omni Oracle: Cross-chain asset/USD price oracle",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=f"""
Available feed kinds:
  {', '.join(available_kinds)}

Examples:
  # Producer on Sonic with three feeds and one pool
  python -m omni_oracle.main --mode producer --network sonic \\
      --feeds chainlink=pull_quote@0xc76d...:40:3600,band=push_aggregate@0x6E...:30:3600:S \\
      --pools 0x8B4e... --asset-token 0x69Dc...

  # Consumer on Arbitrum reading the Sonic producer
  python -m omni_oracle.main --mode consumer --network arbitrum \\
      --peers 146=0x692E... --peer-rpc-urls 146=https://rpc.soniclabs.com \\
      --read-channel-id 1

Environment variables (CLI args take precedence):
  CHAIN_ID, NETWORK, RPC_URL, MODE, FEEDS, MIN_VALID_SOURCES, POOLS,
  ASSET_TOKEN, TWAP_PERIOD, PEERS, PEER_RPC_URLS, READ_CHANNEL_ID,
  REGISTRY_ADDRESS, PUBLISH_ADDRESS, UPDATE_PERIOD, REQUEST_PERIOD,
  MAX_DEVIATION_BPS, GRACE_PERIOD, MIN_PEER_AGREEMENT, PEER_AGREEMENT_BPS,
  REQUEST_TTL
""",
    )

    parser.add_argument(
        "--network",
        type=str,
        help=f"Network to connect to ({', '.join(NETWORKS)})",
        default=os.environ.get("NETWORK") or "localnet",
    )

    parser.add_argument(
        "--rpc-url",
        dest="rpc_url",
        type=str,
        help="RPC URL overriding the network default",
        default=os.environ.get("RPC_URL"),
    )

    parser.add_argument(
        "--chain-id",
        dest="chain_id",
        type=int,
        help="Local chain id (default: derived from --network)",
        default=int(os.environ.get("CHAIN_ID") or "0"),
    )

    parser.add_argument(
        "--mode",
        type=str,
        choices=["producer", "consumer"],
        help="Oracle role (default: producer)",
        default=os.environ.get("MODE") or "producer",
    )

    parser.add_argument(
        "--feeds",
        type=str,
        help="Comma-separated feeds: name=kind@address:weight:max_staleness[:extra] "
        "(a confidence_interval address may be a Hermes URL)",
        default=os.environ.get("FEEDS"),
    )

    parser.add_argument(
        "--min-valid-sources",
        dest="min_valid_sources",
        type=int,
        help="Minimum valid feeds for a non-degraded price (1..4, default: 2)",
        default=int(os.environ.get("MIN_VALID_SOURCES") or "2"),
    )

    parser.add_argument(
        "--pools",
        type=str,
        help="Comma-separated asset/native pool addresses (at most 2)",
        default=os.environ.get("POOLS"),
    )

    parser.add_argument(
        "--asset-token",
        dest="asset_token",
        type=str,
        help="Address of the priced asset token (required with --pools)",
        default=os.environ.get("ASSET_TOKEN"),
    )

    parser.add_argument(
        "--twap-period",
        dest="twap_period",
        type=int,
        help=f"TWAP window in seconds, 0 to disable (default: {DEFAULT_TWAP_PERIOD})",
        default=int(os.environ.get("TWAP_PERIOD") or str(DEFAULT_TWAP_PERIOD)),
    )

    parser.add_argument(
        "--peers",
        type=str,
        help="Comma-separated peer oracles: chain_id=address",
        default=os.environ.get("PEERS"),
    )

    parser.add_argument(
        "--peer-rpc-urls",
        dest="peer_rpc_urls",
        type=str,
        help="Comma-separated peer RPC endpoints: chain_id=url",
        default=os.environ.get("PEER_RPC_URLS"),
    )

    parser.add_argument(
        "--read-channel-id",
        dest="read_channel_id",
        type=int,
        help="Read channel id, 0 for unset (default: 0)",
        default=int(os.environ.get("READ_CHANNEL_ID") or "0"),
    )

    parser.add_argument(
        "--registry-address",
        dest="registry_address",
        type=str,
        help="Address of the oracle registry contract (optional)",
        default=os.environ.get("REGISTRY_ADDRESS"),
    )

    parser.add_argument(
        "--publish-address",
        dest="publish_address",
        type=str,
        help="Address of the price mirror contract to publish to (optional; "
        "outside localnet the signing key is read from ORACLE_PRIVATE_KEY)",
        default=os.environ.get("PUBLISH_ADDRESS"),
    )

    parser.add_argument(
        "--update-period",
        dest="update_period",
        type=int,
        help="Seconds between loop iterations (minimum: 1, default: 60)",
        default=int(os.environ.get("UPDATE_PERIOD") or "60"),
    )

    parser.add_argument(
        "--request-period",
        dest="request_period",
        type=int,
        help="Seconds between consumer read rounds (minimum: 1, default: 300)",
        default=int(os.environ.get("REQUEST_PERIOD") or "300"),
    )

    parser.add_argument(
        "--max-deviation-bps",
        dest="max_deviation_bps",
        type=int,
        help="Max change vs previous price in bps, 0 to disable (default: 0)",
        default=int(os.environ.get("MAX_DEVIATION_BPS") or "0"),
    )

    parser.add_argument(
        "--grace-period",
        dest="grace_period",
        type=int,
        help="Seconds after the first price without deviation checks (default: 0)",
        default=int(os.environ.get("GRACE_PERIOD") or "0"),
    )

    parser.add_argument(
        "--min-peer-agreement",
        dest="min_peer_agreement",
        type=int,
        help="Fresh peers that must agree before adopting a price (default: 1)",
        default=int(os.environ.get("MIN_PEER_AGREEMENT") or "1"),
    )

    parser.add_argument(
        "--peer-agreement-bps",
        dest="peer_agreement_bps",
        type=int,
        help="Max distance in bps for peers to agree (default: 100)",
        default=int(os.environ.get("PEER_AGREEMENT_BPS") or "100"),
    )

    parser.add_argument(
        "--request-ttl",
        dest="request_ttl",
        type=int,
        help=f"Seconds before an unanswered read expires (default: {DEFAULT_REQUEST_TTL})",
        default=int(os.environ.get("REQUEST_TTL") or str(DEFAULT_REQUEST_TTL)),
    )

    parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Enable verbose (DEBUG) logging",
    )

    args = parser.parse_args()

    # Configure logging level
    if args.verbose:
        logging.getLogger().setLevel(logging.DEBUG)

    # Validate arguments
    if args.update_period < 1:
        parser.error("--update-period must be at least 1 second")

    if args.request_period < 1:
        parser.error("--request-period must be at least 1 second")

    if not 1 <= args.min_valid_sources <= 4:
        parser.error("--min-valid-sources must be between 1 and 4")

    chain_id = args.chain_id or CHAIN_IDS.get(args.network)
    if not chain_id:
        parser.error(f"No chain id known for network {args.network}, use --chain-id")

    try:
        feed_specs = parse_feed_specs(args.feeds)
        peers = parse_chain_map(args.peers)
        peer_rpc_urls = parse_chain_map(args.peer_rpc_urls)
    except InvalidConfiguration as e:
        parser.error(str(e))

    pool_addresses = [p.strip() for p in (args.pools or "").split(",") if p.strip()]
    if pool_addresses and not args.asset_token:
        parser.error("--asset-token is required with --pools")

    if args.mode == "producer" and not feed_specs:
        parser.error("At least one feed must be specified in producer mode")

    # Log configuration
    logger.info("=" * 60)
    logger.info("Omni Oracle - Cross-Chain Asset Price")
    logger.info("=" * 60)
    logger.info(f"Network:           {args.network} (chain {chain_id})")
    logger.info(f"Mode:              {args.mode}")
    logger.info(f"Feeds:             {', '.join(s['name'] for s in feed_specs) or 'none'}")
    logger.info(f"Min Sources:       {args.min_valid_sources}")
    logger.info(f"Pools:             {', '.join(pool_addresses) or 'none'}")
    logger.info(
        f"TWAP Period:       {args.twap_period}s" if args.twap_period > 0 else "TWAP:              disabled"
    )
    logger.info(f"Peers:             {', '.join(str(c) for c in peers) or 'none'}")
    logger.info(f"Read Channel:      {args.read_channel_id or 'unset'}")
    logger.info(
        f"Max Deviation:     {args.max_deviation_bps} bps"
        if args.max_deviation_bps
        else "Max Deviation:     disabled"
    )
    logger.info(f"Update Period:     {args.update_period}s")
    logger.info(f"Request Period:    {args.request_period}s")
    logger.info("=" * 60)

    try:
        contract_utility = ContractUtility(args.network, args.rpc_url)
        w3 = contract_utility.w3

        estimator = LiquidityRatioEstimator(
            twap_period=args.twap_period if args.twap_period > 0 else DEFAULT_TWAP_PERIOD,
            twap_enabled=args.twap_period > 0,
        )

        read_channel = None
        if peer_rpc_urls:
            read_channel = RpcReadChannel.from_rpc_urls(args.read_channel_id, peer_rpc_urls)

        publisher = None
        if args.publish_address:
            submitter = (
                TxSubmitterLocalnet(w3) if args.network == "localnet" else TxSubmitterKey(w3)
            )
            publisher = PricePublisher.for_address(w3, args.publish_address, submitter)

        oracle = OmniOracle(
            chain_id=chain_id,
            sources=build_sources(w3, feed_specs),
            min_valid_sources=args.min_valid_sources,
            estimator=estimator,
            read_channel=read_channel,
            publisher=publisher,
            max_deviation_bps=args.max_deviation_bps,
            grace_period=args.grace_period,
            min_peer_agreement=args.min_peer_agreement,
            peer_agreement_bps=args.peer_agreement_bps,
            request_ttl=args.request_ttl,
            update_period=args.update_period,
            request_period=args.request_period,
        )

        if args.registry_address:
            oracle.configure_from_registry(Web3Registry(w3, args.registry_address))

        for peer_chain_id, peer_address in peers.items():
            oracle.register_peer(peer_chain_id, peer_address)

        if pool_addresses:
            oracle.configure_pools(
                [pool_config_for(w3, address, args.asset_token) for address in pool_addresses]
            )

        oracle.set_mode(OracleMode[args.mode.upper()])
        asyncio.run(oracle.run())
    except InvalidConfiguration as e:
        logger.error(f"Invalid configuration: {e}")
        sys.exit(1)
    except KeyboardInterrupt:
        logger.info("Shutting down...")
    except Exception as e:
        logger.error(f"Fatal error: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
