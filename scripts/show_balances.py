#!/usr/bin/env python3
"""Unified Balance Report.

Prints the aggregated balance of the configured wallet across every
registered chain, and optionally its recent settlement requests.

Usage:
    python scripts/show_balances.py [--asset USDC] [--requests] [--status fulfilled]

Environment:
    NEXUS_PRIVATE_KEY      EVM private key of the wallet to inspect
    NEXUS_TRON_PRIVATE_KEY Optional Tron private key
"""

import argparse
import asyncio
import logging
import os
import sys

from nexus_ca.client import NexusClient, configure_logging
from nexus_ca.chains import build_registry
from nexus_ca.config import get_settings
from nexus_ca.errors import NexusError
from nexus_ca.wallet.local import LocalWalletProvider, TronpyWallet

logger = logging.getLogger(__name__)


async def run(args: argparse.Namespace) -> int:
    settings = get_settings()
    configure_logging(settings)

    private_key = os.getenv("NEXUS_PRIVATE_KEY")
    if not private_key:
        logger.error("NEXUS_PRIVATE_KEY is not set")
        return 1

    registry = build_registry(settings)
    tron = None
    tron_key = os.getenv("NEXUS_TRON_PRIVATE_KEY")
    if tron_key and registry.tron_chains():
        api_url = settings.tron_api_url or registry.tron_chains()[0].rpc_url
        tron = TronpyWallet(tron_key, api_url)

    client = NexusClient(LocalWalletProvider(private_key, registry), tron=tron, settings=settings, registry=registry)

    try:
        assets = await client.get_unified_balances()
    except NexusError as e:
        logger.error(f"Balance fetch failed: {e}")
        return 1

    print(f"\nBalances for {client.connection.address}\n")
    for asset in assets:
        if args.asset and asset.symbol.upper() != args.asset.upper():
            continue
        print(f"{asset.symbol:<8} {asset.balance:>20}  (${asset.value:.2f})")
        for entry in asset.breakdown:
            flag = " [errored]" if entry.errored else ""
            print(f"    {entry.chain_name:<20} {entry.balance:>20}{flag}")

    if args.requests:
        records = await client.list_requests(status=args.status, limit=args.limit)
        print(f"\nSettlement requests ({len(records)})\n")
        for record in records:
            sources = ",".join(str(c) for c in record.source_chain_ids)
            print(f"{record.request_hash}  {record.status:<12} {sources} -> {record.destination_chain_id}")

    return 0


def main() -> int:
    parser = argparse.ArgumentParser(description="Show unified balances")
    parser.add_argument("--asset", help="Only show one asset symbol")
    parser.add_argument("--requests", action="store_true", help="Also list settlement requests")
    parser.add_argument("--status", help="Filter requests by status")
    parser.add_argument("--limit", type=int, default=20, help="Maximum requests to list")
    return asyncio.run(run(parser.parse_args()))


if __name__ == "__main__":
    sys.exit(main())
