"""Fulfilment detection for a submitted settlement request.

The wait races a wall-clock timeout against the destination vault's
Fulfilment event (EVM destinations) and the relay's request status.
Whichever finishes first ends the wait. Reaching the timeout is not an
error: the result simply reports the fill as unconfirmed.
"""

import asyncio
import logging
import time
from contextlib import aclosing
from dataclasses import dataclass
from typing import Awaitable, Optional

from nexus_ca import abi
from nexus_ca.chains import ChainConfig
from nexus_ca.relay import RelayClient
from nexus_ca.wallet.base import WalletProvider

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class FulfilmentResult:
    request_hash: str
    confirmed: bool
    timed_out: bool
    source: Optional[str] = None  # "event" or "relay"


async def _fulfilment_event(
    wallet: WalletProvider, chain: ChainConfig, vault: str, request_hash: str
) -> str:
    topics = [abi.FULFILMENT_TOPIC, request_hash]
    async with aclosing(wallet.watch_event(chain, vault, topics)) as events:
        async for log in events:
            logger.debug(f"Fulfilment event for {request_hash} in tx {log.get('transactionHash')}")
            return "event"
    raise RuntimeError("fulfilment subscription ended")


async def _relay_fulfilled(relay: RelayClient, request_hash: str, interval: float) -> str:
    while True:
        try:
            record = await relay.get_request(request_hash)
            if record.fulfilled:
                return "relay"
        except Exception as e:
            logger.debug(f"Relay status check for {request_hash} failed: {e}")
        await asyncio.sleep(interval)


async def wait_for_fulfilment(
    request_hash: bytes,
    chain: ChainConfig,
    timeout: float,
    wallet: Optional[WalletProvider] = None,
    vault: Optional[str] = None,
    relay: Optional[RelayClient] = None,
    relay_poll_interval: float = 5.0,
) -> FulfilmentResult:
    """Wait until the request is filled or timeout seconds pass."""
    hash_hex = "0x" + request_hash.hex()

    signals: list[Awaitable[str]] = []
    if wallet is not None and vault and chain.is_evm:
        signals.append(_fulfilment_event(wallet, chain, vault, hash_hex))
    if relay is not None:
        signals.append(_relay_fulfilled(relay, hash_hex, relay_poll_interval))

    pending = {asyncio.ensure_future(signal) for signal in signals}
    deadline = time.monotonic() + timeout
    try:
        while pending:
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                break
            done, pending = await asyncio.wait(
                pending, timeout=remaining, return_when=asyncio.FIRST_COMPLETED
            )
            for task in done:
                if task.exception() is not None:
                    logger.warning(f"Fulfilment signal failed for {hash_hex}: {task.exception()}")
                    continue
                logger.info(f"Request {hash_hex} fulfilled ({task.result()})")
                return FulfilmentResult(hash_hex, confirmed=True, timed_out=False, source=task.result())

        remaining = deadline - time.monotonic()
        if remaining > 0:
            await asyncio.sleep(remaining)
    finally:
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)

    logger.warning(f"No fulfilment signal for {hash_hex} within {timeout}s")
    return FulfilmentResult(hash_hex, confirmed=False, timed_out=True)
