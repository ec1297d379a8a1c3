"""Relay-side collection of token sources.

Token sources are pulled into the vaults by the relay through the granted
allowances. Progress is read from the relay's request status; each source
is marked only once the relay reports it collected.
"""

import asyncio
import logging
import time

from nexus_ca.errors import Errors, NexusError
from nexus_ca.relay import RelayClient
from nexus_ca.steps import StepLedger

logger = logging.getLogger(__name__)


async def wait_for_collections(
    relay: RelayClient,
    request_hash: str,
    indexes: list[int],
    ledger: StepLedger,
    timeout: float,
    interval: float = 3.0,
) -> None:
    """Poll until every token source in indexes is collected.

    Args:
        relay: Relay client
        request_hash: Hash the relay returned on submission
        indexes: Zero-based source positions collected by the relay
        ledger: Receives IC_{i} per collected source and ICC at the end
        timeout: Seconds before giving up
        interval: Seconds between status checks
    """
    expected = set(indexes)
    seen: set[int] = set()
    deadline = time.monotonic() + timeout

    while True:
        try:
            record = await relay.get_request(request_hash)
        except NexusError as e:
            logger.debug(f"Collection status for {request_hash} unavailable: {e}")
        else:
            if record.fee_expired:
                raise Errors.rff_fee_expired(request_hash)
            for index in sorted(expected.intersection(record.collected) - seen):
                seen.add(index)
                ledger.complete(f"IC_{index + 1}")
                logger.debug(f"Source {index} of {request_hash} collected")
            if seen == expected:
                ledger.complete("ICC")
                return

        if time.monotonic() >= deadline:
            missing = sorted(expected - seen)
            logger.error(f"Collections for {request_hash} incomplete after {timeout}s: {missing}")
            raise Errors.liquidity_timeout("token collections", request_hash=request_hash, missing=missing)
        await asyncio.sleep(interval)
