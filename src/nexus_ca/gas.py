"""Gas price recommendations and L2 data fees.

Recommendations come from eth_feeHistory: each tier's priority fee is
averaged over the window and added to the buffered next base fee.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Optional

from nexus_ca import abi
from nexus_ca.chains import ChainConfig
from nexus_ca.errors import Errors
from nexus_ca.rpc.evm import EvmRpcClient

logger = logging.getLogger(__name__)

FEE_HISTORY_PERCENTILES = [50, 75, 90, 99]
TIERS = ("low", "medium", "high", "ultra_high")

OP_STACK_GAS_ORACLE = "0x420000000000000000000000000000000000000F"
SCROLL_GAS_ORACLE = "0x5300000000000000000000000000000000000002"

L1_FEE_ORACLES = {
    10: OP_STACK_GAS_ORACLE,
    11155420: OP_STACK_GAS_ORACLE,
    8453: OP_STACK_GAS_ORACLE,
    84532: OP_STACK_GAS_ORACLE,
    534352: SCROLL_GAS_ORACLE,
}


@dataclass(frozen=True)
class GasPriceRecommendations:
    """Max fee per gas per tier, in wei."""

    low: int
    medium: int
    high: int
    ultra_high: int

    def get(self, tier: str) -> int:
        if tier not in TIERS:
            raise Errors.internal("unknown gas price tier", tier=tier)
        return getattr(self, tier)


async def get_gas_price_recommendations(
    rpc: EvmRpcClient,
    blocks: int = 20,
    base_fee_buffer_pct: int = 20,
) -> GasPriceRecommendations:
    try:
        history = await rpc.fee_history(blocks, FEE_HISTORY_PERCENTILES)
    except Exception as e:
        raise Errors.internal("fee history unavailable", chain_id=rpc.chain_id, error=str(e)) from e

    rewards = history.get("reward") or []
    base_fees = history.get("baseFeePerGas") or []
    next_base_fee = int(base_fees[-1], 16) if base_fees else 0
    buffered = next_base_fee + next_base_fee * base_fee_buffer_pct // 100

    averages = []
    for i in range(len(FEE_HISTORY_PERCENTILES)):
        column = [int(row[i], 16) for row in rewards if len(row) > i]
        averages.append(sum(column) // len(column) if column else 0)

    recommendations = GasPriceRecommendations(*(buffered + avg for avg in averages))
    logger.debug(f"Gas recommendations on chain {rpc.chain_id}: {recommendations}")
    return recommendations


async def recommended_gas_price(
    rpc: EvmRpcClient,
    tier: str = "medium",
    blocks: int = 20,
    base_fee_buffer_pct: int = 20,
) -> int:
    """One tier's price; a zero price is a hard failure."""
    recommendations = await get_gas_price_recommendations(rpc, blocks, base_fee_buffer_pct)
    price = recommendations.get(tier)
    if price == 0:
        raise Errors.gas_price_error(rpc.chain_id or 0)
    return price


async def get_l1_fee(chain: ChainConfig, rpc: EvmRpcClient, serialized_tx: bytes) -> int:
    """L1 data fee charged on top of execution gas; zero on other chains."""
    oracle = L1_FEE_ORACLES.get(chain.chain_id)
    if oracle is None:
        return 0
    return abi.decode_uint(await rpc.call(oracle, abi.encode_get_l1_fee(serialized_tx)))


async def gas_inputs(
    chain: ChainConfig,
    rpc: EvmRpcClient,
    serialized_tx: Optional[bytes],
    tier: str,
    blocks: int = 20,
    base_fee_buffer_pct: int = 20,
) -> tuple[int, int]:
    """(gas price, L1 fee) fetched together; either failing fails both."""
    l1_fee = get_l1_fee(chain, rpc, serialized_tx) if serialized_tx else _zero()
    price, fee = await asyncio.gather(
        recommended_gas_price(rpc, tier, blocks, base_fee_buffer_pct),
        l1_fee,
    )
    return price, fee


async def _zero() -> int:
    return 0
