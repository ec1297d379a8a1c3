"""State overrides for estimating destination actions before funds arrive.

When the bridge has not run yet the sender holds neither the token nor
the spender allowance, so a plain eth_estimateGas of the action reverts.
Estimates are run against a state where the token's balance and
allowance mappings already credit the sender.
"""

import logging
from typing import Optional

from eth_abi import encode
from web3 import Web3

from nexus_ca.utils.units import equal_fold

logger = logging.getLogger(__name__)

# Storage slot of the balances / allowances mappings, by token symbol
BALANCE_SLOTS = {"USDC": 9, "USDT": 2}
ALLOWANCE_SLOTS = {"USDC": 10, "USDT": 5}
DEFAULT_BALANCE_SLOT = 0
DEFAULT_ALLOWANCE_SLOT = 1

# Chains whose token deployments lay storage out differently
CHAIN_SLOTS: dict[int, dict[str, tuple[int, int]]] = {
    56: {"USDC": (1, 2), "USDT": (1, 2), "ETH": (1, 2)},
    97: {"USDC": (1, 2), "USDT": (1, 2), "ETH": (1, 2)},
}

# Native balance given to the sender when overriding a token
SENDER_NATIVE_BALANCE = 100_000


def mapping_slots(symbol: str, chain_id: int) -> tuple[int, int]:
    """(balances slot, allowances slot) for symbol on chain_id."""
    for known, slots in CHAIN_SLOTS.get(chain_id, {}).items():
        if equal_fold(known, symbol):
            return slots
    symbol = symbol.upper()
    return (
        BALANCE_SLOTS.get(symbol, DEFAULT_BALANCE_SLOT),
        ALLOWANCE_SLOTS.get(symbol, DEFAULT_ALLOWANCE_SLOT),
    )


def balance_storage_key(owner: str, slot: int) -> str:
    """keccak256(owner . slot): balances[owner] in a Solidity mapping at slot."""
    owner = Web3.to_checksum_address(owner)
    return Web3.to_hex(Web3.keccak(encode(["address", "uint256"], [owner, slot])))


def allowance_storage_key(owner: str, spender: str, slot: int) -> str:
    """allowances[owner][spender] in a nested Solidity mapping at slot."""
    owner = Web3.to_checksum_address(owner)
    spender = Web3.to_checksum_address(spender)
    inner = Web3.keccak(encode(["address", "uint256"], [owner, slot]))
    return Web3.to_hex(Web3.keccak(encode(["address", "bytes32"], [spender, inner])))


def _word(value: int) -> str:
    return "0x" + value.to_bytes(32, "big").hex()


def state_override(
    chain_id: int,
    symbol: str,
    token_address: str,
    owner: str,
    amount: int,
    spender: Optional[str] = None,
    is_native: bool = False,
    value: int = 0,
) -> dict:
    """Override map crediting owner with twice amount of the token.

    For a native token only the account balance is set. For an ERC20 the
    balance mapping entry is written and, when spender is given, the
    allowance mapping entry too. The sender also gets enough native
    balance to cover any value the action sends.
    """
    credited = amount * 2
    if is_native:
        return {owner: {"balance": hex(credited)}}

    balance_slot, allowance_slot = mapping_slots(symbol, chain_id)
    storage = {balance_storage_key(owner, balance_slot): _word(credited)}
    if spender is not None:
        storage[allowance_storage_key(owner, spender, allowance_slot)] = _word(credited)

    logger.debug(
        f"State override for {symbol} on chain {chain_id}: balance slot {balance_slot}, "
        f"allowance slot {allowance_slot if spender else None}"
    )
    return {
        token_address: {"stateDiff": storage},
        owner: {"balance": hex(SENDER_NATIVE_BALANCE + value)},
    }
