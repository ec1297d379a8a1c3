"""Tests for estimate-time state overrides."""

from web3 import Web3

from nexus_ca.simulation import (
    SENDER_NATIVE_BALANCE,
    allowance_storage_key,
    balance_storage_key,
    mapping_slots,
    state_override,
)

from tests.factories import HOLDER, USDC_A

SPENDER = "0x00000000000000000000000000000000000000aa"


def _padded(address: str) -> bytes:
    return bytes(12) + bytes.fromhex(address[2:])


class TestMappingSlots:
    """Storage layout lookup."""

    def test_known_tokens(self):
        assert mapping_slots("USDC", 1) == (9, 10)
        assert mapping_slots("usdt", 1) == (2, 5)

    def test_unknown_token_defaults(self):
        assert mapping_slots("DAI", 1) == (0, 1)

    def test_chain_specific_layout(self):
        """BNB chain deployments keep balances at slot 1."""
        assert mapping_slots("USDC", 56) == (1, 2)
        assert mapping_slots("DAI", 56) == (0, 1)


class TestStorageKeys:
    """Solidity mapping key derivation."""

    def test_balance_key(self):
        expected = Web3.keccak(_padded(HOLDER) + (9).to_bytes(32, "big"))

        assert balance_storage_key(HOLDER.lower(), 9) == Web3.to_hex(expected)

    def test_allowance_key_nests_owner_then_spender(self):
        inner = Web3.keccak(_padded(HOLDER) + (10).to_bytes(32, "big"))
        expected = Web3.keccak(_padded(SPENDER) + inner)

        assert allowance_storage_key(HOLDER, SPENDER, 10) == Web3.to_hex(expected)


class TestStateOverride:
    """Override maps passed to eth_estimateGas."""

    def test_token_override(self):
        override = state_override(1, "USDC", USDC_A, HOLDER, 500, spender=SPENDER, value=3)

        storage = override[USDC_A]["stateDiff"]
        assert storage[balance_storage_key(HOLDER, 9)] == "0x" + (1000).to_bytes(32, "big").hex()
        assert storage[allowance_storage_key(HOLDER, SPENDER, 10)] == "0x" + (1000).to_bytes(32, "big").hex()
        assert override[HOLDER] == {"balance": hex(SENDER_NATIVE_BALANCE + 3)}

    def test_no_spender_writes_balance_only(self):
        override = state_override(1, "USDC", USDC_A, HOLDER, 500)

        assert list(override[USDC_A]["stateDiff"]) == [balance_storage_key(HOLDER, 9)]

    def test_native_override(self):
        """A native token only sets the sender's account balance."""
        override = state_override(1, "ETH", "0x" + "00" * 20, HOLDER, 7, is_native=True)

        assert override == {HOLDER: {"balance": hex(14)}}
