"""Tests for multi-chain balance aggregation."""

from decimal import Decimal
from unittest.mock import AsyncMock

import pytest

from nexus_ca.balances import BalanceAggregator, find_asset
from nexus_ca.contracts import OraclePrice
from nexus_ca.rpc.evm import RpcError

from tests.factories import CHAIN_A, CHAIN_B, CHAIN_C, HOLDER, USDC_C


def _word(value: int) -> str:
    return "0x" + hex(value)[2:].rjust(64, "0")


@pytest.fixture
def rpcs():
    rpcs = {chain_id: AsyncMock() for chain_id in (CHAIN_A, CHAIN_B, CHAIN_C)}
    rpcs[CHAIN_A].batch.return_value = [hex(10**18), _word(5_000_000)]
    rpcs[CHAIN_B].batch.side_effect = ConnectionError("node down")
    rpcs[CHAIN_C].batch.return_value = [
        hex(2 * 10**18),
        RpcError("eth_call", {"message": "execution reverted"}),
    ]
    return rpcs


def _aggregator(registry, settings, rpcs, prices=None):
    relay = AsyncMock()
    relay.get_oracle_prices.return_value = prices or []
    return BalanceAggregator(registry, relay, settings, rpc_factory=lambda chain: rpcs[chain.chain_id])


class TestBalanceAggregator:
    """Per-chain fetch and grouping."""

    @pytest.mark.asyncio
    async def test_failing_chain_degrades(self, registry, settings, rpcs):
        """A down chain and a failed token read become errored zero entries."""
        assets = await _aggregator(registry, settings, rpcs).get_assets(HOLDER)

        usdc = find_asset(assets, "USDC")
        eth = find_asset(assets, "eth")
        assert [b.chain_id for b in usdc.breakdown] == [CHAIN_A, CHAIN_B, CHAIN_C]
        assert usdc.on_chain(CHAIN_A).balance == Decimal("5")
        assert usdc.on_chain(CHAIN_B).errored is True
        assert usdc.on_chain(CHAIN_C).errored is True
        assert usdc.balance == Decimal("5")
        assert eth.on_chain(CHAIN_C).balance == Decimal("2")
        assert eth.on_chain(CHAIN_A).is_native is True

    @pytest.mark.asyncio
    async def test_malformed_results_degrade(self, registry, settings, rpcs):
        """Short or null call results mark that entry errored; other chains still aggregate."""
        rpcs[CHAIN_B].batch.side_effect = None
        rpcs[CHAIN_B].batch.return_value = [hex(10**18), "0x01"]
        rpcs[CHAIN_C].batch.return_value = [None, _word(1)]

        assets = await _aggregator(registry, settings, rpcs).get_assets(HOLDER)

        usdc = find_asset(assets, "USDC")
        eth = find_asset(assets, "ETH")
        assert usdc.on_chain(CHAIN_A).balance == Decimal("5")
        assert usdc.on_chain(CHAIN_B).errored is True
        assert eth.on_chain(CHAIN_B).balance == Decimal("1")
        assert eth.on_chain(CHAIN_C).errored is True
        assert usdc.on_chain(CHAIN_C).balance == Decimal("0.000001")
        assert usdc.balance == Decimal("5.000001")

    @pytest.mark.asyncio
    async def test_assets_ordered_by_value(self, registry, settings, rpcs):
        """Assets with higher fiat value come first."""
        prices = [OraclePrice(chain_id=CHAIN_C, token_address="0x0000000000000000000000000000000000000000", price_usd=Decimal("3000"))]

        assets = await _aggregator(registry, settings, rpcs, prices).get_assets(HOLDER)

        assert [a.symbol for a in assets] == ["ETH", "USDC"]
        assert assets[0].value == Decimal("6000")

    @pytest.mark.asyncio
    async def test_native_gas_reserved(self, registry, settings, rpcs):
        """Native balances are reduced by the estimated deposit gas."""
        for rpc in rpcs.values():
            rpc.estimate_max_fee_per_gas.return_value = 10**9

        assets = await _aggregator(registry, settings, rpcs).get_assets(HOLDER, buffer_native_gas=True)

        reserved = Decimal(10**9 * settings.deposit_gas_units) / Decimal(10**18)
        eth = find_asset(assets, "ETH")
        assert eth.on_chain(CHAIN_A).balance == Decimal("1") - reserved
        assert find_asset(assets, "USDC").on_chain(CHAIN_A).balance == Decimal("5")

    @pytest.mark.asyncio
    async def test_native_zeroed_without_gas_price(self, registry, settings, rpcs):
        """No fee estimate means no spendable native balance."""
        for rpc in rpcs.values():
            rpc.estimate_max_fee_per_gas.side_effect = ConnectionError("node down")

        assets = await _aggregator(registry, settings, rpcs).get_assets(HOLDER, buffer_native_gas=True)

        assert find_asset(assets, "ETH").on_chain(CHAIN_C).balance == Decimal("0")

    @pytest.mark.asyncio
    async def test_token_address_preserved(self, registry, settings, rpcs):
        assets = await _aggregator(registry, settings, rpcs).get_assets(HOLDER)

        assert find_asset(assets, "USDC").on_chain(CHAIN_C).contract_address == USDC_C
