"""Tests for the client coordinator."""

from decimal import Decimal
from unittest.mock import AsyncMock

import pytest

from nexus_ca.client import NexusClient
from nexus_ca.contracts import FeeStoreData

from tests.factories import CHAIN_A, CHAIN_B, CHAIN_C, HOLDER, usdc_assets

OTHER = "0x70997970C51812dc3A010C7d01b50e0d17dc79C8"


@pytest.fixture
def relay():
    relay = AsyncMock()
    relay.list_requests.return_value = []
    relay.get_fee_store.return_value = FeeStoreData()
    relay.get_oracle_prices.return_value = []
    return relay


class TestNexusClient:
    """Initialization and account changes."""

    @pytest.mark.asyncio
    async def test_lazy_initialization(self, registry, settings, wallet, relay):
        """The first operation wires the components."""
        client = NexusClient(wallet, settings=settings, registry=registry, relay=relay)
        assert client.bridge is None

        await client.list_requests(status="fulfilled")

        assert client.connection.initialized is True
        assert client.connection.address == HOLDER
        relay.list_requests.assert_awaited_once_with(HOLDER, status="fulfilled", limit=100)

    @pytest.mark.asyncio
    async def test_account_change_reinitializes(self, registry, settings, wallet, relay):
        """A different connected account rebuilds the pipeline for it."""
        client = NexusClient(wallet, settings=settings, registry=registry, relay=relay)
        await client.list_requests()
        first_bridge = client.bridge

        await client.list_requests()
        assert client.bridge is first_bridge

        wallet.address_override = OTHER
        await client.list_requests()

        assert client.bridge is not first_bridge
        assert client.connection.address == OTHER
        assert relay.list_requests.await_args.args[0] == OTHER

    @pytest.mark.asyncio
    async def test_build_intent_never_raises_on_shortfall(self, registry, settings, wallet, relay):
        """Insufficient balance is reported on the intent."""
        client = NexusClient(wallet, settings=settings, registry=registry, relay=relay)
        await client.initialize()
        client.balances.get_assets = AsyncMock(return_value=[])

        intent = await client.build_and_validate_intent("USDC", "10", CHAIN_A, source_chains=[CHAIN_B])

        assert intent.insufficient_balance is True
        assert intent.destination.amount == Decimal("10")
        assert intent.source_chains == [CHAIN_B]

    @pytest.mark.asyncio
    async def test_bridge_max(self, registry, settings, wallet, relay):
        """Max bridgeable sums every other chain when fees are zero."""
        client = NexusClient(wallet, settings=settings, registry=registry, relay=relay)
        await client.initialize()
        client.balances.get_assets = AsyncMock(
            return_value=usdc_assets(registry, {CHAIN_A: "3", CHAIN_B: "20", CHAIN_C: "1.5"})
        )

        result = await client.bridge_max("USDC", CHAIN_A)

        assert result.amount == Decimal("21.5")
        assert result.source_chain_ids == [CHAIN_B, CHAIN_C]
