"""Pytest configuration and fixtures."""

import os

import pytest

# Set test environment
os.environ["NEXUS_ENVIRONMENT"] = "mainnet"
os.environ["NEXUS_RELAY_URL"] = "https://relay.test"
os.environ["NEXUS_EXPLORER_URL"] = "https://explorer.test"
os.environ["NEXUS_DEBUG"] = "true"

from nexus_ca.chains import ChainRegistry
from nexus_ca.config import Settings
from nexus_ca.wallet.simulated import SimulatedWalletProvider

from tests.factories import CHAIN_A, HOLDER_KEY, make_registry


@pytest.fixture
def settings() -> Settings:
    """Settings with short waits for tests."""
    return Settings(
        relay_url="https://relay.test",
        explorer_url="https://explorer.test",
        fulfilment_timeout=0.2,
        receipt_poll_interval=0,
        tron_poll_interval=0,
        tron_poll_timeout=0.2,
        collection_timeout=0.2,
        collection_poll_interval=0,
    )


@pytest.fixture
def registry() -> ChainRegistry:
    return make_registry()


@pytest.fixture
def wallet() -> SimulatedWalletProvider:
    """Simulated EVM wallet holding the first test account."""
    return SimulatedWalletProvider(chain_id=CHAIN_A, private_key=HOLDER_KEY)
