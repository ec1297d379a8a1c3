"""Registry and balance builders shared by the tests."""

from decimal import Decimal
from typing import Optional

from nexus_ca.balances import Asset, AssetBreakdown
from nexus_ca.chains import ChainConfig, ChainRegistry, PermitVariant, TokenConfig, Universe

CHAIN_A = 100
CHAIN_B = 200
CHAIN_C = 300

USDC_A = "0x00000000000000000000000000000000000000a1"
USDC_B = "0x00000000000000000000000000000000000000b1"
USDC_C = "0x00000000000000000000000000000000000000c1"

VAULT_A = "0x000000000000000000000000000000000000a0a0"
VAULT_B = "0x000000000000000000000000000000000000b0b0"
VAULT_C = "0x000000000000000000000000000000000000c0c0"

HOLDER = "0xf39Fd6e51aad88F6F4ce6aB8827279cffFb92266"
HOLDER_KEY = "0xac0974bec39a17e36ba4a6b4d238ff944bacb478cbed5efcae784d7bf4f2ff80"


def make_chain(chain_id: int, name: str, usdc: str, vault: str, variant: PermitVariant) -> ChainConfig:
    return ChainConfig(
        chain_id=chain_id,
        name=name,
        universe=Universe.EVM,
        rpc_url=f"https://rpc.test/{chain_id}",
        explorer_url=f"https://scan.test/{chain_id}",
        native_symbol="ETH",
        native_name="Ether",
        vault_address=vault,
        tokens=[TokenConfig("USDC", "USD Coin", usdc, 6, variant, permit_version=2)],
    )


def make_registry() -> ChainRegistry:
    """Three EVM chains, registered in A, B, C order."""
    return ChainRegistry(
        [
            make_chain(CHAIN_A, "Chain A", USDC_A, VAULT_A, PermitVariant.EIP2612_CANONICAL),
            make_chain(CHAIN_B, "Chain B", USDC_B, VAULT_B, PermitVariant.EIP2612_CANONICAL),
            make_chain(CHAIN_C, "Chain C", USDC_C, VAULT_C, PermitVariant.UNSUPPORTED),
        ]
    )


def usdc_assets(registry: ChainRegistry, balances: dict[int, str], native: Optional[dict[int, str]] = None) -> list[Asset]:
    """Build aggregated USDC (and optionally ETH) assets from per-chain balances."""
    usdc = []
    eth = []
    for chain in registry:
        if chain.chain_id in balances:
            usdc.append(
                AssetBreakdown(
                    chain_id=chain.chain_id,
                    chain_name=chain.name,
                    universe=chain.universe,
                    contract_address=chain.tokens[0].contract_address,
                    decimals=6,
                    balance=Decimal(balances[chain.chain_id]),
                )
            )
        if native and chain.chain_id in native:
            eth.append(
                AssetBreakdown(
                    chain_id=chain.chain_id,
                    chain_name=chain.name,
                    universe=chain.universe,
                    contract_address="0x0000000000000000000000000000000000000000",
                    decimals=18,
                    balance=Decimal(native[chain.chain_id]),
                    is_native=True,
                )
            )
    assets = [Asset("USDC", 6, tuple(usdc))]
    if eth:
        assets.append(Asset("ETH", 18, tuple(eth)))
    return assets
