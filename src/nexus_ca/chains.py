"""Chain and token registry for the supported settlement networks.

Chains are kept in static registration order. The fee waterfall walks
sources in exactly this order, so the order of DEFAULT_*_CHAINS matters.
"""

from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Iterable, Optional

from nexus_ca.config import Settings, get_settings
from nexus_ca.errors import Errors
from nexus_ca.utils.units import ZERO_ADDRESS, equal_fold, is_native_address


class Universe(str, Enum):
    """Network family: address and signature convention."""

    EVM = "EVM"
    TRON = "TRON"


class PermitVariant(str, Enum):
    """Off-chain allowance signature scheme supported by a token."""

    UNSUPPORTED = "unsupported"
    EIP2612_CANONICAL = "eip2612_canonical"
    DAI = "dai"
    POLYGON_2612 = "polygon_2612"
    POLYGON_EMT = "polygon_emt"


# Ethereum mainnet only accepts on-chain approvals
APPROVALS_ONLY_CHAIN_ID = 1


@dataclass(frozen=True)
class TokenConfig:
    """A token known on one chain."""

    symbol: str
    name: str
    contract_address: str
    decimals: int
    permit_variant: PermitVariant = PermitVariant.UNSUPPORTED
    permit_version: int = 0
    is_native: bool = False


@dataclass
class ChainConfig:
    """Configuration for one settlement network."""

    # Required fields (no defaults) - must come first
    chain_id: int
    name: str
    universe: Universe
    rpc_url: str
    explorer_url: str
    native_symbol: str

    # Optional fields (with defaults)
    native_name: str = ""
    native_decimals: int = 18
    vault_address: Optional[str] = None
    tokens: list[TokenConfig] = field(default_factory=list)
    has_balance_index: bool = False  # relay indexes balances for this chain

    @property
    def native_token(self) -> TokenConfig:
        return TokenConfig(
            symbol=self.native_symbol,
            name=self.native_name or self.native_symbol,
            contract_address=ZERO_ADDRESS,
            decimals=self.native_decimals,
            is_native=True,
        )

    @property
    def is_evm(self) -> bool:
        return self.universe == Universe.EVM

    @property
    def is_tron(self) -> bool:
        return self.universe == Universe.TRON

    @property
    def chain_id_hex(self) -> str:
        return hex(self.chain_id)


class ChainRegistry:
    """Ordered lookup over ChainConfig entries."""

    def __init__(self, chains: Iterable[ChainConfig]):
        self._chains: list[ChainConfig] = list(chains)

    def __iter__(self):
        return iter(self._chains)

    def __len__(self) -> int:
        return len(self._chains)

    @property
    def chains(self) -> list[ChainConfig]:
        return list(self._chains)

    def find_chain(self, chain_id: int) -> Optional[ChainConfig]:
        for chain in self._chains:
            if chain.chain_id == chain_id:
                return chain
        return None

    def get_chain(self, chain_id: int) -> ChainConfig:
        chain = self.find_chain(chain_id)
        if chain is None:
            raise Errors.chain_not_found(chain_id)
        return chain

    def get_chain_and_token(self, chain_id: int, symbol: str) -> tuple[ChainConfig, TokenConfig]:
        """Resolve (network id, symbol) to the chain and token."""
        chain = self.get_chain(chain_id)
        for token in chain.tokens:
            if equal_fold(token.symbol, symbol):
                return chain, token
        if equal_fold(chain.native_symbol, symbol):
            return chain, chain.native_token
        raise Errors.token_not_supported(symbol, chain_id)

    def get_token_by_address(self, chain_id: int, contract_address: str) -> TokenConfig:
        """Resolve (network id, contract address) to the token."""
        chain = self.get_chain(chain_id)
        if is_native_address(chain.universe.value, contract_address):
            return chain.native_token
        for token in chain.tokens:
            if equal_fold(token.contract_address, contract_address):
                return token
        raise Errors.token_not_supported(contract_address, chain_id)

    def get_vault_address(self, chain_id: int) -> str:
        chain = self.get_chain(chain_id)
        if not chain.vault_address:
            raise Errors.vault_contract_not_found(chain_id)
        return chain.vault_address

    def evm_chains(self) -> list[ChainConfig]:
        return [c for c in self._chains if c.is_evm]

    def tron_chains(self) -> list[ChainConfig]:
        return [c for c in self._chains if c.is_tron]


def _usdc(address: str, variant: PermitVariant = PermitVariant.EIP2612_CANONICAL) -> TokenConfig:
    return TokenConfig("USDC", "USD Coin", address, 6, variant, permit_version=2)


def _usdt(address: str, variant: PermitVariant = PermitVariant.UNSUPPORTED, version: int = 0) -> TokenConfig:
    return TokenConfig("USDT", "Tether USD", address, 6, variant, permit_version=version)


# ======================
# Chain Configurations
# ======================

DEFAULT_MAINNET_CHAINS: list[ChainConfig] = [
    ChainConfig(
        chain_id=1,
        name="Ethereum",
        universe=Universe.EVM,
        rpc_url="https://eth.llamarpc.com",
        explorer_url="https://etherscan.io",
        native_symbol="ETH",
        native_name="Ether",
        tokens=[
            _usdc("0xa0b86991c6218b36c1d19d4a2e9eb0ce3606eb48"),
            _usdt("0xdac17f958d2ee523a2206206994597c13d831ec7"),
            TokenConfig(
                "DAI", "Dai Stablecoin", "0x6b175474e89094c44da98b954eedeac495271d0f", 18,
                PermitVariant.DAI, permit_version=1,
            ),
        ],
    ),
    ChainConfig(
        chain_id=10,
        name="OP Mainnet",
        universe=Universe.EVM,
        rpc_url="https://mainnet.optimism.io",
        explorer_url="https://optimistic.etherscan.io",
        native_symbol="ETH",
        native_name="Ether",
        tokens=[
            _usdc("0x0b2c639c533813f4aa9d7837caf62653d097ff85"),
            _usdt("0x94b008aa00579c1307b0ef2c499ad98a8ce58e58"),
        ],
    ),
    ChainConfig(
        chain_id=56,
        name="BNB Smart Chain",
        universe=Universe.EVM,
        rpc_url="https://bsc-dataseed.binance.org",
        explorer_url="https://bscscan.com",
        native_symbol="BNB",
        native_name="BNB",
        tokens=[
            TokenConfig("USDC", "USD Coin", "0x8ac76a51cc950d9822d68b83fe1ad97b32cd580d", 18),
            TokenConfig("USDT", "Tether USD", "0x55d398326f99059ff775485246999027b3197955", 18),
        ],
    ),
    ChainConfig(
        chain_id=137,
        name="Polygon",
        universe=Universe.EVM,
        rpc_url="https://polygon-rpc.com",
        explorer_url="https://polygonscan.com",
        native_symbol="POL",
        native_name="POL",
        tokens=[
            _usdc("0x3c499c542cef5e3811e1192ce70d8cc03d5c3359"),
            _usdt("0xc2132d05d31c914a87c6611c10748aeb04b58e8f", PermitVariant.POLYGON_EMT, 1),
        ],
    ),
    ChainConfig(
        chain_id=8453,
        name="Base",
        universe=Universe.EVM,
        rpc_url="https://mainnet.base.org",
        explorer_url="https://basescan.org",
        native_symbol="ETH",
        native_name="Ether",
        tokens=[_usdc("0x833589fcd6edb6e08f4c7c32d4f71b54bda02913")],
    ),
    ChainConfig(
        chain_id=42161,
        name="Arbitrum One",
        universe=Universe.EVM,
        rpc_url="https://arb1.arbitrum.io/rpc",
        explorer_url="https://arbiscan.io",
        native_symbol="ETH",
        native_name="Ether",
        tokens=[
            _usdc("0xaf88d065e77c8cc2239327c5edb3a432268e5831"),
            _usdt("0xfd086bc7cd5c481dcc9c85ebe478a1c0b69fcbb9", PermitVariant.EIP2612_CANONICAL, 1),
        ],
    ),
    ChainConfig(
        chain_id=43114,
        name="Avalanche",
        universe=Universe.EVM,
        rpc_url="https://api.avax.network/ext/bc/C/rpc",
        explorer_url="https://snowtrace.io",
        native_symbol="AVAX",
        native_name="Avalanche",
        tokens=[
            _usdc("0xb97ef9ef8734c71904d8002f8b6bc66dd9c48a6e"),
            _usdt("0x9702230a8ea53601f5cd2dc00fdbc13d4df4a8c7"),
        ],
    ),
    ChainConfig(
        chain_id=534352,
        name="Scroll",
        universe=Universe.EVM,
        rpc_url="https://rpc.scroll.io",
        explorer_url="https://scrollscan.com",
        native_symbol="ETH",
        native_name="Ether",
        tokens=[
            _usdc("0x06efdbff2a14a7c8e15944d1f4a48f9f95f663a4", PermitVariant.UNSUPPORTED),
            _usdt("0xf55bec9cafdbe8730f096aa55dad6d22d44099df"),
        ],
    ),
    ChainConfig(
        chain_id=728126428,
        name="Tron",
        universe=Universe.TRON,
        rpc_url="https://api.trongrid.io",
        explorer_url="https://tronscan.org/#",
        native_symbol="TRX",
        native_name="Tron",
        native_decimals=6,
        has_balance_index=True,
        tokens=[_usdt("0xa614f803b6fd780986a42c78ec9c7f77e6ded13c")],
    ),
]

DEFAULT_TESTNET_CHAINS: list[ChainConfig] = [
    ChainConfig(
        chain_id=11155420,
        name="OP Sepolia",
        universe=Universe.EVM,
        rpc_url="https://sepolia.optimism.io",
        explorer_url="https://sepolia-optimism.etherscan.io",
        native_symbol="ETH",
        native_name="Ether",
        tokens=[_usdc("0x5fd84259d66cd46123540766be93dfe6d43130d7")],
    ),
    ChainConfig(
        chain_id=84532,
        name="Base Sepolia",
        universe=Universe.EVM,
        rpc_url="https://sepolia.base.org",
        explorer_url="https://sepolia.basescan.org",
        native_symbol="ETH",
        native_name="Ether",
        tokens=[_usdc("0x036cbd53842c5426634e7929541ec2318f3dcf7e")],
    ),
    ChainConfig(
        chain_id=421614,
        name="Arbitrum Sepolia",
        universe=Universe.EVM,
        rpc_url="https://sepolia-rollup.arbitrum.io/rpc",
        explorer_url="https://sepolia.arbiscan.io",
        native_symbol="ETH",
        native_name="Ether",
        tokens=[_usdc("0x75faf114eafb1bdbe2f0316df893fd58ce46aa4d")],
    ),
    ChainConfig(
        chain_id=80002,
        name="Polygon Amoy",
        universe=Universe.EVM,
        rpc_url="https://rpc-amoy.polygon.technology",
        explorer_url="https://amoy.polygonscan.com",
        native_symbol="POL",
        native_name="POL",
        tokens=[_usdc("0x41e94eb019c0762f9bfcf9fb1e58725bfb0e7582")],
    ),
    ChainConfig(
        chain_id=2494104990,
        name="Tron Shasta",
        universe=Universe.TRON,
        rpc_url="https://api.shasta.trongrid.io",
        explorer_url="https://shasta.tronscan.org/#",
        native_symbol="TRX",
        native_name="Tron",
        native_decimals=6,
        has_balance_index=True,
        tokens=[_usdt("0x42a1e39aefa49290f2b3f9ed688d7cecf86cd6e0")],
    ),
]


def build_registry(settings: Optional[Settings] = None) -> ChainRegistry:
    """Build the registry for the configured environment, applying overrides."""
    settings = settings or get_settings()
    base = DEFAULT_TESTNET_CHAINS if settings.is_testnet else DEFAULT_MAINNET_CHAINS
    chains = []
    for chain in base:
        chains.append(
            replace(
                chain,
                rpc_url=settings.get_rpc_override(chain.chain_id) or chain.rpc_url,
                vault_address=settings.get_vault_address(chain.chain_id) or chain.vault_address,
                tokens=list(chain.tokens),
            )
        )
    return ChainRegistry(chains)
