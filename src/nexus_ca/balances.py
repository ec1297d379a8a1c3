"""Multi-chain balance aggregation.

EVM chains without a relay-side index are read with one batched JSON-RPC
round trip per chain (native balance plus balanceOf for every known token),
all chains in parallel. Indexed chains and Tron come from the relay.
A failing chain degrades to an errored zero entry; it never fails the
aggregate call.
"""

import asyncio
import logging
from collections import OrderedDict
from dataclasses import dataclass, field, replace
from decimal import Decimal
from typing import Callable, Optional

from eth_abi.exceptions import DecodingError

from nexus_ca import abi
from nexus_ca.chains import ChainConfig, ChainRegistry, TokenConfig, Universe
from nexus_ca.config import Settings, get_settings
from nexus_ca.contracts import OraclePrice, RelayChainBalance
from nexus_ca.relay import RelayClient
from nexus_ca.rpc.evm import EvmRpcClient, RpcError
from nexus_ca.utils.units import (
    ZERO_ADDRESS,
    div_decimals,
    equal_fold,
    from_32_bytes_hex,
    is_native_address,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AssetBreakdown:
    """Holdings of one asset on one chain."""

    chain_id: int
    chain_name: str
    universe: Universe
    contract_address: str
    decimals: int
    balance: Decimal = Decimal("0")
    custodial_balance: Decimal = Decimal("0")
    value: Decimal = Decimal("0")
    is_native: bool = False
    errored: bool = False

    @property
    def available(self) -> Decimal:
        """Directly held plus pre-positioned balance."""
        return self.balance + self.custodial_balance


@dataclass(frozen=True)
class Asset:
    """One token symbol across all chains."""

    symbol: str
    decimals: int
    breakdown: tuple[AssetBreakdown, ...] = field(default_factory=tuple)

    @property
    def balance(self) -> Decimal:
        return sum((b.available for b in self.breakdown), Decimal("0"))

    @property
    def value(self) -> Decimal:
        return sum((b.value for b in self.breakdown), Decimal("0"))

    def on_chain(self, chain_id: int) -> Optional[AssetBreakdown]:
        for entry in self.breakdown:
            if entry.chain_id == chain_id:
                return entry
        return None


@dataclass
class _Holding:
    chain: ChainConfig
    token: TokenConfig
    balance: Decimal
    custodial: Decimal = Decimal("0")
    value: Optional[Decimal] = None
    errored: bool = False


RpcFactory = Callable[[ChainConfig], EvmRpcClient]


class BalanceAggregator:
    """Builds the unified, asset-indexed balance view."""

    def __init__(
        self,
        registry: ChainRegistry,
        relay: RelayClient,
        settings: Optional[Settings] = None,
        rpc_factory: Optional[RpcFactory] = None,
    ):
        self.registry = registry
        self.relay = relay
        self.settings = settings or get_settings()
        self.rpc_factory = rpc_factory or (
            lambda chain: EvmRpcClient(chain.rpc_url, chain.chain_id, self.settings.http_timeout)
        )

    async def get_assets(
        self,
        evm_address: str,
        tron_address: Optional[str] = None,
        buffer_native_gas: bool = False,
    ) -> list[Asset]:
        """Fetch balances on every registered chain and group them by symbol."""
        rpc_chains = [c for c in self.registry.evm_chains() if not c.has_balance_index]
        indexed_evm = [c for c in self.registry.evm_chains() if c.has_balance_index]
        tron_chains = self.registry.tron_chains() if tron_address else []

        tasks = [self._fetch_rpc_chain(chain, evm_address) for chain in rpc_chains]
        if indexed_evm:
            tasks.append(self._fetch_indexed(Universe.EVM, evm_address, indexed_evm))
        if tron_chains:
            tasks.append(self._fetch_indexed(Universe.TRON, tron_address, tron_chains))
        tasks.append(self._fetch_prices())

        *results, prices = await asyncio.gather(*tasks)
        holdings: list[_Holding] = [h for chunk in results for h in chunk]

        if buffer_native_gas:
            holdings = await self._buffer_native_gas(holdings)

        assets = group_holdings(holdings, self.registry, prices)
        logger.debug(f"Aggregated {len(assets)} assets for {evm_address}")
        return assets

    # ======================
    # Per-network fetches
    # ======================

    async def _fetch_rpc_chain(self, chain: ChainConfig, address: str) -> list[_Holding]:
        rpc = self.rpc_factory(chain)
        calls: list[tuple[str, list]] = [("eth_getBalance", [address, "latest"])]
        for token in chain.tokens:
            calls.append(
                ("eth_call", [{"to": token.contract_address, "data": abi.encode_balance_of(address)}, "latest"])
            )

        try:
            results = await rpc.batch(calls)
        except Exception as e:
            logger.warning(f"Balance fetch failed on {chain.name} ({chain.chain_id}): {e}")
            return _errored_chain(chain)

        holdings = []
        tokens = [chain.native_token] + list(chain.tokens)
        for token, result in zip(tokens, results):
            if isinstance(result, RpcError):
                logger.warning(f"{token.symbol} balance failed on {chain.name}: {result}")
                holdings.append(_Holding(chain, token, Decimal("0"), errored=True))
                continue
            try:
                raw = int(result, 16) if token.is_native else abi.decode_uint(result)
            except (TypeError, ValueError, DecodingError) as e:
                logger.warning(f"Unreadable {token.symbol} balance on {chain.name} ({result!r}): {e}")
                holdings.append(_Holding(chain, token, Decimal("0"), errored=True))
                continue
            holdings.append(_Holding(chain, token, div_decimals(raw, token.decimals)))
        return holdings

    async def _fetch_indexed(
        self, universe: Universe, address: str, chains: list[ChainConfig]
    ) -> list[_Holding]:
        try:
            balances = await self.relay.get_balances(universe.value, address)
        except Exception as e:
            logger.warning(f"Relay balance index failed for {universe.value}: {e}")
            return [h for chain in chains for h in _errored_chain(chain)]

        by_chain = {b.chain_id: b for b in balances}
        holdings = []
        for chain in chains:
            entry = by_chain.get(chain.chain_id)
            if entry is None or entry.errored:
                holdings.extend(_errored_chain(chain))
                continue
            holdings.extend(_holdings_from_relay(chain, entry))
        return holdings

    async def _fetch_prices(self) -> list[OraclePrice]:
        try:
            return await self.relay.get_oracle_prices()
        except Exception as e:
            logger.warning(f"Oracle prices unavailable: {e}")
            return []

    async def _buffer_native_gas(self, holdings: list[_Holding]) -> list[_Holding]:
        """Reserve the estimated deposit gas out of EVM native balances."""

        async def reserve(holding: _Holding) -> _Holding:
            chain = holding.chain
            try:
                max_fee = await self.rpc_factory(chain).estimate_max_fee_per_gas()
            except Exception as e:
                logger.warning(f"Gas price unavailable on {chain.name}, zeroing native balance: {e}")
                return replace(holding, balance=Decimal("0"), errored=True)

            multiplier = Decimal(str(self.settings.get_deposit_gas_multiplier(chain.chain_id)))
            raw = Decimal(max_fee * self.settings.deposit_gas_units) * multiplier
            reserved = div_decimals(int(raw), chain.native_decimals)
            return replace(holding, balance=max(holding.balance - reserved, Decimal("0")))

        targets = [
            h for h in holdings
            if h.token.is_native and h.chain.is_evm and h.balance > 0 and not h.errored
        ]
        buffered = dict(zip(map(id, targets), await asyncio.gather(*(reserve(h) for h in targets))))
        return [buffered.get(id(h), h) for h in holdings]


def _errored_chain(chain: ChainConfig) -> list[_Holding]:
    tokens = [chain.native_token] + list(chain.tokens)
    return [_Holding(chain, token, Decimal("0"), errored=True) for token in tokens]


def _holdings_from_relay(chain: ChainConfig, entry: RelayChainBalance) -> list[_Holding]:
    holdings = []
    for currency in entry.currencies:
        address = from_32_bytes_hex(currency.token_address)
        token = _match_token(chain, address)
        if token is None:
            logger.debug(f"Unknown token {address} on {chain.name}, skipping")
            continue
        holdings.append(
            _Holding(
                chain,
                token,
                currency.balance,
                custodial=currency.custodial_balance,
                value=currency.value,
            )
        )
    return holdings


def _match_token(chain: ChainConfig, address: str) -> Optional[TokenConfig]:
    if is_native_address(chain.universe.value, address):
        return chain.native_token
    for token in chain.tokens:
        if equal_fold(token.contract_address, address):
            return token
    return None


def _price_of(prices: list[OraclePrice], chain_id: int, address: str) -> Decimal:
    for price in prices:
        if price.chain_id == chain_id and equal_fold(price.token_address, address):
            return price.price_usd
    return Decimal("0")


def group_holdings(
    holdings: list[_Holding],
    registry: ChainRegistry,
    prices: Optional[list[OraclePrice]] = None,
) -> list[Asset]:
    """Group per-chain holdings into assets, largest fiat value first.

    Holdings on chains missing from the registry are dropped. Breakdown
    entries keep registry order.
    """
    prices = prices or []
    order = {chain.chain_id: i for i, chain in enumerate(registry)}
    grouped: "OrderedDict[str, list[AssetBreakdown]]" = OrderedDict()
    decimals: dict[str, int] = {}

    for holding in holdings:
        chain, token = holding.chain, holding.token
        if chain.chain_id not in order:
            continue
        symbol = token.symbol.upper()
        address = ZERO_ADDRESS if token.is_native else token.contract_address
        value = holding.value
        if value is None:
            value = (holding.balance + holding.custodial) * _price_of(prices, chain.chain_id, address)
        grouped.setdefault(symbol, []).append(
            AssetBreakdown(
                chain_id=chain.chain_id,
                chain_name=chain.name,
                universe=chain.universe,
                contract_address=address,
                decimals=token.decimals or chain.native_decimals,
                balance=holding.balance,
                custodial_balance=holding.custodial,
                value=value,
                is_native=token.is_native,
                errored=holding.errored,
            )
        )
        decimals.setdefault(symbol, token.decimals or chain.native_decimals)

    assets = [
        Asset(
            symbol=symbol,
            decimals=decimals[symbol],
            breakdown=tuple(sorted(entries, key=lambda b: order[b.chain_id])),
        )
        for symbol, entries in grouped.items()
    ]
    assets.sort(key=lambda a: a.value, reverse=True)
    return assets


def find_asset(assets: list[Asset], symbol: str) -> Optional[Asset]:
    for asset in assets:
        if equal_fold(asset.symbol, symbol):
            return asset
    return None
