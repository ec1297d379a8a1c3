"""Intent model and the fee-waterfall builder.

The builder is greedy and deterministic: it walks candidate source chains
in registry order and draws first-fit until the fee-inclusive total is
covered. Per-source fees (collection, solver) are computed against the
source being drawn only, so adding a source never changes the amounts
already accounted for earlier sources.
"""

import logging
from dataclasses import dataclass, field, replace
from decimal import ROUND_FLOOR, Decimal
from typing import Optional

from pydantic import BaseModel, Field

from nexus_ca.balances import Asset, find_asset
from nexus_ca.chains import ChainRegistry, Universe
from nexus_ca.contracts import OraclePrice
from nexus_ca.errors import Errors
from nexus_ca.fees import FeeStore, gas_to_token
from nexus_ca.utils.units import ZERO_ADDRESS, mul_decimals

logger = logging.getLogger(__name__)

ZERO = Decimal("0")


@dataclass(frozen=True)
class DestinationRequest:
    """What the caller wants on the destination chain."""

    chain_id: int
    token: str  # symbol
    amount: Decimal
    gas: Decimal = ZERO  # native destination gas, human units
    recipient: Optional[str] = None


@dataclass(frozen=True)
class IntentSource:
    chain_id: int
    chain_name: str
    universe: Universe
    token_address: str
    symbol: str
    decimals: int
    amount: Decimal
    holder_address: str
    is_native: bool = False

    @property
    def amount_raw(self) -> int:
        return mul_decimals(self.amount, self.decimals)


@dataclass(frozen=True)
class IntentDestination:
    chain_id: int
    chain_name: str
    universe: Universe
    token_address: str
    symbol: str
    decimals: int
    amount: Decimal
    gas: Decimal = ZERO
    gas_raw: int = 0
    native_decimals: int = 18
    is_native: bool = False

    @property
    def amount_raw(self) -> int:
        return mul_decimals(self.amount, self.decimals)


@dataclass
class IntentFees:
    """Fee breakdown, in destination-token units."""

    protocol: Decimal = ZERO
    fulfilment: Decimal = ZERO
    gas_supplied: Decimal = ZERO
    collection: dict[int, Decimal] = field(default_factory=dict)
    solver: dict[int, Decimal] = field(default_factory=dict)

    @property
    def collection_total(self) -> Decimal:
        return sum(self.collection.values(), ZERO)

    @property
    def solver_total(self) -> Decimal:
        return sum(self.solver.values(), ZERO)

    @property
    def ca_gas(self) -> Decimal:
        return self.collection_total + self.fulfilment

    @property
    def total(self) -> Decimal:
        return (
            self.protocol
            + self.fulfilment
            + self.gas_supplied
            + self.collection_total
            + self.solver_total
        )


@dataclass
class Intent:
    """A fee-inclusive plan for moving value to one destination."""

    destination: IntentDestination
    sources: list[IntentSource]
    fees: IntentFees
    all_sources: list[IntentSource]
    insufficient_balance: bool
    recipient_address: str
    source_chains: list[int] = field(default_factory=list)
    accepted: bool = False

    @property
    def sources_total(self) -> Decimal:
        return sum((s.amount for s in self.sources), ZERO)

    @property
    def required_total(self) -> Decimal:
        return self.destination.amount + self.fees.total

    def to_readable(self) -> "ReadableIntent":
        return ReadableIntent(
            destination=ReadableLeg(
                chain_id=self.destination.chain_id,
                chain_name=self.destination.chain_name,
                amount=str(self.destination.amount),
            ),
            sources=[_readable_source(s) for s in self.sources],
            all_sources=[_readable_source(s) for s in self.all_sources],
            fees=ReadableFees(
                ca_gas=str(self.fees.ca_gas),
                gas_supplied=str(self.fees.gas_supplied),
                protocol=str(self.fees.protocol),
                solver=str(self.fees.solver_total),
                total=str(self.fees.total),
            ),
            sources_total=str(self.sources_total),
            token=ReadableToken(
                symbol=self.destination.symbol,
                decimals=self.destination.decimals,
                contract_address=self.destination.token_address,
            ),
            insufficient_balance=self.insufficient_balance,
        )


class ReadableLeg(BaseModel):
    chain_id: int = Field(..., description="Chain ID")
    chain_name: str = Field(..., description="Chain name")
    amount: str = Field(..., description="Amount in human units")
    contract_address: Optional[str] = Field(None, description="Token contract")


class ReadableFees(BaseModel):
    ca_gas: str = Field(..., description="Collection plus fulfilment fees")
    gas_supplied: str = Field(..., description="Destination gas, in token units")
    protocol: str
    solver: str
    total: str


class ReadableToken(BaseModel):
    symbol: str
    decimals: int
    contract_address: str


class ReadableIntent(BaseModel):
    """Display-ready form of an Intent."""

    destination: ReadableLeg
    sources: list[ReadableLeg]
    all_sources: list[ReadableLeg]
    fees: ReadableFees
    sources_total: str
    token: ReadableToken
    insufficient_balance: bool


@dataclass(frozen=True)
class MaxBridgeable:
    """Largest destination amount the current balances can settle."""

    symbol: str
    amount: Decimal
    amount_raw: int
    source_chain_ids: list[int]
    fee: Decimal


def _readable_source(source: IntentSource) -> ReadableLeg:
    return ReadableLeg(
        chain_id=source.chain_id,
        chain_name=source.chain_name,
        amount=str(source.amount),
        contract_address=source.token_address,
    )


class IntentBuilder:
    """Selects sources and computes fees for a destination request."""

    def __init__(
        self,
        registry: ChainRegistry,
        fee_store: Optional[FeeStore] = None,
        prices: Optional[list[OraclePrice]] = None,
    ):
        self.registry = registry
        self.fee_store = fee_store or FeeStore()
        self.prices = prices or []

    def build(
        self,
        request: DestinationRequest,
        assets: list[Asset],
        holders: dict[Universe, str],
        source_chains: Optional[list[int]] = None,
    ) -> Intent:
        """Run the fee waterfall.

        Args:
            request: Destination chain, token symbol, amount and gas
            assets: Aggregated balances
            holders: Connected address per network family
            source_chains: Allowed source chain ids (empty = all)
        """
        dest_chain, dest_token = self.registry.get_chain_and_token(request.chain_id, request.token)
        source_filter = list(source_chains or [])
        fees = self.fee_store

        borrow = Decimal(request.amount)
        protocol_fee = fees.protocol_fee(borrow)
        fulfilment_fee = fees.fulfilment_fee(
            dest_chain.chain_id, dest_token.contract_address, dest_token.decimals
        )
        gas = Decimal(request.gas)
        gas_in_token = ZERO
        if gas > 0:
            gas_in_token = gas_to_token(
                gas,
                dest_token.contract_address,
                dest_token.decimals,
                dest_chain.chain_id,
                dest_chain.universe.value,
                self.prices,
            )
        borrow_with_fee = borrow + gas_in_token + protocol_fee + fulfilment_fee

        intent_fees = IntentFees(protocol=protocol_fee, fulfilment=fulfilment_fee, gas_supplied=gas_in_token)
        candidates = self._candidates(request, assets, holders, dest_chain.chain_id)

        sources: list[IntentSource] = []
        accounted = ZERO
        for candidate in candidates:
            if accounted >= borrow_with_fee:
                break
            if source_filter and candidate.chain_id not in source_filter:
                continue

            collection_fee = fees.collection_fee(
                candidate.chain_id, candidate.token_address, candidate.decimals
            )
            borrow_with_fee += collection_fee
            draw = min(candidate.amount, borrow_with_fee - accounted)

            solver_fee = fees.solver_fee(
                draw,
                candidate.decimals,
                candidate.chain_id,
                candidate.token_address,
                dest_chain.chain_id,
                dest_token.contract_address,
            )
            borrow_with_fee += solver_fee
            draw = min(candidate.amount, borrow_with_fee - accounted)

            if collection_fee:
                intent_fees.collection[candidate.chain_id] = collection_fee
            if solver_fee:
                intent_fees.solver[candidate.chain_id] = solver_fee

            sources.append(replace(candidate, amount=draw))
            accounted += draw

        insufficient = accounted < borrow_with_fee
        recipient = request.recipient or holders.get(dest_chain.universe, "")

        destination = IntentDestination(
            chain_id=dest_chain.chain_id,
            chain_name=dest_chain.name,
            universe=dest_chain.universe,
            token_address=dest_token.contract_address,
            symbol=dest_token.symbol,
            decimals=dest_token.decimals,
            amount=borrow,
            gas=gas,
            gas_raw=mul_decimals(gas, dest_chain.native_decimals) if gas > 0 else 0,
            native_decimals=dest_chain.native_decimals,
            is_native=dest_token.is_native,
        )

        logger.debug(
            f"Intent built: {borrow} {dest_token.symbol} -> chain {dest_chain.chain_id}, "
            f"sources={[(s.chain_id, str(s.amount)) for s in sources]}, "
            f"required={borrow_with_fee}, accounted={accounted}, insufficient={insufficient}"
        )

        return Intent(
            destination=destination,
            sources=sources,
            fees=intent_fees,
            all_sources=candidates,
            insufficient_balance=insufficient,
            recipient_address=recipient,
            source_chains=source_filter,
        )

    def max_amount(
        self,
        chain_id: int,
        token: str,
        assets: list[Asset],
        holders: dict[Universe, str],
        source_chains: Optional[list[int]] = None,
    ) -> MaxBridgeable:
        """Draw every eligible source in full and subtract the fees that incurs.

        The result is floored to the destination token's decimals; fees at
        or above the total available give zero.
        """
        dest_chain, dest_token = self.registry.get_chain_and_token(chain_id, token)
        if find_asset(assets, token) is None:
            raise Errors.asset_not_found(token)

        source_filter = list(source_chains or [])
        candidates = [
            c
            for c in self._candidates(DestinationRequest(chain_id, token, ZERO), assets, holders, chain_id)
            if not source_filter or c.chain_id in source_filter
        ]
        fees = self.fee_store

        borrow = sum((c.amount for c in candidates), ZERO)
        fee = fees.protocol_fee(borrow) + fees.fulfilment_fee(
            dest_chain.chain_id, dest_token.contract_address, dest_token.decimals
        )
        for candidate in candidates:
            fee += fees.collection_fee(candidate.chain_id, candidate.token_address, candidate.decimals)
            fee += fees.solver_fee(
                candidate.amount,
                candidate.decimals,
                candidate.chain_id,
                candidate.token_address,
                dest_chain.chain_id,
                dest_token.contract_address,
            )

        amount = ZERO
        if fee < borrow:
            amount = (borrow - fee).quantize(Decimal(1).scaleb(-dest_token.decimals), rounding=ROUND_FLOOR)

        logger.debug(f"Max bridgeable {dest_token.symbol} to chain {chain_id}: {amount} (fees {fee})")
        return MaxBridgeable(
            symbol=dest_token.symbol,
            amount=amount,
            amount_raw=mul_decimals(amount, dest_token.decimals),
            source_chain_ids=[c.chain_id for c in candidates],
            fee=fee,
        )

    def _candidates(
        self,
        request: DestinationRequest,
        assets: list[Asset],
        holders: dict[Universe, str],
        destination_chain_id: int,
    ) -> list[IntentSource]:
        """Every non-destination chain holding the asset, in registry order."""
        asset = find_asset(assets, request.token)
        if asset is None:
            return []

        candidates = []
        for chain in self.registry:
            if chain.chain_id == destination_chain_id:
                continue
            entry = asset.on_chain(chain.chain_id)
            if entry is None or entry.available <= 0:
                continue
            holder = holders.get(chain.universe)
            if not holder:
                continue
            candidates.append(
                IntentSource(
                    chain_id=chain.chain_id,
                    chain_name=chain.name,
                    universe=chain.universe,
                    token_address=ZERO_ADDRESS if entry.is_native else entry.contract_address,
                    symbol=asset.symbol,
                    decimals=entry.decimals,
                    amount=entry.available,
                    holder_address=holder,
                    is_native=entry.is_native,
                )
            )
        return candidates

