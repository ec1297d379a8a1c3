"""Fee schedule lookups used by the fee waterfall."""

import logging
from decimal import Decimal
from typing import Optional

from nexus_ca.contracts import FeeStoreData, OraclePrice
from nexus_ca.errors import Errors
from nexus_ca.utils.units import ZERO_ADDRESS, div_decimals, equal_fold, is_native_address, round_up

logger = logging.getLogger(__name__)

BASIS_POINTS = Decimal(10_000)


class FeeStore:
    """Protocol, collection, fulfilment and solver fees.

    Missing entries mean a zero fee.
    """

    def __init__(self, data: Optional[FeeStoreData] = None):
        self.data = data or FeeStoreData()

    def protocol_fee(self, borrow: Decimal) -> Decimal:
        return borrow * Decimal(self.data.protocol_fee_bp) / BASIS_POINTS

    def collection_fee(self, chain_id: int, token_address: str, decimals: int) -> Decimal:
        for fee in self.data.collection:
            if fee.chain_id == chain_id and equal_fold(fee.token_address, token_address):
                return div_decimals(fee.fee, decimals)
        return Decimal("0")

    def fulfilment_fee(self, chain_id: int, token_address: str, decimals: int) -> Decimal:
        for fee in self.data.fulfilment:
            if fee.chain_id == chain_id and equal_fold(fee.token_address, token_address):
                return div_decimals(fee.fee, decimals)
        return Decimal("0")

    def solver_fee(
        self,
        borrow: Decimal,
        decimals: int,
        source_chain_id: int,
        source_token: str,
        destination_chain_id: int,
        destination_token: str,
    ) -> Decimal:
        """Route-dependent fee on the amount drawn from one source."""
        fee_bp = 0
        for route in self.data.solver_routes:
            if (
                route.source_chain_id == source_chain_id
                and route.destination_chain_id == destination_chain_id
                and equal_fold(route.source_token_address, source_token)
                and equal_fold(route.destination_token_address, destination_token)
            ):
                fee_bp = route.fee_bp
                break
        if not fee_bp:
            return Decimal("0")
        return round_up(Decimal(fee_bp) / BASIS_POINTS * borrow, decimals)


def gas_to_token(
    gas: Decimal,
    token_address: str,
    token_decimals: int,
    chain_id: int,
    universe: str,
    prices: list[OraclePrice],
) -> Decimal:
    """Express a native-gas amount in units of the destination token."""
    if gas == 0 or is_native_address(universe, token_address):
        return gas

    native_usd = Decimal("0")
    token_usd: Optional[Decimal] = None
    for price in prices:
        if price.chain_id != chain_id:
            continue
        if equal_fold(price.token_address, ZERO_ADDRESS):
            native_usd = price.price_usd
        elif equal_fold(price.token_address, token_address):
            token_usd = price.price_usd

    if not token_usd:
        raise Errors.internal("token missing from price oracle", chain_id=chain_id, token=token_address)

    return round_up(gas * native_usd / token_usd, token_decimals)
