"""Wire contracts for relay (middleware) responses."""

from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, Field


class RelayCurrency(BaseModel):
    """One token balance on one chain as indexed by the relay."""

    token_address: str = Field(..., description="Token contract (32-byte hex, zero for native)")
    balance: Decimal = Field(default=Decimal("0"), description="Held balance in human units")
    value: Decimal = Field(default=Decimal("0"), description="Fiat value of the balance")
    custodial_balance: Decimal = Field(
        default=Decimal("0"), description="Balance pre-positioned in the vault"
    )


class RelayChainBalance(BaseModel):
    """Balances of one address on one chain."""

    chain_id: int = Field(..., description="Chain ID")
    universe: str = Field(default="EVM", description="Network family")
    currencies: list[RelayCurrency] = Field(default_factory=list)
    total_usd: Decimal = Field(default=Decimal("0"))
    errored: bool = Field(default=False, description="Relay failed to index this chain")


class SubmittedRequest(BaseModel):
    """Relay acknowledgement of a settlement request."""

    request_hash: str = Field(..., description="Hash identifying the request")
    intent_id: str = Field(..., description="Relay-side intent identifier")
    explorer_url: str = Field(..., description="Intent explorer URL")


class SettlementRecord(BaseModel):
    """A settlement request as listed by the relay."""

    request_hash: str
    status: str = "unknown"
    source_chain_ids: list[int] = Field(default_factory=list)
    destination_chain_id: Optional[int] = None
    fulfilled: bool = False
    refunded: bool = False
    created_at: Optional[int] = None
    collected: list[int] = Field(
        default_factory=list, description="Indexes of token sources the relay has collected"
    )
    fee_expired: bool = Field(default=False, description="Fee quote lapsed before collection")


class CollectionFee(BaseModel):
    chain_id: int
    token_address: str
    fee: int = 0  # raw units


class SolverRoute(BaseModel):
    source_chain_id: int
    source_token_address: str
    destination_chain_id: int
    destination_token_address: str
    fee_bp: int = 0


class FeeStoreData(BaseModel):
    """Fee schedule published by the relay."""

    protocol_fee_bp: int = Field(default=0, description="Protocol fee in basis points")
    collection: list[CollectionFee] = Field(default_factory=list)
    fulfilment: list[CollectionFee] = Field(default_factory=list)
    solver_routes: list[SolverRoute] = Field(default_factory=list)


class OraclePrice(BaseModel):
    chain_id: int
    token_address: str
    price_usd: Decimal
