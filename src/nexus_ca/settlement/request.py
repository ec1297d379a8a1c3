"""Settlement request construction and per-network signatures.

The request is ABI-encoded exactly as the vault's deposit() decodes it.
Each network family taking part (every source family plus the
destination family) signs keccak256(abi.encode(request)) with its own
message prefix; the destination family's digest is the request hash
the vault emits on fulfilment.
"""

import logging
import secrets
import time
from dataclasses import dataclass, field
from typing import Optional

from web3 import Web3

from nexus_ca import abi
from nexus_ca.chains import ChainRegistry, Universe
from nexus_ca.errors import Errors, UserRejectedError
from nexus_ca.intent import Intent
from nexus_ca.utils.units import (
    ZERO_ADDRESS,
    is_native_address,
    mul_decimals,
    to_32_bytes,
    tron_hex_to_evm,
)
from nexus_ca.wallet.base import WalletConnection

logger = logging.getLogger(__name__)

# Wire ids of the network families
UNIVERSE_IDS = {Universe.EVM: 0, Universe.TRON: 3}

EVM_MESSAGE_PREFIX = b"\x19Ethereum Signed Message:\n32"
TRON_MESSAGE_PREFIX = b"\x19TRON Signed Message:\n32"


@dataclass(frozen=True)
class RequestSource:
    universe: Universe
    chain_id: int
    token_address: str
    value: int
    is_native: bool = False


@dataclass(frozen=True)
class RequestDestination:
    token_address: str
    value: int


@dataclass(frozen=True)
class RequestParty:
    universe: Universe
    address: str  # 0x form, 20 bytes


@dataclass
class SettlementRequest:
    """The signed unit submitted to the relay and passed to deposit()."""

    sources: list[RequestSource]
    destination_universe: Universe
    destination_chain_id: int
    recipient_address: str
    destinations: list[RequestDestination]
    nonce: bytes
    expiry: int
    parties: list[RequestParty] = field(default_factory=list)

    @property
    def universes(self) -> list[Universe]:
        """Network families involved, sources first, in first-seen order."""
        seen: list[Universe] = []
        for universe in [s.universe for s in self.sources] + [self.destination_universe]:
            if universe not in seen:
                seen.append(universe)
        return seen

    def to_abi_tuple(self) -> tuple:
        return (
            [
                (UNIVERSE_IDS[s.universe], s.chain_id, to_32_bytes(s.token_address), s.value)
                for s in self.sources
            ],
            UNIVERSE_IDS[self.destination_universe],
            self.destination_chain_id,
            to_32_bytes(self.recipient_address),
            [(to_32_bytes(d.token_address), d.value) for d in self.destinations],
            int.from_bytes(self.nonce, "big"),
            self.expiry,
            [(UNIVERSE_IDS[p.universe], to_32_bytes(p.address)) for p in self.parties],
        )

    def message_hash(self) -> bytes:
        """keccak256 of the ABI-encoded request."""
        return bytes(Web3.keccak(abi.encode_request(self.to_abi_tuple())))

    def to_json(self) -> dict:
        """Relay body form."""
        return {
            "sources": [
                {
                    "universe": s.universe.value,
                    "chain_id": s.chain_id,
                    "contract_address": "0x" + to_32_bytes(s.token_address).hex(),
                    "value": str(s.value),
                }
                for s in self.sources
            ],
            "destination_universe": self.destination_universe.value,
            "destination_chain_id": self.destination_chain_id,
            "recipient_address": "0x" + to_32_bytes(self.recipient_address).hex(),
            "destinations": [
                {"contract_address": "0x" + to_32_bytes(d.token_address).hex(), "value": str(d.value)}
                for d in self.destinations
            ],
            "nonce": "0x" + self.nonce.hex(),
            "expiry": self.expiry,
            "parties": [
                {"universe": p.universe.value, "address": "0x" + to_32_bytes(p.address).hex()}
                for p in self.parties
            ],
        }


@dataclass(frozen=True)
class RequestSignature:
    universe: Universe
    address: str
    signature: bytes
    request_hash: bytes

    def to_json(self) -> dict:
        return {
            "universe": self.universe.value,
            "address": "0x" + to_32_bytes(self.address).hex(),
            "signature": "0x" + self.signature.hex(),
        }


def build_request(
    intent: Intent,
    registry: ChainRegistry,
    evm_address: Optional[str],
    tron_address: Optional[str] = None,
    expiry_seconds: int = 15 * 60,
    nonce: Optional[bytes] = None,
    now: Optional[float] = None,
) -> SettlementRequest:
    """Build the settlement request for an accepted intent.

    Destination gas is added to the destination value when the destination
    token is native, otherwise it becomes a second native destination.
    """
    destination = intent.destination
    sources = []
    for source in intent.sources:
        if source.chain_id == destination.chain_id:
            continue
        token = registry.get_token_by_address(source.chain_id, source.token_address)
        sources.append(
            RequestSource(
                universe=source.universe,
                chain_id=source.chain_id,
                token_address=_evm_form(source.token_address, source.universe),
                value=mul_decimals(source.amount, token.decimals),
                is_native=token.is_native,
            )
        )

    destinations = [RequestDestination(destination.token_address, destination.amount_raw)]
    if destination.gas_raw:
        if is_native_address(destination.universe.value, destination.token_address):
            destinations[0] = RequestDestination(
                destination.token_address, destination.amount_raw + destination.gas_raw
            )
        else:
            destinations.append(RequestDestination(ZERO_ADDRESS, destination.gas_raw))

    request = SettlementRequest(
        sources=sources,
        destination_universe=destination.universe,
        destination_chain_id=destination.chain_id,
        recipient_address=_evm_form(intent.recipient_address, destination.universe),
        destinations=destinations,
        nonce=nonce or secrets.token_bytes(32),
        expiry=int(now if now is not None else time.time()) + expiry_seconds,
    )

    for universe in request.universes:
        if universe == Universe.EVM:
            if not evm_address:
                raise Errors.wallet_not_connected(Universe.EVM.value)
            request.parties.append(RequestParty(universe, evm_address))
        elif universe == Universe.TRON:
            if not tron_address:
                raise Errors.wallet_not_connected(Universe.TRON.value)
            request.parties.append(RequestParty(universe, tron_hex_to_evm(tron_address)))

    logger.debug(
        f"Request built: {len(sources)} sources -> chain {destination.chain_id}, "
        f"universes={[u.value for u in request.universes]}"
    )
    return request


def _evm_form(address: str, universe: Universe) -> str:
    if universe == Universe.TRON and not address.startswith("0x"):
        return tron_hex_to_evm(address)
    return address


def evm_request_hash(message_hash: bytes) -> bytes:
    return bytes(Web3.keccak(EVM_MESSAGE_PREFIX + message_hash))


def tron_request_hash(message_hash: bytes) -> bytes:
    return bytes(Web3.keccak(TRON_MESSAGE_PREFIX + message_hash))


async def sign_request(request: SettlementRequest, connection: WalletConnection) -> list[RequestSignature]:
    """Collect one signature per network family involved in the request.

    A user cancelling any signature surfaces as user_rejected_intent_signature.
    """
    message_hash = request.message_hash()
    signatures = []
    try:
        for party in request.parties:
            if party.universe == Universe.EVM:
                if connection.evm is None:
                    raise Errors.wallet_not_connected(Universe.EVM.value)
                signature = await connection.evm.sign_message(message_hash)
                request_hash = evm_request_hash(message_hash)
            else:
                if connection.tron is None:
                    raise Errors.wallet_not_connected(Universe.TRON.value)
                signature = await connection.tron.sign_message(message_hash)
                request_hash = tron_request_hash(message_hash)
            signatures.append(RequestSignature(party.universe, party.address, signature, request_hash))
    except UserRejectedError as e:
        raise Errors.user_rejected_intent_signature(e) from e
    return signatures


def signature_for(signatures: list[RequestSignature], universe: Universe) -> RequestSignature:
    for signature in signatures:
        if signature.universe == universe:
            return signature
    raise Errors.internal("no signature for network family", universe=universe.value)
