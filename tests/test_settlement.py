"""Tests for settlement requests, deposits and fulfilment detection."""

import asyncio
from decimal import Decimal
from unittest.mock import AsyncMock

import pytest
from eth_account import Account
from eth_account.messages import encode_defunct

from nexus_ca import abi
from nexus_ca.chains import Universe
from nexus_ca.contracts import OraclePrice, SettlementRecord
from nexus_ca.errors import ErrorCode, NexusError
from nexus_ca.intent import DestinationRequest, IntentBuilder
from nexus_ca.rpc.evm import RpcError
from nexus_ca.settlement import DepositSender, build_request, sign_request, wait_for_fulfilment
from nexus_ca.settlement.request import (
    UNIVERSE_IDS,
    evm_request_hash,
    signature_for,
)
from nexus_ca.utils.units import ZERO_ADDRESS
from nexus_ca.wallet import WalletConnection

from tests.factories import CHAIN_A, CHAIN_B, CHAIN_C, HOLDER, USDC_A, VAULT_B, usdc_assets

HOLDERS = {Universe.EVM: HOLDER}


def _intent(registry, token="USDC", amount="100", gas="0", balances=None, native=None, prices=None):
    if balances is None:
        balances = {CHAIN_B: "60", CHAIN_C: "50"}
    assets = usdc_assets(registry, balances, native)
    return IntentBuilder(registry, prices=prices).build(
        DestinationRequest(CHAIN_A, token, Decimal(amount), Decimal(gas)), assets, HOLDERS
    )


class TestBuildRequest:
    """Settlement request construction."""

    def test_sources_and_parties(self, registry):
        """Sources are raw amounts; the EVM family signs once."""
        request = build_request(_intent(registry), registry, HOLDER, now=1_000, nonce=b"\x01" * 32)

        assert [(s.chain_id, s.value) for s in request.sources] == [
            (CHAIN_B, 60_000_000),
            (CHAIN_C, 40_000_000),
        ]
        assert request.expiry == 1_000 + 900
        assert request.universes == [Universe.EVM]
        assert [(p.universe, p.address) for p in request.parties] == [(Universe.EVM, HOLDER)]
        assert request.destinations[0].value == 100_000_000

    def test_gas_becomes_native_destination(self, registry):
        """Destination gas for a token request is a second, native destination."""
        prices = [
            OraclePrice(chain_id=CHAIN_A, token_address=ZERO_ADDRESS, price_usd=Decimal("2000")),
            OraclePrice(chain_id=CHAIN_A, token_address=USDC_A, price_usd=Decimal("1")),
        ]
        intent = _intent(registry, amount="10", gas="0.001", prices=prices)

        request = build_request(intent, registry, HOLDER)

        assert [(d.token_address, d.value) for d in request.destinations] == [
            (intent.destination.token_address, 10_000_000),
            (ZERO_ADDRESS, 10**15),
        ]

    def test_gas_added_to_native_destination(self, registry):
        """Destination gas on a native request is folded into its value."""
        intent = _intent(registry, token="ETH", amount="1", gas="0.5", balances={}, native={CHAIN_B: "5"})

        request = build_request(intent, registry, HOLDER)

        assert len(request.destinations) == 1
        assert request.destinations[0].value == 15 * 10**17
        assert request.sources[0].is_native is True

    def test_missing_wallet(self, registry):
        """An EVM party needs a connected EVM address."""
        with pytest.raises(NexusError) as exc:
            build_request(_intent(registry), registry, None)

        assert exc.value.code == ErrorCode.WALLET_NOT_CONNECTED

    def test_abi_tuple_and_json(self, registry):
        """The encoded tuple uses wire family ids and 32-byte addresses."""
        request = build_request(_intent(registry), registry, HOLDER, nonce=b"\x00" * 31 + b"\x05")

        encoded = request.to_abi_tuple()
        body = request.to_json()

        assert encoded[0][0][0] == UNIVERSE_IDS[Universe.EVM]
        assert encoded[5] == 5
        assert len(encoded[3]) == 32
        assert body["sources"][0]["value"] == "60000000"
        assert body["recipient_address"].endswith(HOLDER[2:].lower())
        assert abi.encode_request(encoded)


class TestSignRequest:
    """Per-family signatures."""

    @pytest.mark.asyncio
    async def test_evm_signature(self, registry, wallet):
        """The EVM party signs the message hash with the personal-sign prefix."""
        request = build_request(_intent(registry), registry, HOLDER)

        signatures = await sign_request(request, WalletConnection(evm=wallet))

        signature = signature_for(signatures, Universe.EVM)
        message_hash = request.message_hash()
        recovered = Account.recover_message(encode_defunct(primitive=message_hash), signature=signature.signature)
        assert recovered == HOLDER
        assert signature.request_hash == evm_request_hash(message_hash)

    @pytest.mark.asyncio
    async def test_rejected(self, registry, wallet):
        """A cancelled signature maps to USER_DENIED_INTENT_SIGNATURE."""
        wallet.reject_signatures = True
        request = build_request(_intent(registry), registry, HOLDER)

        with pytest.raises(NexusError) as exc:
            await sign_request(request, WalletConnection(evm=wallet))

        assert exc.value.code == ErrorCode.USER_DENIED_INTENT_SIGNATURE

    def test_signature_for_missing_family(self):
        with pytest.raises(NexusError):
            signature_for([], Universe.TRON)


class TestDeposit:
    """Native deposits."""

    @pytest.mark.asyncio
    async def test_evm_deposit(self, registry, settings, wallet):
        """Deposit is simulated, sent with value to the vault, then awaited."""
        rpc = AsyncMock()
        intent = _intent(registry, token="ETH", amount="1", balances={}, native={CHAIN_B: "5"})
        request = build_request(intent, registry, HOLDER)
        signatures = await sign_request(request, WalletConnection(evm=wallet))
        sender = DepositSender(registry, WalletConnection(evm=wallet), settings, rpc_factory=lambda chain: rpc)

        wait = await sender.deposit(request, 0, signatures[0])
        await wait()

        chain_id, tx = wallet.sent[0]
        assert chain_id == CHAIN_B
        assert tx.to == VAULT_B
        assert tx.value == 10**18
        rpc.request.assert_awaited_once()
        rpc.wait_for_receipt.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_simulation_failure(self, registry, settings, wallet):
        """A reverting eth_call stops the deposit before sending."""
        rpc = AsyncMock()
        rpc.request.side_effect = RpcError("eth_call", {"code": 3, "message": "execution reverted"})
        intent = _intent(registry, token="ETH", amount="1", balances={}, native={CHAIN_B: "5"})
        request = build_request(intent, registry, HOLDER)
        signatures = await sign_request(request, WalletConnection(evm=wallet))
        sender = DepositSender(registry, WalletConnection(evm=wallet), settings, rpc_factory=lambda chain: rpc)

        with pytest.raises(NexusError) as exc:
            await sender.deposit(request, 0, signatures[0])

        assert exc.value.code == ErrorCode.SIMULATION_FAILED
        assert wallet.sent == []

    @pytest.mark.asyncio
    async def test_rejected_deposit(self, registry, settings, wallet):
        """Declining the deposit transaction is USER_DENIED_DEPOSIT."""
        rpc = AsyncMock()
        intent = _intent(registry, token="ETH", amount="1", balances={}, native={CHAIN_B: "5"})
        request = build_request(intent, registry, HOLDER)
        signatures = await sign_request(request, WalletConnection(evm=wallet))
        wallet.reject_transactions = True
        sender = DepositSender(registry, WalletConnection(evm=wallet), settings, rpc_factory=lambda chain: rpc)

        with pytest.raises(NexusError) as exc:
            await sender.deposit(request, 0, signatures[0])

        assert exc.value.code == ErrorCode.USER_DENIED_DEPOSIT
        assert exc.value.category == "user_declined"
        rpc.wait_for_receipt.assert_not_awaited()


class TestFulfilment:
    """Fulfilment race."""

    @pytest.mark.asyncio
    async def test_timeout_is_unconfirmed(self, registry, wallet):
        """No signal within the timeout resolves as unconfirmed."""
        destination = registry.get_chain(CHAIN_A)

        result = await wait_for_fulfilment(
            b"\x11" * 32, destination, 0.05, wallet=wallet, vault=destination.vault_address
        )

        assert result.confirmed is False
        assert result.timed_out is True
        assert result.request_hash == "0x" + "11" * 32

    @pytest.mark.asyncio
    async def test_vault_event_confirms(self, registry, wallet):
        """A matching Fulfilment log ends the wait."""
        destination = registry.get_chain(CHAIN_A)
        request_hash = b"\x22" * 32

        async def fill():
            await asyncio.sleep(0.01)
            wallet.emit_log({"topics": [abi.FULFILMENT_TOPIC, "0x" + request_hash.hex()]})

        filler = asyncio.create_task(fill())
        result = await wait_for_fulfilment(
            request_hash, destination, 2, wallet=wallet, vault=destination.vault_address
        )
        await filler

        assert result.confirmed is True
        assert result.source == "event"

    @pytest.mark.asyncio
    async def test_relay_status_confirms(self, registry):
        """A fulfilled relay record ends the wait."""
        relay = AsyncMock()
        relay.get_request.return_value = SettlementRecord(request_hash="0x", fulfilled=True)

        result = await wait_for_fulfilment(b"\x33" * 32, registry.get_chain(CHAIN_A), 2, relay=relay)

        assert result.confirmed is True
        assert result.source == "relay"

    @pytest.mark.asyncio
    async def test_no_signals(self, registry):
        """Without any signal source the wait simply times out."""
        result = await wait_for_fulfilment(b"\x44" * 32, registry.get_chain(CHAIN_A), 0.01)

        assert result.timed_out is True
