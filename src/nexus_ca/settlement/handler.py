"""Bridge pipeline: build, accept, allow, sign, submit, deposit, wait.

Sequencing is strict. Allowances complete before the request is signed,
the request is accepted by the relay before any deposit is sent, and the
fulfilment wait starts only after every deposit is confirmed and the relay
has reported every token source collected.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Optional

from nexus_ca.allowance import AllowanceOrchestrator, resolve_allowances
from nexus_ca.balances import BalanceAggregator
from nexus_ca.chains import ChainRegistry, Universe
from nexus_ca.config import Settings, get_settings
from nexus_ca.contracts import OraclePrice, SettlementRecord
from nexus_ca.errors import Errors, UserRejectedError
from nexus_ca.fees import FeeStore
from nexus_ca.gate import AllowanceGate, IntentGate, allow_intent, allow_minimum, run_hook
from nexus_ca.intent import DestinationRequest, Intent, IntentBuilder, MaxBridgeable
from nexus_ca.relay import RelayClient
from nexus_ca.settlement.collection import wait_for_collections
from nexus_ca.settlement.deposit import DepositSender
from nexus_ca.settlement.fulfilment import FulfilmentResult, wait_for_fulfilment
from nexus_ca.settlement.request import build_request, sign_request, signature_for
from nexus_ca.steps import EventCallback, StepLedger, intent_steps
from nexus_ca.wallet.base import WalletConnection, restore_chain

logger = logging.getLogger(__name__)

Hook = Callable[[Any], Any]


@dataclass
class BridgeResult:
    """Outcome of an executed intent."""

    intent: Intent
    request_hash: str
    intent_id: str
    explorer_url: str
    fulfilment: FulfilmentResult
    deposit_chain_ids: list[int] = field(default_factory=list)

    @property
    def confirmed(self) -> bool:
        return self.fulfilment.confirmed


class BridgeHandler:
    """Runs one intent through the settlement pipeline."""

    def __init__(
        self,
        registry: ChainRegistry,
        relay: RelayClient,
        connection: WalletConnection,
        settings: Optional[Settings] = None,
        balances: Optional[BalanceAggregator] = None,
        allowances: Optional[AllowanceOrchestrator] = None,
        deposits: Optional[DepositSender] = None,
        on_event: Optional[EventCallback] = None,
        intent_hook: Optional[Hook] = None,
        allowance_hook: Optional[Hook] = None,
    ):
        self.registry = registry
        self.relay = relay
        self.connection = connection
        self.settings = settings or get_settings()
        self.balances = balances or BalanceAggregator(registry, relay, self.settings)
        self.allowances = allowances or AllowanceOrchestrator(registry, relay, connection, self.settings)
        self.deposits = deposits or DepositSender(registry, connection, self.settings)
        self.on_event = on_event
        self.intent_hook = intent_hook
        self.allowance_hook = allowance_hook

    # ======================
    # Intent building
    # ======================

    async def holders(self) -> dict[Universe, str]:
        holders = {Universe.EVM: await self.connection.current_address()}
        if self.connection.tron is not None:
            holders[Universe.TRON] = self.connection.tron.address
        return holders

    async def _fee_inputs(self) -> tuple[FeeStore, list[OraclePrice]]:
        """Fee schedule and oracle prices; either failing fails the build."""
        data, prices = await asyncio.gather(self.relay.get_fee_store(), self.relay.get_oracle_prices())
        return FeeStore(data), prices

    async def build_intent(
        self,
        request: DestinationRequest,
        source_chains: Optional[list[int]] = None,
    ) -> Intent:
        """Build an intent from fresh balances. Never raises on insufficiency."""
        holders = await self.holders()
        assets, (fee_store, prices) = await asyncio.gather(
            self.balances.get_assets(
                holders[Universe.EVM], holders.get(Universe.TRON), buffer_native_gas=True
            ),
            self._fee_inputs(),
        )
        builder = IntentBuilder(self.registry, fee_store, prices)
        return builder.build(request, assets, holders, source_chains)

    async def simulate(
        self,
        request: DestinationRequest,
        source_chains: Optional[list[int]] = None,
    ) -> Intent:
        return await self.build_intent(request, source_chains)

    async def bridge_max(
        self,
        chain_id: int,
        token: str,
        source_chains: Optional[list[int]] = None,
    ) -> MaxBridgeable:
        """Largest amount of token that can be delivered to chain_id right now."""
        holders = await self.holders()
        assets, fee_data = await asyncio.gather(
            self.balances.get_assets(
                holders[Universe.EVM], holders.get(Universe.TRON), buffer_native_gas=True
            ),
            self.relay.get_fee_store(),
        )
        builder = IntentBuilder(self.registry, FeeStore(fee_data))
        return builder.max_amount(chain_id, token, assets, holders, source_chains)

    # ======================
    # Execution
    # ======================

    async def execute(
        self,
        request: DestinationRequest,
        source_chains: Optional[list[int]] = None,
        on_event: Optional[EventCallback] = None,
    ) -> BridgeResult:
        """Execute the request; raises the liquidity error before any side effect."""
        intent = await self.build_intent(request, source_chains)
        _check_liquidity(intent)

        gate = IntentGate(intent, lambda chains: self.build_intent(request, chains))
        await run_hook(self.intent_hook, gate, allow_intent)
        intent = gate.intent
        _check_liquidity(intent)
        intent.accepted = True

        destination = self.registry.get_chain(intent.destination.chain_id)
        requirements = await self.allowances.permit_requirements(intent)

        ledger = StepLedger(on_event or self.on_event)
        ledger.extend(
            intent_steps(
                [(s.chain_id, s.is_native) for s in intent.sources],
                [r.chain_id for r in requirements],
            )
        )
        ledger.announce()
        ledger.complete("IA")

        if requirements:
            allowance_gate = AllowanceGate([r.to_hook_source() for r in requirements])
            decisions = await run_hook(self.allowance_hook, allowance_gate, allow_minimum)
            amounts = resolve_allowances(requirements, decisions)
            await self.allowances.set_allowances(requirements, amounts, destination, ledger)

        holders = await self.holders()
        settlement = build_request(
            intent,
            self.registry,
            holders.get(Universe.EVM),
            holders.get(Universe.TRON),
            expiry_seconds=self.settings.intent_expiry,
        )
        signatures = await sign_request(settlement, self.connection)
        ledger.complete("IHS")

        submitted = await self.relay.submit_request(
            settlement.to_json(), [s.to_json() for s in signatures]
        )
        ledger.complete("IS", explorer_url=submitted.explorer_url, intent_id=submitted.intent_id)

        deposit_chains: list[int] = []
        collections: list[int] = []
        try:
            async with restore_chain(self.connection.evm, destination):
                waits = []
                for i, source in enumerate(settlement.sources):
                    if source.is_native:
                        wait = await self.deposits.deposit(
                            settlement, i, signature_for(signatures, source.universe)
                        )
                        waits.append(wait)
                        deposit_chains.append(source.chain_id)
                        ledger.complete(f"ID_{i + 1}")
                    else:
                        collections.append(i)

                if waits:
                    await asyncio.gather(*(wait() for wait in waits))
                    ledger.complete("UIDC")
        except UserRejectedError as e:
            raise Errors.user_rejected_deposit(e) from e

        if collections:
            await wait_for_collections(
                self.relay,
                submitted.request_hash,
                collections,
                ledger,
                timeout=self.settings.collection_timeout,
                interval=self.settings.collection_poll_interval,
            )

        destination_signature = signature_for(signatures, destination.universe)
        fulfilment = await wait_for_fulfilment(
            destination_signature.request_hash,
            destination,
            self.settings.fulfilment_timeout,
            wallet=self.connection.evm,
            vault=destination.vault_address,
            relay=self.relay,
        )
        if fulfilment.confirmed:
            ledger.complete("IF")

        return BridgeResult(
            intent=intent,
            request_hash=fulfilment.request_hash,
            intent_id=submitted.intent_id,
            explorer_url=submitted.explorer_url,
            fulfilment=fulfilment,
            deposit_chain_ids=deposit_chains,
        )

    async def list_requests(
        self,
        status: Optional[str] = None,
        limit: int = 100,
    ) -> list[SettlementRecord]:
        address = await self.connection.current_address()
        return await self.relay.list_requests(address, status=status, limit=limit)


def _check_liquidity(intent: Intent) -> None:
    if intent.insufficient_balance:
        raise Errors.insufficient_balance(
            required=str(intent.required_total),
            available=str(intent.sources_total),
        )

