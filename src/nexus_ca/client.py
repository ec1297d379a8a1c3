"""NexusClient: the single coordinator over one wallet connection.

Every public operation first re-validates the connected account; when it
changed since the last call the client re-initializes before proceeding.
"""

import logging
from decimal import Decimal
from typing import Any, Callable, Optional, Union

from nexus_ca.allowance import AllowanceOrchestrator
from nexus_ca.balances import Asset, BalanceAggregator
from nexus_ca.chains import ChainRegistry, build_registry
from nexus_ca.config import Settings, get_settings
from nexus_ca.contracts import SettlementRecord
from nexus_ca.errors import Errors
from nexus_ca.intent import DestinationRequest, Intent, MaxBridgeable, ReadableIntent
from nexus_ca.optimizer import (
    BridgeAndExecuteParams,
    BridgeAndExecuteResult,
    BridgeAndExecuteSimulation,
    ExecuteParams,
    ExecuteQuery,
    ExecuteResult,
    SwapAndExecuteParams,
    SwapAndExecuteResult,
    SwapLeg,
    TransferParams,
)
from nexus_ca.relay import RelayClient
from nexus_ca.settlement import BridgeHandler, BridgeResult, DepositSender
from nexus_ca.steps import EventCallback
from nexus_ca.wallet.base import TronWallet, WalletConnection, WalletProvider

logger = logging.getLogger(__name__)

Hook = Callable[[Any], Any]


def configure_logging(settings: Optional[Settings] = None) -> None:
    """Root logging setup for scripts embedding the client."""
    settings = settings or get_settings()
    logging.basicConfig(
        level=logging.DEBUG if settings.debug else logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )


class NexusClient:
    """Cross-chain intent client for EVM and Tron wallets."""

    def __init__(
        self,
        evm: WalletProvider,
        tron: Optional[TronWallet] = None,
        settings: Optional[Settings] = None,
        registry: Optional[ChainRegistry] = None,
        relay: Optional[RelayClient] = None,
        on_event: Optional[EventCallback] = None,
        intent_hook: Optional[Hook] = None,
        allowance_hook: Optional[Hook] = None,
    ):
        self.settings = settings or get_settings()
        self.registry = registry or build_registry(self.settings)
        self.relay = relay or RelayClient(self.settings)
        self.connection = WalletConnection(evm=evm, tron=tron)
        self.on_event = on_event
        self.intent_hook = intent_hook
        self.allowance_hook = allowance_hook

        self.balances: Optional[BalanceAggregator] = None
        self.allowances: Optional[AllowanceOrchestrator] = None
        self.bridge: Optional[BridgeHandler] = None
        self.query: Optional[ExecuteQuery] = None

    # ======================
    # Lifecycle
    # ======================

    async def initialize(self) -> None:
        """Wire the components for the currently connected account."""
        self.connection.address = await self.connection.current_address()
        self.balances = BalanceAggregator(self.registry, self.relay, self.settings)
        self.allowances = AllowanceOrchestrator(
            self.registry, self.relay, self.connection, self.settings
        )
        self.bridge = BridgeHandler(
            self.registry,
            self.relay,
            self.connection,
            self.settings,
            balances=self.balances,
            allowances=self.allowances,
            deposits=DepositSender(self.registry, self.connection, self.settings),
            on_event=self.on_event,
            intent_hook=self.intent_hook,
            allowance_hook=self.allowance_hook,
        )
        self.query = ExecuteQuery(
            self.registry, self.connection, self.bridge, self.balances, self.settings
        )
        self.connection.initialized = True
        logger.info(f"Client initialized for {self.connection.address} ({self.settings.environment})")

    async def _guard(self) -> None:
        """Re-validate the account before an externally triggered operation."""
        changed = await self.connection.revalidate()
        if changed or not self.connection.initialized:
            await self.initialize()
        if self.bridge is None or self.query is None:
            raise Errors.sdk_not_initialized()

    # ======================
    # Intents
    # ======================

    async def build_and_validate_intent(
        self,
        token: str,
        amount: Union[Decimal, str],
        chain_id: int,
        gas: Union[Decimal, str] = Decimal("0"),
        recipient: Optional[str] = None,
        source_chains: Optional[list[int]] = None,
    ) -> Intent:
        """Build an intent; registry misses raise, insufficiency does not."""
        await self._guard()
        request = DestinationRequest(chain_id, token, Decimal(amount), Decimal(gas), recipient)
        return await self.bridge.build_intent(request, source_chains)

    async def simulate(
        self,
        token: str,
        amount: Union[Decimal, str],
        chain_id: int,
        gas: Union[Decimal, str] = Decimal("0"),
        source_chains: Optional[list[int]] = None,
    ) -> ReadableIntent:
        await self._guard()
        request = DestinationRequest(chain_id, token, Decimal(amount), Decimal(gas))
        intent = await self.bridge.simulate(request, source_chains)
        return intent.to_readable()

    async def execute(
        self,
        token: str,
        amount: Union[Decimal, str],
        chain_id: int,
        gas: Union[Decimal, str] = Decimal("0"),
        recipient: Optional[str] = None,
        source_chains: Optional[list[int]] = None,
    ) -> BridgeResult:
        await self._guard()
        request = DestinationRequest(chain_id, token, Decimal(amount), Decimal(gas), recipient)
        return await self.bridge.execute(request, source_chains)

    async def bridge_max(
        self,
        token: str,
        chain_id: int,
        source_chains: Optional[list[int]] = None,
    ) -> MaxBridgeable:
        await self._guard()
        return await self.bridge.bridge_max(chain_id, token, source_chains)

    # ======================
    # Destination actions
    # ======================

    async def bridge_and_execute(
        self,
        params: BridgeAndExecuteParams,
        before_execute: Optional[Callable[[], Any]] = None,
    ) -> BridgeAndExecuteResult:
        await self._guard()
        return await self.query.bridge_and_execute(params, self.on_event, before_execute)

    async def bridge_and_transfer(self, params: TransferParams) -> BridgeAndExecuteResult:
        """Send token to a recipient on the destination, bridging any shortfall."""
        await self._guard()
        return await self.query.bridge_and_transfer(params, self.on_event)

    async def simulate_bridge_and_execute(self, params: BridgeAndExecuteParams) -> BridgeAndExecuteSimulation:
        await self._guard()
        return await self.query.simulate_bridge_and_execute(params)

    async def swap_and_execute(self, params: SwapAndExecuteParams, swap: SwapLeg) -> SwapAndExecuteResult:
        await self._guard()
        return await self.query.swap_and_execute(params, swap, self.on_event)

    async def execute_only(self, params: ExecuteParams) -> ExecuteResult:
        await self._guard()
        return await self.query.execute_only(params, self.on_event)

    # ======================
    # Reads
    # ======================

    async def get_allowance(self, chain_id: int, token: str) -> int:
        """Current vault allowance of the connected account for token (symbol)."""
        await self._guard()
        _, token_config = self.registry.get_chain_and_token(chain_id, token)
        chain = self.registry.get_chain(chain_id)
        owner = self.connection.address
        if chain.is_tron:
            if self.connection.tron is None:
                raise Errors.wallet_not_connected("TRON")
            owner = self.connection.tron.address
        return await self.allowances.get_allowance(chain_id, token_config.contract_address, owner)

    async def get_unified_balances(self) -> list[Asset]:
        await self._guard()
        tron_address = self.connection.tron.address if self.connection.tron else None
        return await self.balances.get_assets(self.connection.address, tron_address)

    async def list_requests(self, status: Optional[str] = None, limit: int = 100) -> list[SettlementRecord]:
        await self._guard()
        return await self.bridge.list_requests(status=status, limit=limit)
