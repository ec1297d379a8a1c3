"""Bridge-and-execute / swap-and-execute.

Estimates what a destination-chain action costs, compares that against a
single snapshot of destination balances, and moves only the shortfall in
before running the action. When nothing is missing the move is skipped.
"""

import asyncio
import inspect
import logging
from dataclasses import dataclass, replace
from typing import Any, Awaitable, Callable, Optional

import rlp

from nexus_ca import abi
from nexus_ca.balances import Asset, BalanceAggregator
from nexus_ca.chains import ChainConfig, ChainRegistry, TokenConfig, Universe
from nexus_ca.config import Settings, get_settings
from nexus_ca.errors import Errors, UserRejectedError
from nexus_ca.gas import gas_inputs
from nexus_ca.intent import DestinationRequest, Intent
from nexus_ca.rpc.evm import EvmRpcClient, RpcError
from nexus_ca.settlement.handler import BridgeHandler
from nexus_ca.simulation import state_override
from nexus_ca.steps import STEPS_LIST, EventCallback, NexusEvent, StepLedger, execute_steps
from nexus_ca.utils.units import div_decimals, equal_fold, is_native_address, mul_decimals, pct_addition
from nexus_ca.wallet.base import TxRequest, WalletConnection, switch_chain

logger = logging.getLogger(__name__)


@dataclass
class TokenApproval:
    """Approval the action's spender needs; token is a symbol or an address."""

    token: str
    amount: int
    spender: str


@dataclass
class ExecuteParams:
    to_chain_id: int
    to: str
    data: str = "0x"
    value: int = 0
    gas: Optional[int] = None
    gas_price: Optional[str] = None  # tier name
    token_approval: Optional[TokenApproval] = None
    wait_for_receipt: bool = True
    receipt_timeout: Optional[float] = None
    required_confirmations: int = 1


@dataclass
class BridgeAndExecuteParams:
    token: str  # symbol
    amount: int  # raw units
    execute: ExecuteParams
    source_chains: Optional[list[int]] = None


@dataclass
class TransferParams:
    """Deliver amount of token to recipient on the destination chain."""

    to_chain_id: int
    token: str  # symbol
    amount: int  # raw units
    recipient: str
    source_chains: Optional[list[int]] = None
    gas_price: Optional[str] = None  # tier name
    wait_for_receipt: bool = True
    receipt_timeout: Optional[float] = None


@dataclass
class SwapRequest:
    """What the injected swap leg must deliver on the destination chain."""

    chain_id: int
    token_address: str
    token_amount: int
    gas_amount: int
    from_sources: Optional[list[tuple[int, str]]] = None


SwapLeg = Callable[[SwapRequest], Awaitable[Any]]


@dataclass
class SwapAndExecuteParams:
    to_chain_id: int
    to_token_address: str
    to_amount: int  # raw units
    execute: ExecuteParams
    from_sources: Optional[list[tuple[int, str]]] = None


@dataclass(frozen=True)
class OptimalAmount:
    skip: bool
    token_amount: int
    gas_amount: int


@dataclass
class ExecuteResponse:
    tx_hash: str
    receipt: Optional[dict] = None
    approval_hash: Optional[str] = None


@dataclass
class ExecuteResult:
    chain_id: int
    transaction_hash: str
    explorer_url: str
    approval_transaction_hash: Optional[str] = None
    receipt: Optional[dict] = None
    confirmations: int = 1
    gas_used: int = 0


@dataclass
class BridgeAndExecuteResult:
    execute_transaction_hash: str
    execute_explorer_url: str
    to_chain_id: int
    bridge_skipped: bool
    approval_transaction_hash: Optional[str] = None
    bridge_explorer_url: Optional[str] = None
    intent: Optional[Intent] = None


@dataclass
class SwapAndExecuteResult:
    swap_skipped: bool
    execute_response: ExecuteResponse
    swap_result: Any = None


@dataclass
class ExecuteSimulation:
    gas_used: int
    gas_price: int
    gas_fee: int


@dataclass
class BridgeAndExecuteSimulation:
    execute_simulation: ExecuteSimulation
    bridge_simulation: Optional[Intent] = None


@dataclass
class _Estimate:
    chain: ChainConfig
    token: TokenConfig
    tx: TxRequest
    approval_tx: Optional[TxRequest]
    approval_gas: int
    tx_gas: int
    gas_price: int
    gas_fee: int
    amount: OptimalAmount
    address: str


def calculate_optimal_amount(
    token_address: str,
    required_token: int,
    required_gas: int,
    destination_token: int,
    destination_gas: int,
) -> OptimalAmount:
    """Shortfall to move in, in raw units, from one balance snapshot.

    For a native token the token and gas needs share one balance: the
    token requirement is covered first and gas from what remains. For
    other tokens both shortfalls are independent.
    """
    if is_native_address(Universe.EVM.value, token_address):
        total = required_token + required_gas
        if destination_gas >= total:
            return OptimalAmount(True, required_token, required_gas)
        difference = total - destination_gas
        missing_token = max(required_token - destination_token, 0)
        gas_part = max(difference - missing_token, 0)
        return OptimalAmount(False, missing_token, gas_part)

    token_short = max(required_token - destination_token, 0)
    gas_short = max(required_gas - destination_gas, 0)
    if token_short == 0 and gas_short == 0:
        return OptimalAmount(True, required_token, required_gas)
    return OptimalAmount(False, token_short, gas_short)


def destination_balances(assets: list[Asset], chain: ChainConfig, token_address: str) -> tuple[int, int]:
    """(token, native) raw balances on chain from an aggregated snapshot."""
    token_raw = native_raw = 0
    for asset in assets:
        entry = asset.on_chain(chain.chain_id)
        if entry is None:
            continue
        if entry.is_native:
            native_raw = mul_decimals(entry.balance, chain.native_decimals)
        if equal_fold(entry.contract_address, token_address) or (
            entry.is_native and is_native_address(chain.universe.value, token_address)
        ):
            token_raw = mul_decimals(entry.balance, entry.decimals)
    return token_raw, native_raw


def serialize_unsigned(chain_id: int, tx: TxRequest) -> bytes:
    """Unsigned EIP-1559 envelope, used as the L1 data-fee oracle input."""
    data = bytes.fromhex(tx.data.removeprefix("0x"))
    to = bytes.fromhex(tx.to.removeprefix("0x"))
    return b"\x02" + rlp.encode([chain_id, 0, 0, 0, 0, to, tx.value, data, []])


def transfer_execute_params(params: TransferParams, registry: ChainRegistry) -> BridgeAndExecuteParams:
    """Bridge-and-execute parameters whose action is a plain transfer.

    A native token is sent as value to the recipient; an ERC20 through
    transfer(recipient, amount) on the token contract.
    """
    _, token = registry.get_chain_and_token(params.to_chain_id, params.token)
    if token.is_native:
        to, data, value = params.recipient, "0x", params.amount
    else:
        to, data, value = token.contract_address, abi.encode_transfer(params.recipient, params.amount), 0

    execute = ExecuteParams(
        to_chain_id=params.to_chain_id,
        to=to,
        data=data,
        value=value,
        gas_price=params.gas_price,
        wait_for_receipt=params.wait_for_receipt,
        receipt_timeout=params.receipt_timeout,
    )
    return BridgeAndExecuteParams(
        token=token.symbol,
        amount=params.amount,
        execute=execute,
        source_chains=params.source_chains,
    )


def explorer_tx_url(chain: ChainConfig, tx_hash: str) -> str:
    return f"{chain.explorer_url.rstrip('/')}/tx/{tx_hash}"


class ExecuteQuery:
    """Destination-action planner shared by the bridge and swap flows."""

    def __init__(
        self,
        registry: ChainRegistry,
        connection: WalletConnection,
        bridge: BridgeHandler,
        balances: Optional[BalanceAggregator] = None,
        settings: Optional[Settings] = None,
        rpc_factory: Optional[Callable[[ChainConfig], EvmRpcClient]] = None,
    ):
        self.registry = registry
        self.connection = connection
        self.bridge = bridge
        self.balances = balances or bridge.balances
        self.settings = settings or get_settings()
        self.rpc_factory = rpc_factory or (
            lambda chain: EvmRpcClient(chain.rpc_url, chain.chain_id, self.settings.http_timeout)
        )

    # ======================
    # Transaction building
    # ======================

    def _resolve_token(self, chain_id: int, token: str) -> TokenConfig:
        if token.startswith("0x"):
            return self.registry.get_token_by_address(chain_id, token)
        return self.registry.get_chain_and_token(chain_id, token)[1]

    async def _build_txs(
        self, params: ExecuteParams, address: str
    ) -> tuple[ChainConfig, TxRequest, Optional[TxRequest]]:
        chain = self.registry.get_chain(params.to_chain_id)
        if not chain.is_evm:
            raise Errors.chain_not_found(params.to_chain_id)

        approval_tx = None
        approval = params.token_approval
        if approval is not None:
            token_address = (
                approval.token
                if approval.token.startswith("0x")
                else self._resolve_token(chain.chain_id, approval.token).contract_address
            )
            current = await self.rpc_factory(chain).erc20_allowance(token_address, address, approval.spender)
            if current < approval.amount:
                approval_tx = TxRequest(
                    to=token_address,
                    data=abi.encode_approve(approval.spender, approval.amount),
                    chain_id=chain.chain_id,
                )

        tx = TxRequest(to=params.to, data=params.data, value=params.value, chain_id=chain.chain_id)
        return chain, tx, approval_tx

    async def _gas_used(
        self,
        chain: ChainConfig,
        params: ExecuteParams,
        tx: TxRequest,
        approval_tx: Optional[TxRequest],
        address: str,
        token: TokenConfig,
        required_token: int,
    ) -> tuple[int, int]:
        """(approval gas, action gas) before the buffer.

        Caller-supplied gas skips estimation; the approval is then assumed
        to cost settings.approval_gas. Otherwise both transactions are
        estimated against state where the sender already holds the token
        and has granted the spender.
        """
        if params.gas:
            return (self.settings.approval_gas if approval_tx else 0), params.gas

        approval = params.token_approval
        override = state_override(
            chain.chain_id,
            token.symbol,
            token.contract_address,
            address,
            max(required_token, approval.amount if approval else 0),
            spender=approval.spender if approval else None,
            is_native=token.is_native,
            value=tx.value,
        )
        rpc = self.rpc_factory(chain)
        estimates = [rpc.estimate_gas(tx.to_rpc(address), override)]
        if approval_tx is not None:
            estimates.insert(0, rpc.estimate_gas(approval_tx.to_rpc(address), override))

        try:
            gas = await asyncio.gather(*estimates)
        except RpcError as e:
            raise Errors.simulation_failed(str(e), chain.chain_id) from e

        if approval_tx is not None:
            return gas[0], gas[1]
        return 0, gas[0]

    async def _estimate(
        self,
        params: ExecuteParams,
        token: TokenConfig,
        required_token: int,
        default_tier: str,
    ) -> _Estimate:
        address = await self.connection.current_address()
        chain, tx, approval_tx = await self._build_txs(params, address)
        rpc = self.rpc_factory(chain)

        (approval_gas, tx_gas), (gas_price, l1_fee), assets = await asyncio.gather(
            self._gas_used(chain, params, tx, approval_tx, address, token, required_token),
            gas_inputs(
                chain,
                rpc,
                serialize_unsigned(chain.chain_id, tx),
                params.gas_price or default_tier,
                self.settings.fee_history_blocks,
                self.settings.base_fee_buffer_pct,
            ),
            self.balances.get_assets(address),
        )

        approval_gas = pct_addition(approval_gas, self.settings.gas_buffer)
        tx_gas = pct_addition(tx_gas, self.settings.gas_buffer)
        if approval_tx is not None:
            approval_tx.gas = approval_gas
        tx.gas = tx_gas

        gas_fee = (approval_gas + tx_gas) * gas_price + l1_fee
        token_balance, native_balance = destination_balances(assets, chain, token.contract_address)
        amount = calculate_optimal_amount(
            token.contract_address, required_token, gas_fee, token_balance, native_balance
        )

        logger.debug(
            f"Execute estimate on {chain.name}: gas={approval_gas + tx_gas} price={gas_price} "
            f"l1={l1_fee} fee={gas_fee} token_balance={token_balance} native={native_balance} "
            f"-> skip={amount.skip} token={amount.token_amount} gas={amount.gas_amount}"
        )
        return _Estimate(
            chain=chain,
            token=token,
            tx=tx,
            approval_tx=approval_tx,
            approval_gas=approval_gas,
            tx_gas=tx_gas,
            gas_price=gas_price,
            gas_fee=gas_fee,
            amount=amount,
            address=address,
        )

    def _bridge_request(self, estimate: _Estimate, token_symbol: str) -> DestinationRequest:
        return DestinationRequest(
            chain_id=estimate.chain.chain_id,
            token=token_symbol,
            amount=div_decimals(estimate.amount.token_amount, estimate.token.decimals),
            gas=div_decimals(estimate.amount.gas_amount, estimate.chain.native_decimals),
        )

    # ======================
    # Entry points
    # ======================

    async def simulate_bridge_and_execute(self, params: BridgeAndExecuteParams) -> BridgeAndExecuteSimulation:
        token = self._resolve_token(params.execute.to_chain_id, params.token)
        estimate = await self._estimate(params.execute, token, params.amount, "medium")

        bridge_simulation = None
        if not estimate.amount.skip:
            bridge_simulation = await self.bridge.simulate(
                self._bridge_request(estimate, token.symbol), params.source_chains
            )

        return BridgeAndExecuteSimulation(
            execute_simulation=ExecuteSimulation(
                gas_used=estimate.approval_gas + estimate.tx_gas,
                gas_price=estimate.gas_price,
                gas_fee=estimate.gas_fee,
            ),
            bridge_simulation=bridge_simulation,
        )

    async def bridge_and_execute(
        self,
        params: BridgeAndExecuteParams,
        on_event: Optional[EventCallback] = None,
        before_execute: Optional[Callable[[], Any]] = None,
    ) -> BridgeAndExecuteResult:
        token = self._resolve_token(params.execute.to_chain_id, params.token)
        estimate = await self._estimate(params.execute, token, params.amount, "medium")
        steps = execute_steps(estimate.approval_tx is not None, params.execute.wait_for_receipt)

        bridge_result = None
        if estimate.amount.skip:
            logger.info(f"Destination balances cover the action on {estimate.chain.name}, skipping bridge")
        else:
            bridge_result = await self.bridge.execute(
                self._bridge_request(estimate, token.symbol),
                params.source_chains,
                on_event=_append_steps(on_event, steps),
            )

        if before_execute is not None:
            await _apply_before_execute(before_execute, estimate.tx)

        response = await self.send_tx(
            estimate, params.execute, on_event, steps, announce=bridge_result is None
        )
        return BridgeAndExecuteResult(
            execute_transaction_hash=response.tx_hash,
            execute_explorer_url=explorer_tx_url(estimate.chain, response.tx_hash),
            to_chain_id=estimate.chain.chain_id,
            bridge_skipped=estimate.amount.skip,
            approval_transaction_hash=response.approval_hash,
            bridge_explorer_url=bridge_result.explorer_url if bridge_result else None,
            intent=bridge_result.intent if bridge_result else None,
        )

    async def bridge_and_transfer(
        self,
        params: TransferParams,
        on_event: Optional[EventCallback] = None,
    ) -> BridgeAndExecuteResult:
        """Move only what is missing, then transfer to the recipient."""
        return await self.bridge_and_execute(transfer_execute_params(params, self.registry), on_event)

    async def swap_and_execute(
        self,
        params: SwapAndExecuteParams,
        swap: SwapLeg,
        on_event: Optional[EventCallback] = None,
    ) -> SwapAndExecuteResult:
        token = self.registry.get_token_by_address(params.to_chain_id, params.to_token_address)
        execute = replace(params.execute, to_chain_id=params.to_chain_id)
        estimate = await self._estimate(execute, token, params.to_amount, "high")
        steps = execute_steps(estimate.approval_tx is not None, execute.wait_for_receipt)

        swap_result = None
        if estimate.amount.skip:
            logger.info(f"Destination balances cover the action on {estimate.chain.name}, skipping swap")
        else:
            swap_result = await swap(
                SwapRequest(
                    chain_id=estimate.chain.chain_id,
                    token_address=token.contract_address,
                    token_amount=estimate.amount.token_amount,
                    gas_amount=estimate.amount.gas_amount,
                    from_sources=params.from_sources,
                )
            )

        response = await self.send_tx(estimate, execute, on_event, steps)
        return SwapAndExecuteResult(
            swap_skipped=estimate.amount.skip,
            execute_response=response,
            swap_result=swap_result,
        )

    async def execute_only(
        self,
        params: ExecuteParams,
        on_event: Optional[EventCallback] = None,
    ) -> ExecuteResult:
        """Run the destination action without any liquidity movement."""
        address = await self.connection.current_address()
        chain, tx, approval_tx = await self._build_txs(params, address)
        estimate = _Estimate(
            chain=chain,
            token=chain.native_token,
            tx=tx,
            approval_tx=approval_tx,
            approval_gas=0,
            tx_gas=0,
            gas_price=0,
            gas_fee=0,
            amount=OptimalAmount(True, 0, 0),
            address=address,
        )
        steps = execute_steps(approval_tx is not None, params.wait_for_receipt)

        response = await self.send_tx(estimate, params, on_event, steps)
        gas_used = int(response.receipt.get("gasUsed", "0x0"), 16) if response.receipt else 0
        return ExecuteResult(
            chain_id=chain.chain_id,
            transaction_hash=response.tx_hash,
            explorer_url=explorer_tx_url(chain, response.tx_hash),
            approval_transaction_hash=response.approval_hash,
            receipt=response.receipt,
            confirmations=params.required_confirmations,
            gas_used=gas_used,
        )

    async def send_tx(
        self,
        estimate: _Estimate,
        params: ExecuteParams,
        on_event: Optional[EventCallback],
        steps: list,
        announce: bool = True,
    ) -> ExecuteResponse:
        wallet = self.connection.evm
        if wallet is None:
            raise Errors.wallet_not_connected(Universe.EVM.value)

        ledger = StepLedger(on_event)
        ledger.extend(steps)
        ledger.announce(emit=announce)
        rpc = self.rpc_factory(estimate.chain)
        timeout = params.receipt_timeout or self.settings.receipt_timeout

        try:
            await switch_chain(wallet, estimate.chain)

            approval_hash = None
            if estimate.approval_tx is not None:
                approval_hash = await wallet.send_transaction(estimate.approval_tx)
                await rpc.wait_for_receipt(
                    approval_hash, timeout=timeout, poll_interval=self.settings.receipt_poll_interval
                )
                ledger.complete("EAS")

            tx_hash = await wallet.send_transaction(estimate.tx)
        except UserRejectedError as e:
            raise Errors.user_rejected_execute(e) from e
        ledger.complete("ETS")
        logger.info(f"Execute tx sent on {estimate.chain.name}: {tx_hash}")

        receipt = None
        if params.wait_for_receipt:
            receipt = await rpc.wait_for_receipt(
                tx_hash,
                confirmations=params.required_confirmations,
                timeout=timeout,
                poll_interval=self.settings.receipt_poll_interval,
            )
            ledger.complete("ETC")

        return ExecuteResponse(tx_hash=tx_hash, receipt=receipt, approval_hash=approval_hash)


def _append_steps(on_event: Optional[EventCallback], steps: list) -> Optional[EventCallback]:
    """Forward bridge events, extending its step list with the execute steps."""
    if on_event is None:
        return None

    def forward(event: NexusEvent) -> None:
        if event.name == STEPS_LIST:
            on_event(NexusEvent(STEPS_LIST, list(event.args) + list(steps)))
        else:
            on_event(event)

    return forward


async def _apply_before_execute(hook: Callable[[], Any], tx: TxRequest) -> None:
    response = hook()
    if inspect.isawaitable(response):
        response = await response
    if not response:
        return
    if response.get("data"):
        tx.data = response["data"]
    if response.get("value"):
        tx.value = response["value"]
    if response.get("gas"):
        tx.gas = response["gas"]
