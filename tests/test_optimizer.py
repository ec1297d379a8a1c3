"""Tests for bridge-and-execute and swap-and-execute planning."""

from decimal import Decimal
from types import SimpleNamespace
from unittest.mock import AsyncMock

import pytest
import rlp

from nexus_ca import abi
from nexus_ca.errors import ErrorCode, NexusError
from nexus_ca.optimizer import (
    BridgeAndExecuteParams,
    ExecuteParams,
    ExecuteQuery,
    SwapAndExecuteParams,
    TokenApproval,
    TransferParams,
    calculate_optimal_amount,
    destination_balances,
    serialize_unsigned,
)
from nexus_ca.rpc.evm import RpcError
from nexus_ca.simulation import allowance_storage_key, balance_storage_key
from nexus_ca.steps import STEP_COMPLETE, STEPS_LIST
from nexus_ca.utils.units import ZERO_ADDRESS
from nexus_ca.wallet import TxRequest, WalletConnection

from tests.factories import CHAIN_A, HOLDER, USDC_A, usdc_assets

TARGET = "0x000000000000000000000000000000000000dEaD"
SPENDER = "0x00000000000000000000000000000000000000aa"
RECIPIENT = "0x00000000000000000000000000000000000000bb"

HISTORY = {
    "baseFeePerGas": ["0x64"],
    "reward": [["0xa", "0x14", "0x1e", "0x28"]],
}


class TestOptimalAmount:
    """Shortfall arithmetic."""

    def test_token_covered(self):
        """Enough token and gas on the destination skips the move."""
        amount = calculate_optimal_amount(USDC_A, 50, 10, 80, 20)

        assert amount.skip is True
        assert (amount.token_amount, amount.gas_amount) == (50, 10)

    def test_empty_destination_moves_everything(self):
        amount = calculate_optimal_amount(USDC_A, 50, 10, 0, 0)

        assert amount.skip is False
        assert (amount.token_amount, amount.gas_amount) == (50, 10)

    def test_independent_shortfalls(self):
        """Token and gas gaps are computed separately for non-native tokens."""
        amount = calculate_optimal_amount(USDC_A, 50, 10, 30, 20)

        assert amount.skip is False
        assert (amount.token_amount, amount.gas_amount) == (20, 0)

    def test_native_token_shares_balance(self):
        """For native tokens token and gas come from one balance."""
        amount = calculate_optimal_amount(ZERO_ADDRESS, 100, 10, 50, 50)

        assert amount.skip is False
        assert (amount.token_amount, amount.gas_amount) == (50, 10)

    def test_native_token_covered(self):
        amount = calculate_optimal_amount(ZERO_ADDRESS, 100, 10, 110, 110)

        assert amount.skip is True


class TestHelpers:
    """Snapshot and serialization helpers."""

    def test_destination_balances(self, registry):
        assets = usdc_assets(registry, {CHAIN_A: "12.5"}, native={CHAIN_A: "0.25"})

        assert destination_balances(assets, registry.get_chain(CHAIN_A), USDC_A) == (12_500_000, 25 * 10**16)

    def test_native_destination_balance(self, registry):
        assets = usdc_assets(registry, {}, native={CHAIN_A: "2"})

        assert destination_balances(assets, registry.get_chain(CHAIN_A), ZERO_ADDRESS) == (2 * 10**18, 2 * 10**18)

    def test_serialize_unsigned(self):
        """An EIP-1559 envelope with type byte 0x02."""
        encoded = serialize_unsigned(10, TxRequest(to=TARGET, data="0x1234", value=5))

        assert encoded[:1] == b"\x02"
        fields = rlp.decode(encoded[1:])
        assert fields[5] == bytes.fromhex(TARGET[2:])
        assert fields[7] == b"\x12\x34"


class TestExecuteQuery:
    """Destination action flows."""

    @pytest.fixture
    def rpc(self):
        rpc = AsyncMock()
        rpc.chain_id = CHAIN_A
        rpc.fee_history.return_value = HISTORY
        rpc.erc20_allowance.return_value = 0
        rpc.estimate_gas.return_value = 21_000
        rpc.wait_for_receipt.return_value = {"status": "0x1", "gasUsed": "0x5208"}
        return rpc

    @pytest.fixture
    def bridge(self):
        bridge = AsyncMock()
        bridge.execute.return_value = SimpleNamespace(
            explorer_url="https://explorer.test/intent/9", intent=None
        )
        return bridge

    def _query(self, registry, settings, wallet, rpc, bridge, assets):
        balances = AsyncMock()
        balances.get_assets.return_value = assets
        return ExecuteQuery(
            registry,
            WalletConnection(evm=wallet),
            bridge,
            balances=balances,
            settings=settings,
            rpc_factory=lambda chain: rpc,
        )

    @pytest.mark.asyncio
    async def test_bridge_skipped_when_covered(self, registry, settings, wallet, rpc, bridge):
        """Sufficient destination funds run the action directly."""
        events = []
        assets = usdc_assets(registry, {CHAIN_A: "100"}, native={CHAIN_A: "1"})
        query = self._query(registry, settings, wallet, rpc, bridge, assets)
        params = BridgeAndExecuteParams(
            token="USDC",
            amount=50_000_000,
            execute=ExecuteParams(to_chain_id=CHAIN_A, to=TARGET, data="0xabcdef", gas=100_000),
        )

        result = await query.bridge_and_execute(params, on_event=events.append)

        assert result.bridge_skipped is True
        assert result.execute_explorer_url == f"https://scan.test/{CHAIN_A}/tx/{result.execute_transaction_hash}"
        bridge.execute.assert_not_awaited()
        assert [tx.to for _, tx in wallet.sent] == [TARGET]
        assert wallet.sent[0][1].gas == 130_000
        assert events[0].name == STEPS_LIST
        assert [e.args.type_id for e in events if e.name == STEP_COMPLETE] == ["ETS", "ETC"]

    @pytest.mark.asyncio
    async def test_bridges_shortfall_then_executes(self, registry, settings, wallet, rpc, bridge):
        """Only the missing token amount is bridged; approval runs before the action."""
        events = []
        assets = usdc_assets(registry, {CHAIN_A: "10"}, native={CHAIN_A: "1"})
        query = self._query(registry, settings, wallet, rpc, bridge, assets)
        params = BridgeAndExecuteParams(
            token="USDC",
            amount=50_000_000,
            execute=ExecuteParams(
                to_chain_id=CHAIN_A,
                to=TARGET,
                gas=100_000,
                token_approval=TokenApproval(token="USDC", amount=50_000_000, spender=SPENDER),
            ),
        )

        result = await query.bridge_and_execute(params, on_event=events.append)

        request = bridge.execute.await_args.args[0]
        assert request.chain_id == CHAIN_A
        assert request.amount == Decimal("40")
        assert request.gas == Decimal("0")
        assert result.bridge_skipped is False
        assert result.bridge_explorer_url == "https://explorer.test/intent/9"
        assert [tx.to for _, tx in wallet.sent] == [USDC_A, TARGET]
        assert result.approval_transaction_hash is not None
        assert STEPS_LIST not in [e.name for e in events]
        assert [e.args.type_id for e in events if e.name == STEP_COMPLETE] == ["EAS", "ETS", "ETC"]

    @pytest.mark.asyncio
    async def test_before_execute_overrides_tx(self, registry, settings, wallet, rpc, bridge):
        """The pre-execute hook can replace calldata."""
        assets = usdc_assets(registry, {CHAIN_A: "100"}, native={CHAIN_A: "1"})
        query = self._query(registry, settings, wallet, rpc, bridge, assets)
        params = BridgeAndExecuteParams(
            token="USDC", amount=1, execute=ExecuteParams(to_chain_id=CHAIN_A, to=TARGET, gas=50_000)
        )

        async def before_execute():
            return {"data": "0xfeed"}

        await query.bridge_and_execute(params, before_execute=before_execute)

        assert wallet.sent[0][1].data == "0xfeed"

    @pytest.mark.asyncio
    async def test_estimate_failure(self, registry, settings, wallet, rpc, bridge):
        """A failing gas estimate is SIMULATION_FAILED."""
        rpc.estimate_gas.side_effect = RpcError("eth_estimateGas", {"message": "execution reverted"})
        query = self._query(registry, settings, wallet, rpc, bridge, usdc_assets(registry, {}))
        params = BridgeAndExecuteParams(
            token="USDC", amount=1, execute=ExecuteParams(to_chain_id=CHAIN_A, to=TARGET)
        )

        with pytest.raises(NexusError) as exc:
            await query.simulate_bridge_and_execute(params)

        assert exc.value.code == ErrorCode.SIMULATION_FAILED

    @pytest.mark.asyncio
    async def test_simulation_reports_gas(self, registry, settings, wallet, rpc, bridge):
        """Simulation returns buffered gas and the medium price."""
        assets = usdc_assets(registry, {CHAIN_A: "100"}, native={CHAIN_A: "1"})
        query = self._query(registry, settings, wallet, rpc, bridge, assets)
        params = BridgeAndExecuteParams(
            token="USDC", amount=1, execute=ExecuteParams(to_chain_id=CHAIN_A, to=TARGET)
        )

        simulation = await query.simulate_bridge_and_execute(params)

        assert simulation.execute_simulation.gas_used == 27_300
        assert simulation.execute_simulation.gas_price == 140
        assert simulation.bridge_simulation is None
        bridge.simulate.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_swap_leg_receives_shortfall(self, registry, settings, wallet, rpc, bridge):
        """The swap leg is asked for exactly the missing amount."""
        requests = []

        async def swap(request):
            requests.append(request)
            return "swapped"

        assets = usdc_assets(registry, {CHAIN_A: "5"}, native={CHAIN_A: "1"})
        query = self._query(registry, settings, wallet, rpc, bridge, assets)
        params = SwapAndExecuteParams(
            to_chain_id=CHAIN_A,
            to_token_address=USDC_A,
            to_amount=20_000_000,
            execute=ExecuteParams(to_chain_id=CHAIN_A, to=TARGET, gas=60_000),
        )

        result = await query.swap_and_execute(params, swap)

        assert result.swap_skipped is False
        assert result.swap_result == "swapped"
        assert requests[0].token_amount == 15_000_000
        assert requests[0].gas_amount == 0

    @pytest.mark.asyncio
    async def test_execute_only(self, registry, settings, wallet, rpc, bridge):
        """Gas used is read back from the receipt."""
        query = self._query(registry, settings, wallet, rpc, bridge, [])

        result = await query.execute_only(ExecuteParams(to_chain_id=CHAIN_A, to=TARGET, value=3))

        assert result.gas_used == 21_000
        assert wallet.sent[0][1].value == 3
        bridge.execute.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_estimates_approval_and_action_on_funded_state(self, registry, settings, wallet, rpc, bridge):
        """Without caller gas both transactions are estimated as if the tokens had arrived."""

        async def estimate(tx, override):
            return 46_000 if tx["to"] == USDC_A else 80_000

        rpc.estimate_gas.side_effect = estimate
        assets = usdc_assets(registry, {CHAIN_A: "100"}, native={CHAIN_A: "1"})
        query = self._query(registry, settings, wallet, rpc, bridge, assets)
        params = BridgeAndExecuteParams(
            token="USDC",
            amount=50_000_000,
            execute=ExecuteParams(
                to_chain_id=CHAIN_A,
                to=TARGET,
                token_approval=TokenApproval(token="USDC", amount=50_000_000, spender=SPENDER),
            ),
        )

        await query.bridge_and_execute(params)

        assert rpc.estimate_gas.await_count == 2
        credited = "0x" + (100_000_000).to_bytes(32, "big").hex()
        for call in rpc.estimate_gas.await_args_list:
            storage = call.args[1][USDC_A]["stateDiff"]
            assert storage[balance_storage_key(HOLDER, 9)] == credited
            assert storage[allowance_storage_key(HOLDER, SPENDER, 10)] == credited
        approval, action = wallet.sent
        assert approval[1].to == USDC_A
        assert approval[1].gas == 59_800
        assert action[1].gas == 104_000

    @pytest.mark.asyncio
    async def test_caller_gas_skips_estimation(self, registry, settings, wallet, rpc, bridge):
        """Supplied gas is used as-is and the approval gets the configured allowance."""
        assets = usdc_assets(registry, {CHAIN_A: "100"}, native={CHAIN_A: "1"})
        query = self._query(registry, settings, wallet, rpc, bridge, assets)
        params = BridgeAndExecuteParams(
            token="USDC",
            amount=1,
            execute=ExecuteParams(
                to_chain_id=CHAIN_A,
                to=TARGET,
                gas=100_000,
                token_approval=TokenApproval(token="USDC", amount=1, spender=SPENDER),
            ),
        )

        await query.bridge_and_execute(params)

        rpc.estimate_gas.assert_not_awaited()
        assert wallet.sent[0][1].gas == 91_000

    @pytest.mark.asyncio
    async def test_rejected_transaction(self, registry, settings, wallet, rpc, bridge):
        """A declined wallet prompt surfaces as USER_DENIED_EXECUTE."""
        wallet.reject_transactions = True
        query = self._query(registry, settings, wallet, rpc, bridge, [])

        with pytest.raises(NexusError) as exc:
            await query.execute_only(ExecuteParams(to_chain_id=CHAIN_A, to=TARGET))

        assert exc.value.code == ErrorCode.USER_DENIED_EXECUTE
        assert wallet.sent == []

    @pytest.mark.asyncio
    async def test_approval_wait_honours_receipt_timeout(self, registry, settings, wallet, rpc, bridge):
        """The approval receipt is awaited with the caller's timeout."""
        query = self._query(registry, settings, wallet, rpc, bridge, [])
        params = ExecuteParams(
            to_chain_id=CHAIN_A,
            to=TARGET,
            token_approval=TokenApproval(token="USDC", amount=5, spender=SPENDER),
            wait_for_receipt=False,
            receipt_timeout=7,
        )

        await query.execute_only(params)

        assert rpc.wait_for_receipt.await_count == 1
        assert rpc.wait_for_receipt.await_args.kwargs["timeout"] == 7

    @pytest.mark.asyncio
    async def test_transfer_token(self, registry, settings, wallet, rpc, bridge):
        """An ERC20 transfer calls transfer() on the token contract."""
        assets = usdc_assets(registry, {CHAIN_A: "100"}, native={CHAIN_A: "1"})
        query = self._query(registry, settings, wallet, rpc, bridge, assets)

        result = await query.bridge_and_transfer(
            TransferParams(to_chain_id=CHAIN_A, token="USDC", amount=5_000_000, recipient=RECIPIENT)
        )

        assert result.bridge_skipped is True
        tx = wallet.sent[0][1]
        assert tx.to == USDC_A
        assert tx.value == 0
        assert tx.data == abi.encode_transfer(RECIPIENT, 5_000_000)

    @pytest.mark.asyncio
    async def test_transfer_native_bridges_shortfall(self, registry, settings, wallet, rpc, bridge):
        """A native transfer sends value to the recipient after moving what is missing."""
        assets = usdc_assets(registry, {}, native={CHAIN_A: "0.5"})
        query = self._query(registry, settings, wallet, rpc, bridge, assets)

        result = await query.bridge_and_transfer(
            TransferParams(to_chain_id=CHAIN_A, token="ETH", amount=10**18, recipient=RECIPIENT)
        )

        request = bridge.execute.await_args.args[0]
        assert request.token == "ETH"
        assert request.amount == Decimal("0.5")
        assert result.bridge_skipped is False
        tx = wallet.sent[0][1]
        assert (tx.to, tx.value, tx.data) == (RECIPIENT, 10**18, "0x")
