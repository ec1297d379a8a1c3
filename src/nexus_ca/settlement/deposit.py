"""Native-currency deposits into source-chain vaults.

Token sources are collected by the relay through the vault allowance;
only native sources need a client-side deposit transaction.
"""

import logging
from typing import Awaitable, Callable, Optional

from nexus_ca import abi
from nexus_ca.chains import ChainConfig, ChainRegistry, Universe
from nexus_ca.config import Settings, get_settings
from nexus_ca.errors import Errors, UserRejectedError
from nexus_ca.rpc.evm import EvmRpcClient, RpcError
from nexus_ca.rpc.tron import TronReader
from nexus_ca.settlement.request import RequestSignature, SettlementRequest
from nexus_ca.wallet.base import TxRequest, WalletConnection, switch_chain

logger = logging.getLogger(__name__)

DepositWait = Callable[[], Awaitable[None]]


class DepositSender:
    """Sends vault deposits; each send returns its confirmation wait."""

    def __init__(
        self,
        registry: ChainRegistry,
        connection: WalletConnection,
        settings: Optional[Settings] = None,
        rpc_factory: Optional[Callable[[ChainConfig], EvmRpcClient]] = None,
        tron_reader: Optional[TronReader] = None,
    ):
        self.registry = registry
        self.connection = connection
        self.settings = settings or get_settings()
        self.rpc_factory = rpc_factory or (
            lambda chain: EvmRpcClient(chain.rpc_url, chain.chain_id, self.settings.http_timeout)
        )
        self._tron_reader = tron_reader

    def _tron(self, chain: ChainConfig) -> TronReader:
        if self._tron_reader is None:
            self._tron_reader = TronReader(self.settings.tron_api_url or chain.rpc_url)
        return self._tron_reader

    async def deposit(
        self,
        request: SettlementRequest,
        index: int,
        signature: RequestSignature,
    ) -> DepositWait:
        """Deposit request.sources[index] into its vault."""
        source = request.sources[index]
        chain = self.registry.get_chain(source.chain_id)
        try:
            if source.universe == Universe.TRON:
                return await self._deposit_tron(chain, request, index, signature)
            return await self._deposit_evm(chain, request, index, signature)
        except UserRejectedError as e:
            raise Errors.user_rejected_deposit(e) from e

    async def _deposit_evm(
        self,
        chain: ChainConfig,
        request: SettlementRequest,
        index: int,
        signature: RequestSignature,
    ) -> DepositWait:
        wallet = self.connection.evm
        if wallet is None:
            raise Errors.wallet_not_connected(Universe.EVM.value)

        await switch_chain(wallet, chain)
        sender = await self.connection.current_address()
        vault = self.registry.get_vault_address(chain.chain_id)
        value = request.sources[index].value
        data = abi.encode_deposit(request.to_abi_tuple(), signature.signature, index)

        rpc = self.rpc_factory(chain)
        try:
            await rpc.request(
                "eth_call",
                [{"from": sender, "to": vault, "data": data, "value": hex(value)}, "latest"],
            )
        except RpcError as e:
            raise Errors.simulation_failed(str(e), chain.chain_id) from e

        tx_hash = await wallet.send_transaction(
            TxRequest(to=vault, data=data, value=value, chain_id=chain.chain_id)
        )
        logger.info(f"Deposit sent on {chain.name}: {tx_hash}")

        async def confirmed() -> None:
            await rpc.wait_for_receipt(
                tx_hash,
                timeout=self.settings.receipt_timeout,
                poll_interval=self.settings.receipt_poll_interval,
            )

        return confirmed

    async def _deposit_tron(
        self,
        chain: ChainConfig,
        request: SettlementRequest,
        index: int,
        signature: RequestSignature,
    ) -> DepositWait:
        wallet = self.connection.tron
        if wallet is None:
            raise Errors.wallet_not_connected(Universe.TRON.value)

        vault = self.registry.get_vault_address(chain.chain_id)
        result = await wallet.trigger_contract(
            vault,
            "deposit",
            [request.to_abi_tuple(), signature.signature, index],
            call_value=request.sources[index].value,
        )
        if not result.get("result"):
            raise Errors.tron_deposit_failed(result)
        logger.info(f"Tron deposit broadcast: {result.get('txid')}")

        async def confirmed() -> None:
            ok = await self._tron(chain).wait_for_request_state(
                vault,
                signature.request_hash,
                timeout=self.settings.tron_poll_timeout,
                interval=self.settings.tron_poll_interval,
            )
            if not ok:
                raise Errors.tron_deposit_failed(result)

        return confirmed
