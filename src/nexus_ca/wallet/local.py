"""Private-key wallets: eth_account for EVM chains, tronpy for Tron.

These back headless use of the client (scripts, services). Browser or
hardware wallets implement the same WalletProvider / TronWallet interfaces.
"""

import asyncio
import logging
from typing import AsyncIterator, Optional

import httpx
from eth_account import Account
from eth_account.messages import encode_defunct
from tronpy import AsyncTron
from tronpy.keys import PrivateKey
from tronpy.providers.async_http import AsyncHTTPProvider
from web3 import Web3

from nexus_ca.chains import ChainConfig, ChainRegistry
from nexus_ca.errors import Errors
from nexus_ca.rpc.evm import EvmRpcClient
from nexus_ca.utils.units import evm_to_tron_base58, tron_hex_to_evm
from nexus_ca.wallet.base import TronWallet, TxRequest, WalletProvider

logger = logging.getLogger(__name__)

TRON_MESSAGE_PREFIX = b"\x19TRON Signed Message:\n32"


class LocalWalletProvider(WalletProvider):
    """EVM wallet backed by an in-memory private key."""

    def __init__(
        self,
        private_key: str,
        registry: ChainRegistry,
        chain_id: Optional[int] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self._account = Account.from_key(private_key)
        self._registry = registry
        self._added: dict[int, ChainConfig] = {}
        self._transport = transport
        evm_chains = registry.evm_chains()
        self._chain_id = chain_id or (evm_chains[0].chain_id if evm_chains else 1)

    def _chain(self, chain_id: int) -> Optional[ChainConfig]:
        return self._added.get(chain_id) or self._registry.find_chain(chain_id)

    def _rpc(self, chain: Optional[ChainConfig] = None) -> EvmRpcClient:
        chain = chain or self._chain(self._chain_id)
        if chain is None:
            raise Errors.chain_not_found(self._chain_id)
        return EvmRpcClient(chain.rpc_url, chain.chain_id, transport=self._transport)

    async def get_addresses(self) -> list[str]:
        return [self._account.address]

    async def get_chain_id(self) -> int:
        return self._chain_id

    async def switch_chain(self, chain_id: int) -> None:
        if self._chain(chain_id) is None:
            raise ValueError(f"unrecognized chain {chain_id}")
        self._chain_id = chain_id

    async def add_chain(self, chain: ChainConfig) -> None:
        self._added[chain.chain_id] = chain

    async def send_transaction(self, tx: TxRequest) -> str:
        rpc = self._rpc()
        address = self._account.address
        nonce = int(await rpc.request("eth_getTransactionCount", [address, "pending"]), 16)
        gas = tx.gas or await rpc.estimate_gas(tx.to_rpc(address))
        max_fee, tip = await asyncio.gather(rpc.estimate_max_fee_per_gas(), rpc.max_priority_fee())

        signed = self._account.sign_transaction(
            {
                "type": 2,
                "chainId": self._chain_id,
                "nonce": nonce,
                "to": Web3.to_checksum_address(tx.to),
                "value": tx.value,
                "data": tx.data,
                "gas": gas,
                "maxFeePerGas": max(max_fee, tip),
                "maxPriorityFeePerGas": tip,
            }
        )
        tx_hash = await rpc.request("eth_sendRawTransaction", [Web3.to_hex(signed.raw_transaction)])
        logger.info(f"Sent tx {tx_hash} on chain {self._chain_id}")
        return tx_hash

    async def sign_typed_data(self, typed_data: dict) -> str:
        signed = Account.sign_typed_data(self._account.key, full_message=typed_data)
        return Web3.to_hex(signed.signature)

    async def sign_message(self, message_hash: bytes) -> bytes:
        signed = self._account.sign_message(encode_defunct(primitive=message_hash))
        return bytes(signed.signature)

    async def watch_event(
        self, chain: ChainConfig, address: str, topics: list[Optional[str]]
    ) -> AsyncIterator[dict]:
        async for log in self._rpc(chain).watch_logs(address, topics):
            yield log


class TronpyWallet(TronWallet):
    """Tron wallet backed by an in-memory private key."""

    def __init__(self, private_key: str, api_url: str, fee_limit: int = 100_000_000):
        self._key = PrivateKey(bytes.fromhex(private_key.removeprefix("0x")))
        self.api_url = api_url
        self.fee_limit = fee_limit

    @property
    def address(self) -> str:
        return self._key.public_key.to_base58check_address()

    async def sign_message(self, message_hash: bytes) -> bytes:
        digest = Web3.keccak(TRON_MESSAGE_PREFIX + message_hash)
        signature = self._key.sign_msg_hash(bytes(digest))
        return bytes.fromhex(signature.hex())

    async def trigger_contract(
        self,
        contract_address: str,
        function: str,
        args: list,
        call_value: int = 0,
    ) -> dict:
        async with AsyncTron(AsyncHTTPProvider(self.api_url)) as client:
            contract = await client.get_contract(evm_to_tron_base58(tron_hex_to_evm(contract_address)))
            method = getattr(contract.functions, function)
            if call_value:
                method = method.with_transfer(call_value)
            builder = await method(*args)
            txn = await builder.with_owner(self.address).fee_limit(self.fee_limit).build()
            result = dict(await txn.sign(self._key).broadcast())

        logger.info(f"Tron {function} broadcast: {result.get('txid')}")
        return result
