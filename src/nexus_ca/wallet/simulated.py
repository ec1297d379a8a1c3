"""Simulated wallets for dry runs and tests.

Signatures are real (deterministic key), but nothing is broadcast:
sent transactions are recorded and fake hashes returned.
"""

import asyncio
import secrets
from typing import AsyncIterator, Optional

from eth_account import Account
from eth_account.messages import encode_defunct
from tronpy.keys import PrivateKey
from web3 import Web3

from nexus_ca.chains import ChainConfig
from nexus_ca.errors import UserRejectedError
from nexus_ca.wallet.base import TronWallet, TxRequest, WalletProvider

# Well-known development key (hardhat account #0)
DEV_PRIVATE_KEY = "0xac0974bec39a17e36ba4a6b4d238ff944bacb478cbed5efcae784d7bf4f2ff80"


class SimulatedWalletProvider(WalletProvider):
    """In-memory EVM wallet.

    Set reject_signatures / reject_transactions to emulate a user
    cancelling, and push logs with emit_log() to drive watch_event().
    """

    def __init__(
        self,
        chain_id: int = 1,
        private_key: str = DEV_PRIVATE_KEY,
        known_chains: Optional[set[int]] = None,
    ):
        self._account = Account.from_key(private_key)
        self.chain_id = chain_id
        self.known_chains = known_chains
        self.added_chains: list[int] = []
        self.switch_history: list[int] = []
        self.sent: list[tuple[int, TxRequest]] = []
        self.signed_typed_data: list[dict] = []
        self.reject_signatures = False
        self.reject_transactions = False
        self.address_override: Optional[str] = None
        self._log_queues: list[asyncio.Queue] = []

    @property
    def address(self) -> str:
        return self.address_override or self._account.address

    async def get_addresses(self) -> list[str]:
        return [self.address]

    async def get_chain_id(self) -> int:
        return self.chain_id

    async def switch_chain(self, chain_id: int) -> None:
        if self.known_chains is not None and chain_id not in self.known_chains:
            raise ValueError(f"unrecognized chain {chain_id}")
        self.chain_id = chain_id
        self.switch_history.append(chain_id)

    async def add_chain(self, chain: ChainConfig) -> None:
        self.added_chains.append(chain.chain_id)
        if self.known_chains is not None:
            self.known_chains.add(chain.chain_id)

    async def send_transaction(self, tx: TxRequest) -> str:
        if self.reject_transactions:
            raise UserRejectedError("user rejected transaction")
        self.sent.append((self.chain_id, tx))
        return "0x" + secrets.token_hex(32)

    async def sign_typed_data(self, typed_data: dict) -> str:
        if self.reject_signatures:
            raise UserRejectedError("user rejected signature")
        self.signed_typed_data.append(typed_data)
        signed = Account.sign_typed_data(self._account.key, full_message=typed_data)
        return Web3.to_hex(signed.signature)

    async def sign_message(self, message_hash: bytes) -> bytes:
        if self.reject_signatures:
            raise UserRejectedError("user rejected signature")
        signed = self._account.sign_message(encode_defunct(primitive=message_hash))
        return bytes(signed.signature)

    def emit_log(self, log: dict) -> None:
        for queue in self._log_queues:
            queue.put_nowait(log)

    async def watch_event(
        self, chain: ChainConfig, address: str, topics: list[Optional[str]]
    ) -> AsyncIterator[dict]:
        queue: asyncio.Queue = asyncio.Queue()
        self._log_queues.append(queue)
        try:
            while True:
                log = await queue.get()
                if all(t is None or t in log.get("topics", []) for t in topics):
                    yield log
        finally:
            self._log_queues.remove(queue)


class SimulatedTronWallet(TronWallet):
    """In-memory Tron wallet recording contract calls."""

    def __init__(self, private_key: str = DEV_PRIVATE_KEY):
        key = PrivateKey(bytes.fromhex(private_key.removeprefix("0x")))
        self._address = key.public_key.to_base58check_address()
        self.calls: list[tuple[str, str, list, int]] = []
        self.broadcast_ok = True

    @property
    def address(self) -> str:
        return self._address

    async def sign_message(self, message_hash: bytes) -> bytes:
        return Web3.keccak(b"tron-sim" + message_hash) + Web3.keccak(message_hash) + b"\x1b"

    async def trigger_contract(
        self,
        contract_address: str,
        function: str,
        args: list,
        call_value: int = 0,
    ) -> dict:
        self.calls.append((contract_address, function, args, call_value))
        return {"result": self.broadcast_ok, "txid": secrets.token_hex(32)}
