"""Wallet provider interfaces and the shared connection state.

The active wallet connection (address, active chain) is the only shared
mutable state in the client. It is owned by one coordinator and passed by
reference; re-validation before each operation goes through
WalletConnection.revalidate().
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Optional

from nexus_ca.chains import ChainConfig
from nexus_ca.errors import Errors, UserRejectedError

logger = logging.getLogger(__name__)


@dataclass
class TxRequest:
    """An EVM transaction to send through the wallet."""

    to: str
    data: str = "0x"
    value: int = 0
    gas: Optional[int] = None
    chain_id: Optional[int] = None

    def to_rpc(self, from_address: str) -> dict[str, Any]:
        tx: dict[str, Any] = {"from": from_address, "to": self.to, "data": self.data, "value": hex(self.value)}
        if self.gas is not None:
            tx["gas"] = hex(self.gas)
        return tx


class WalletProvider(ABC):
    """EVM wallet: addresses, active chain, sending and signing.

    Any method may raise UserRejectedError when the user cancels.
    """

    @abstractmethod
    async def get_addresses(self) -> list[str]:
        pass

    @abstractmethod
    async def get_chain_id(self) -> int:
        pass

    @abstractmethod
    async def switch_chain(self, chain_id: int) -> None:
        pass

    @abstractmethod
    async def add_chain(self, chain: ChainConfig) -> None:
        pass

    @abstractmethod
    async def send_transaction(self, tx: TxRequest) -> str:
        """Send a transaction on the active chain and return its hash."""
        pass

    @abstractmethod
    async def sign_typed_data(self, typed_data: dict) -> str:
        """Sign EIP-712 typed data; returns a 65-byte hex signature."""
        pass

    @abstractmethod
    async def sign_message(self, message_hash: bytes) -> bytes:
        """EIP-191 personal_sign over raw bytes."""
        pass

    @abstractmethod
    def watch_event(self, chain: ChainConfig, address: str, topics: list[Optional[str]]) -> AsyncIterator[dict]:
        """Subscribe to logs of one contract event on a chain."""
        pass


class TronWallet(ABC):
    """Tron wallet: address plus sign/broadcast of contract calls."""

    @property
    @abstractmethod
    def address(self) -> str:
        """Base58 address."""
        pass

    @abstractmethod
    async def sign_message(self, message_hash: bytes) -> bytes:
        """TIP-191 signature over raw bytes."""
        pass

    @abstractmethod
    async def trigger_contract(
        self,
        contract_address: str,
        function: str,
        args: list,
        call_value: int = 0,
    ) -> dict:
        """Build, sign and broadcast a contract call.

        Returns the broadcast result ({"result": bool, "txid": str}).
        """
        pass


def should_reinitialize(last_known: Optional[str], current: Optional[str]) -> bool:
    """Decide whether the client must re-initialize for a new account."""
    if current is None:
        return False
    if last_known is None:
        return True
    return last_known.lower() != current.lower()


@dataclass
class WalletConnection:
    """The connected wallets and last-known identity."""

    evm: Optional[WalletProvider] = None
    tron: Optional[TronWallet] = None
    address: Optional[str] = None
    initialized: bool = False
    _lock: asyncio.Lock = field(default_factory=asyncio.Lock, repr=False)

    async def current_address(self) -> str:
        if self.evm is None:
            raise Errors.wallet_not_connected("EVM")
        addresses = await self.evm.get_addresses()
        if not addresses:
            raise Errors.wallet_not_connected("EVM")
        return addresses[0]

    async def revalidate(self) -> bool:
        """Re-check the connected address; returns True when it changed.

        Concurrent callers are serialized so only one re-initialization
        happens per account change.
        """
        async with self._lock:
            current = await self.current_address()
            if should_reinitialize(self.address, current):
                logger.info(f"Wallet account changed: {self.address} -> {current}")
                self.address = current
                self.initialized = False
                return True
            return False


async def switch_chain(provider: WalletProvider, chain: ChainConfig) -> None:
    """Make chain the wallet's active chain, adding it if unknown."""
    if await provider.get_chain_id() == chain.chain_id:
        return

    try:
        await provider.switch_chain(chain.chain_id)
    except UserRejectedError:
        raise
    except Exception as e:
        logger.debug(f"switch to {chain.chain_id} failed ({e}), adding chain")
        await provider.add_chain(chain)
        await provider.switch_chain(chain.chain_id)

    active = await provider.get_chain_id()
    if active != chain.chain_id:
        raise Errors.internal(
            "wallet did not switch chain", expected=chain.chain_id, active=active
        )


@asynccontextmanager
async def restore_chain(provider: Optional[WalletProvider], chain: ChainConfig):
    """Switch back to chain when the block exits, whatever the outcome.

    A failed restore after an error is logged so the original error is
    the one that propagates.
    """
    if provider is None or not chain.is_evm:
        yield
        return

    try:
        yield
    except BaseException:
        try:
            await switch_chain(provider, chain)
        except Exception as e:
            logger.warning(f"Could not restore chain {chain.chain_id}: {e}")
        raise
    else:
        await switch_chain(provider, chain)
