"""Tron constant-call reads through tronpy's async client."""

import asyncio
import logging
import time

from eth_abi import encode
from tronpy import AsyncTron
from tronpy.providers.async_http import AsyncHTTPProvider

from nexus_ca.utils.units import evm_to_tron_base58, tron_hex_to_evm

logger = logging.getLogger(__name__)


class TronReader:
    """Read-only access to TRC20 tokens and the Tron vault."""

    def __init__(self, api_url: str):
        self.api_url = api_url

    def _client(self) -> AsyncTron:
        return AsyncTron(AsyncHTTPProvider(self.api_url))

    async def _const_call(self, owner: str, contract: str, selector: str, parameter: bytes) -> int:
        async with self._client() as client:
            result = await client.trigger_const_smart_contract_function(
                evm_to_tron_base58(tron_hex_to_evm(owner)),
                evm_to_tron_base58(tron_hex_to_evm(contract)),
                selector,
                parameter.hex(),
            )
        return int(result or "0", 16)

    async def get_balance(self, address: str) -> int:
        """Native TRX balance in sun."""
        async with self._client() as client:
            account = await client.get_account(evm_to_tron_base58(tron_hex_to_evm(address)))
        return int(account.get("balance", 0))

    async def trc20_allowance(self, token: str, owner: str, spender: str) -> int:
        params = encode(["address", "address"], [tron_hex_to_evm(owner), tron_hex_to_evm(spender)])
        return await self._const_call(owner, token, "allowance(address,address)", params)

    async def request_state(self, vault: str, request_hash: bytes) -> int:
        params = encode(["bytes32"], [request_hash])
        return await self._const_call(vault, vault, "requestState(bytes32)", params)

    async def wait_for_allowance(
        self,
        token: str,
        owner: str,
        spender: str,
        amount: int,
        timeout: float = 120.0,
        interval: float = 3.0,
    ) -> bool:
        """Poll until allowance(owner, spender) covers amount."""
        deadline = time.monotonic() + timeout
        while time.monotonic() < deadline:
            current = await self.trc20_allowance(token, owner, spender)
            if current >= amount:
                return True
            logger.debug(f"Tron allowance {current} < {amount}, polling")
            await asyncio.sleep(interval)
        return False

    async def wait_for_request_state(
        self,
        vault: str,
        request_hash: bytes,
        timeout: float = 120.0,
        interval: float = 3.0,
    ) -> bool:
        """Poll until the vault reports a non-zero state for the request."""
        deadline = time.monotonic() + timeout
        while time.monotonic() < deadline:
            if await self.request_state(vault, request_hash) != 0:
                return True
            await asyncio.sleep(interval)
        return False
