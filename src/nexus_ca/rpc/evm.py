"""EVM JSON-RPC client over httpx.

Single calls and batched calls (one HTTP round trip for many eth_call
requests), receipt polling and log polling for event subscriptions.
"""

import asyncio
import itertools
import logging
import time
from typing import Any, AsyncIterator, Optional

import httpx

from nexus_ca import abi
from nexus_ca.errors import Errors

logger = logging.getLogger(__name__)

_ids = itertools.count(1)


class RpcError(Exception):
    """Raised when a node returns a JSON-RPC error object."""

    def __init__(self, method: str, error: dict):
        self.method = method
        self.error = error
        super().__init__(f"{method} failed: {error.get('message', error)}")


class EvmRpcClient:
    """JSON-RPC client for one EVM chain."""

    def __init__(
        self,
        rpc_url: str,
        chain_id: Optional[int] = None,
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.rpc_url = rpc_url
        self.chain_id = chain_id
        self.timeout = timeout
        self._transport = transport

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=self.timeout, transport=self._transport)

    async def request(self, method: str, params: list) -> Any:
        """Send one JSON-RPC request and return its result."""
        async with self._client() as client:
            response = await client.post(
                self.rpc_url,
                json={"jsonrpc": "2.0", "method": method, "params": params, "id": next(_ids)},
            )
            response.raise_for_status()
            data = response.json()

        if "error" in data:
            raise RpcError(method, data["error"])
        return data.get("result")

    async def batch(self, calls: list[tuple[str, list]]) -> list[Any]:
        """Send several requests in one round trip.

        Results come back in call order. A per-call error is returned in
        place as an RpcError instance rather than raised.
        """
        if not calls:
            return []

        payload = [
            {"jsonrpc": "2.0", "method": method, "params": params, "id": i}
            for i, (method, params) in enumerate(calls)
        ]
        async with self._client() as client:
            response = await client.post(self.rpc_url, json=payload)
            response.raise_for_status()
            data = response.json()

        by_id = {item["id"]: item for item in data}
        results: list[Any] = []
        for i, (method, _) in enumerate(calls):
            item = by_id.get(i, {"error": {"message": "missing response"}})
            if "error" in item:
                results.append(RpcError(method, item["error"]))
            else:
                results.append(item.get("result"))
        return results

    # ======================
    # Reads
    # ======================

    async def get_chain_id(self) -> int:
        return int(await self.request("eth_chainId", []), 16)

    async def get_balance(self, address: str) -> int:
        return int(await self.request("eth_getBalance", [address, "latest"]), 16)

    async def call(self, to: str, data: str, from_address: Optional[str] = None) -> str:
        tx: dict[str, str] = {"to": to, "data": data}
        if from_address:
            tx["from"] = from_address
        return await self.request("eth_call", [tx, "latest"])

    async def erc20_allowance(self, token: str, owner: str, spender: str) -> int:
        return abi.decode_uint(await self.call(token, abi.encode_allowance(owner, spender)))

    async def erc20_name(self, token: str) -> str:
        """Token name, or empty string when the contract does not expose one."""
        try:
            return abi.decode_string(await self.call(token, abi.encode_name()))
        except (RpcError, httpx.HTTPError, ValueError) as e:
            logger.debug(f"name() failed for {token}: {e}")
            return ""

    async def permit_nonce(self, token: str, owner: str, meta_tx: bool = False) -> int:
        data = abi.encode_get_nonce(owner) if meta_tx else abi.encode_nonces(owner)
        return abi.decode_uint(await self.call(token, data))

    async def estimate_gas(self, tx: dict, state_override: Optional[dict] = None) -> int:
        """eth_estimateGas, optionally against overridden account state."""
        params = {k: (hex(v) if isinstance(v, int) else v) for k, v in tx.items() if v is not None}
        args: list[Any] = [params]
        if state_override:
            args += ["latest", state_override]
        return int(await self.request("eth_estimateGas", args), 16)

    async def fee_history(self, block_count: int, percentiles: list[int]) -> dict:
        return await self.request("eth_feeHistory", [hex(block_count), "latest", percentiles])

    async def max_priority_fee(self) -> int:
        return int(await self.request("eth_maxPriorityFeePerGas", []), 16)

    async def estimate_max_fee_per_gas(self) -> int:
        """Max fee per gas: buffered latest base fee plus the node's tip."""
        block = await self.request("eth_getBlockByNumber", ["latest", False])
        base_fee = int(block.get("baseFeePerGas", "0x0"), 16)
        if base_fee == 0:
            return int(await self.request("eth_gasPrice", []), 16)
        return base_fee * 12 // 10 + await self.max_priority_fee()

    async def get_block_number(self) -> int:
        return int(await self.request("eth_blockNumber", []), 16)

    async def get_transaction_receipt(self, tx_hash: str) -> Optional[dict]:
        return await self.request("eth_getTransactionReceipt", [tx_hash])

    async def get_logs(self, log_filter: dict) -> list[dict]:
        return await self.request("eth_getLogs", [log_filter]) or []

    # ======================
    # Waiting
    # ======================

    async def wait_for_receipt(
        self,
        tx_hash: str,
        confirmations: int = 1,
        timeout: float = 300.0,
        poll_interval: float = 2.0,
    ) -> dict:
        """Poll until the receipt exists with enough confirmations.

        Raises transaction_reverted for a failed status and
        transaction_timeout when the deadline passes.
        """
        deadline = time.monotonic() + timeout
        while True:
            receipt = await self.get_transaction_receipt(tx_hash)
            if receipt is not None:
                if int(receipt.get("status", "0x1"), 16) != 1:
                    raise Errors.transaction_reverted(tx_hash, self.chain_id)
                mined_at = int(receipt["blockNumber"], 16)
                if confirmations <= 1 or await self.get_block_number() - mined_at + 1 >= confirmations:
                    return receipt
            if time.monotonic() >= deadline:
                raise Errors.transaction_timeout(tx_hash, self.chain_id)
            await asyncio.sleep(poll_interval)

    async def watch_logs(
        self,
        address: str,
        topics: list[Optional[str]],
        poll_interval: float = 2.0,
    ) -> AsyncIterator[dict]:
        """Yield matching logs from the current block onward until cancelled."""
        from_block = await self.get_block_number()
        while True:
            latest = await self.get_block_number()
            if latest >= from_block:
                logs = await self.get_logs(
                    {
                        "address": address,
                        "topics": topics,
                        "fromBlock": hex(from_block),
                        "toBlock": hex(latest),
                    }
                )
                for log in logs:
                    yield log
                from_block = latest + 1
            await asyncio.sleep(poll_interval)

