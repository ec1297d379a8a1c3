"""Relay (middleware) HTTP client.

The relay indexes balances, accepts settlement requests and sponsored
approval batches, and reports request status.
"""

import logging
from typing import Any, Optional

import httpx
from pydantic import ValidationError

from nexus_ca.config import Settings, get_settings
from nexus_ca.contracts import (
    FeeStoreData,
    OraclePrice,
    RelayChainBalance,
    SettlementRecord,
    SubmittedRequest,
)
from nexus_ca.errors import Errors

logger = logging.getLogger(__name__)


class RelayClient:
    """Async client for the relay REST API."""

    def __init__(
        self,
        settings: Optional[Settings] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.settings = settings or get_settings()
        self.base_url = self.settings.relay_url.rstrip("/")
        self.explorer_url = self.settings.explorer_url.rstrip("/")
        self._transport = transport

    async def _request(
        self,
        method: str,
        path: str,
        timeout: Optional[float] = None,
        **kwargs: Any,
    ) -> Any:
        async with httpx.AsyncClient(
            base_url=self.base_url,
            timeout=timeout or self.settings.http_timeout,
            transport=self._transport,
        ) as client:
            try:
                response = await client.request(method, path, **kwargs)
            except httpx.HTTPError as e:
                logger.error(f"Relay {method} {path} failed: {e}")
                raise Errors.relay_error(f"relay request failed: {e}") from e

        if response.status_code >= 400:
            raise Errors.relay_error(
                f"relay {method} {path} returned {response.status_code}",
                status=response.status_code,
                body=response.text,
            )
        return response.json()

    def intent_explorer_url(self, intent_id: str) -> str:
        return f"{self.explorer_url}/intent/{intent_id}"

    # ======================
    # Balances
    # ======================

    async def get_balances(self, universe: str, address: str) -> list[RelayChainBalance]:
        """Indexed balances of address, one entry per chain."""
        data = await self._request("GET", f"/balance/{universe}/{address}")
        balances = []
        for chain_id, entry in data.items():
            try:
                balances.append(RelayChainBalance(chain_id=int(chain_id), **entry))
            except (ValidationError, ValueError) as e:
                logger.warning(f"Skipping malformed relay balance for chain {chain_id}: {e}")
        return balances

    # ======================
    # Settlement requests
    # ======================

    async def submit_request(self, request: dict, signatures: list[dict]) -> SubmittedRequest:
        data = await self._request("POST", "/rff", json={"request": request, "signatures": signatures})
        request_hash = data["request_hash"]
        intent_id = str(data.get("id", request_hash))
        logger.info(f"Settlement request submitted: {request_hash}")
        return SubmittedRequest(
            request_hash=request_hash,
            intent_id=intent_id,
            explorer_url=self.intent_explorer_url(intent_id),
        )

    async def get_request(self, request_hash: str) -> SettlementRecord:
        data = await self._request("GET", f"/rff/{request_hash}")
        try:
            return SettlementRecord(**data)
        except ValidationError as e:
            raise Errors.relay_error(f"malformed request status: {e}", body=data) from e

    async def list_requests(
        self,
        address: str,
        status: Optional[str] = None,
        limit: int = 100,
    ) -> list[SettlementRecord]:
        params: dict[str, Any] = {"address": address, "limit": limit}
        if status:
            params["status"] = status
        data = await self._request("GET", "/rffs", params=params)
        return [SettlementRecord(**item) for item in data.get("rffs", [])]

    # ======================
    # Approvals / fees / prices
    # ======================

    async def create_sponsored_approvals(self, approvals: list[dict]) -> dict:
        """Submit one batch of signed permits for relay-side execution."""
        data = await self._request(
            "POST",
            "/create-sponsored-approvals",
            json={"approvals": approvals},
            timeout=self.settings.sponsored_approval_timeout,
        )
        if data.get("errored"):
            raise Errors.relay_error("sponsored approvals rejected", body=data)
        return data

    async def get_fee_store(self) -> FeeStoreData:
        data = await self._request("GET", "/fees")
        try:
            return FeeStoreData(**data)
        except ValidationError as e:
            raise Errors.relay_error(f"malformed fee schedule: {e}", body=data) from e

    async def get_oracle_prices(self) -> list[OraclePrice]:
        data = await self._request("GET", "/oracle-prices")
        try:
            return [OraclePrice(**item) for item in data]
        except ValidationError as e:
            raise Errors.relay_error(f"malformed oracle prices: {e}", body=data) from e
