"""Tests for the relay HTTP client."""

import json
from decimal import Decimal

import httpx
import pytest

from nexus_ca.errors import ErrorCode, NexusError
from nexus_ca.relay import RelayClient


def _client(settings, handler) -> RelayClient:
    return RelayClient(settings, transport=httpx.MockTransport(handler))


class TestRelayClient:
    """Relay REST calls."""

    @pytest.mark.asyncio
    async def test_submit_request(self, settings):
        """Submission returns the request hash and explorer link."""
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["path"] = request.url.path
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, json={"request_hash": "0xabc", "id": 42})

        submitted = await _client(settings, handler).submit_request({"a": 1}, [{"s": 2}])

        assert seen["path"] == "/rff"
        assert seen["body"] == {"request": {"a": 1}, "signatures": [{"s": 2}]}
        assert submitted.request_hash == "0xabc"
        assert submitted.intent_id == "42"
        assert submitted.explorer_url == "https://explorer.test/intent/42"

    @pytest.mark.asyncio
    async def test_error_status_raises(self, settings):
        """HTTP errors become RELAY_REQUEST_FAILED with the status."""

        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(503, text="unavailable")

        with pytest.raises(NexusError) as exc:
            await _client(settings, handler).get_request("0xabc")

        assert exc.value.code == ErrorCode.RELAY_REQUEST_FAILED
        assert exc.value.context["status"] == 503
        assert exc.value.retryable

    @pytest.mark.asyncio
    async def test_list_requests(self, settings):
        """Listing passes address, status and limit."""
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["params"] = dict(request.url.params)
            return httpx.Response(
                200,
                json={"rffs": [{"request_hash": "0x1", "status": "fulfilled", "fulfilled": True}]},
            )

        records = await _client(settings, handler).list_requests("0xme", status="fulfilled", limit=5)

        assert seen["params"] == {"address": "0xme", "limit": "5", "status": "fulfilled"}
        assert records[0].fulfilled is True

    @pytest.mark.asyncio
    async def test_balances_skip_malformed(self, settings):
        """Malformed chain entries are dropped."""

        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(
                200,
                json={
                    "200": {"currencies": [{"token_address": "0x01", "balance": "1.5"}]},
                    "bad": {"currencies": []},
                },
            )

        balances = await _client(settings, handler).get_balances("EVM", "0xme")

        assert len(balances) == 1
        assert balances[0].chain_id == 200
        assert balances[0].currencies[0].balance == Decimal("1.5")

    @pytest.mark.asyncio
    async def test_sponsored_approvals_errored(self, settings):
        """An errored batch raises."""

        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json={"errored": True})

        with pytest.raises(NexusError) as exc:
            await _client(settings, handler).create_sponsored_approvals([{}])

        assert exc.value.code == ErrorCode.RELAY_REQUEST_FAILED

    @pytest.mark.asyncio
    async def test_malformed_fee_schedule_raises(self, settings):
        """An unparseable fee schedule is a relay failure, not an empty one."""

        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json={"protocol_fee_bp": "lots"})

        with pytest.raises(NexusError) as exc:
            await _client(settings, handler).get_fee_store()

        assert exc.value.code == ErrorCode.RELAY_REQUEST_FAILED

    @pytest.mark.asyncio
    async def test_request_collection_progress(self, settings):
        def handler(request: httpx.Request) -> httpx.Response:
            assert request.url.path == "/rff/0xabc"
            return httpx.Response(200, json={"request_hash": "0xabc", "collected": [0, 2]})

        record = await _client(settings, handler).get_request("0xabc")

        assert record.collected == [0, 2]
        assert record.fee_expired is False
