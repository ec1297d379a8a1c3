"""Tests for intent and allowance hooks."""

import asyncio

import pytest

from nexus_ca.errors import ErrorCode, NexusError
from nexus_ca.gate import AllowanceGate, IntentGate, allow_intent, allow_minimum, run_hook


async def _rebuild(chains):
    return {"rebuilt": chains}


class TestIntentGate:
    """Intent approval hook."""

    @pytest.mark.asyncio
    async def test_default_allows(self):
        """Without a hook the intent is allowed."""
        gate = IntentGate({"id": 1}, _rebuild)

        await run_hook(None, gate, allow_intent)

        assert gate.decided

    @pytest.mark.asyncio
    async def test_deny_raises_user_rejected(self):
        """Denying surfaces USER_DENIED_INTENT."""
        gate = IntentGate({"id": 1}, _rebuild)

        with pytest.raises(NexusError) as exc:
            await run_hook(lambda g: g.deny(), gate, allow_intent)

        assert exc.value.code == ErrorCode.USER_DENIED_INTENT

    @pytest.mark.asyncio
    async def test_hook_can_decide_later(self):
        """The pipeline waits for a decision made from another task."""
        gate = IntentGate({"id": 1}, _rebuild)

        def hook(g):
            asyncio.get_running_loop().call_later(0.01, g.allow)

        await asyncio.wait_for(run_hook(hook, gate, allow_intent), timeout=1)

        assert gate.decided

    @pytest.mark.asyncio
    async def test_refresh_only_before_decision(self):
        """Refresh rebuilds while undecided and is a no-op after allow."""
        gate = IntentGate({"id": 1}, _rebuild)

        assert await gate.refresh([200]) == {"rebuilt": [200]}
        gate.allow()
        assert await gate.refresh([300]) == {"rebuilt": [200]}


class TestAllowanceGate:
    """Allowance approval hook."""

    @pytest.mark.asyncio
    async def test_default_is_minimum(self):
        """Default decision is 'min' for every source."""
        gate = AllowanceGate([{}, {}])

        decisions = await run_hook(None, gate, allow_minimum)

        assert decisions == ["min", "min"]

    @pytest.mark.asyncio
    async def test_async_hook(self):
        """Async hooks are awaited."""
        gate = AllowanceGate([{}])

        async def hook(g):
            g.allow(["max"])

        assert await run_hook(hook, gate, allow_minimum) == ["max"]

    @pytest.mark.asyncio
    async def test_deny(self):
        """Denying surfaces USER_DENIED_ALLOWANCE."""
        gate = AllowanceGate([{}])

        with pytest.raises(NexusError) as exc:
            await run_hook(lambda g: g.deny(), gate, allow_minimum)

        assert exc.value.code == ErrorCode.USER_DENIED_ALLOWANCE
