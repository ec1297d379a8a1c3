"""Awaitable decision points for user approval of intents and allowances.

The pipeline hands a gate to the caller's hook and suspends on
gate.wait() until the hook (now or later, from any task) resolves it.
"""

import asyncio
import inspect
import logging
from typing import Any, Awaitable, Callable, Generic, Optional, TypeVar, Union

from nexus_ca.errors import Errors

logger = logging.getLogger(__name__)

T = TypeVar("T")

AllowanceDecision = Union[str, int]  # "min" | "max" | decimal string | raw int


class HookGate(Generic[T]):
    """A one-shot continuation/cancellation point."""

    def __init__(self):
        self._future: asyncio.Future = asyncio.get_running_loop().create_future()

    @property
    def decided(self) -> bool:
        return self._future.done()

    def _resolve(self, value: T) -> None:
        if not self._future.done():
            self._future.set_result(value)

    def _reject(self, error: BaseException) -> None:
        if not self._future.done():
            self._future.set_exception(error)

    async def wait(self) -> T:
        return await self._future


class IntentGate(HookGate[None]):
    """Gate on a built intent: allow, deny, or rebuild with other sources."""

    def __init__(self, intent: Any, rebuild: Callable[[Optional[list[int]]], Awaitable[Any]]):
        super().__init__()
        self.intent = intent
        self._rebuild = rebuild

    def allow(self) -> None:
        self._resolve(None)

    def deny(self) -> None:
        self._reject(Errors.user_rejected_intent())

    async def refresh(self, source_chains: Optional[list[int]] = None) -> Any:
        """Rebuild the intent, only while it is still undecided."""
        if self.decided:
            logger.warning("Intent already accepted, refresh ignored")
            return self.intent
        self.intent = await self._rebuild(source_chains)
        return self.intent


class AllowanceGate(HookGate[list]):
    """Gate on the allowances needed by an intent's sources."""

    def __init__(self, sources: list[Any]):
        super().__init__()
        self.sources = sources

    def allow(self, decisions: list[AllowanceDecision]) -> None:
        self._resolve(list(decisions))

    def deny(self) -> None:
        self._reject(Errors.user_rejected_allowance())


async def run_hook(hook: Optional[Callable[[Any], Any]], gate: HookGate, default: Callable[[Any], None]) -> Any:
    """Invoke hook (sync or async) with the gate, then wait for its decision."""
    fn = hook or default
    result = fn(gate)
    if inspect.isawaitable(result):
        await result
    return await gate.wait()


def allow_intent(gate: IntentGate) -> None:
    gate.allow()


def allow_minimum(gate: AllowanceGate) -> None:
    gate.allow(["min"] * len(gate.sources))
