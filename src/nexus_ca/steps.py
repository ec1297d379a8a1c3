"""Step ledger: the observable milestones of one settlement attempt.

The full expected list is emitted once, then each milestone is reported
as it completes. The ledger is purely observational; nothing reads it back
to make decisions.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Optional

logger = logging.getLogger(__name__)

# Event names
STEPS_LIST = "steps_list"
STEP_COMPLETE = "step_complete"

# Milestone types
INTENT_ACCEPTED = "INTENT_ACCEPTED"
ALLOWANCE_USER_APPROVAL = "ALLOWANCE_USER_APPROVAL"
ALLOWANCE_APPROVAL_MINED = "ALLOWANCE_APPROVAL_MINED"
ALLOWANCE_ALL_DONE = "ALLOWANCE_ALL_DONE"
INTENT_HASH_SIGNED = "INTENT_HASH_SIGNED"
INTENT_SUBMITTED = "INTENT_SUBMITTED"
INTENT_DEPOSIT = "INTENT_DEPOSIT"
INTENT_DEPOSITS_CONFIRMED = "INTENT_DEPOSITS_CONFIRMED"
INTENT_COLLECTION = "INTENT_COLLECTION"
INTENT_COLLECTION_COMPLETE = "INTENT_COLLECTION_COMPLETE"
INTENT_FULFILLED = "INTENT_FULFILLED"
EXECUTE_APPROVAL_STEP = "EXECUTE_APPROVAL_STEP"
EXECUTE_TRANSACTION_SENT = "EXECUTE_TRANSACTION_SENT"
EXECUTE_TRANSACTION_CONFIRMED = "EXECUTE_TRANSACTION_CONFIRMED"


@dataclass(frozen=True)
class Step:
    """One milestone. type_id is unique within an attempt."""

    type: str
    type_id: str
    data: dict = field(default_factory=dict, compare=False, hash=False)


@dataclass(frozen=True)
class NexusEvent:
    name: str
    args: Any


EventCallback = Callable[[NexusEvent], None]


def _step(type_: str, type_id: str, **data: Any) -> Step:
    return Step(type_, type_id, data)


def intent_steps(
    sources: list[tuple[int, bool]],
    allowance_chain_ids: list[int],
) -> list[Step]:
    """Expected milestones for one intent.

    Args:
        sources: (chain_id, is_native) per non-destination source, in order
        allowance_chain_ids: chains needing an allowance before submission
    """
    steps = [_step(INTENT_ACCEPTED, "IA")]

    if allowance_chain_ids:
        for chain_id in allowance_chain_ids:
            steps.append(_step(ALLOWANCE_USER_APPROVAL, f"AUA_{chain_id}", chain_id=chain_id))
            steps.append(_step(ALLOWANCE_APPROVAL_MINED, f"AAM_{chain_id}", chain_id=chain_id))
        steps.append(_step(ALLOWANCE_ALL_DONE, "AAD"))

    steps.append(_step(INTENT_HASH_SIGNED, "IHS"))
    steps.append(_step(INTENT_SUBMITTED, "IS"))

    deposits = collections = 0
    for i, (chain_id, is_native) in enumerate(sources, start=1):
        if is_native:
            deposits += 1
            steps.append(_step(INTENT_DEPOSIT, f"ID_{i}", chain_id=chain_id))
        else:
            collections += 1
            steps.append(_step(INTENT_COLLECTION, f"IC_{i}", chain_id=chain_id))

    if deposits:
        steps.append(_step(INTENT_DEPOSITS_CONFIRMED, "UIDC"))
    if collections:
        steps.append(_step(INTENT_COLLECTION_COMPLETE, "ICC"))

    steps.append(_step(INTENT_FULFILLED, "IF"))
    return steps


def execute_steps(with_approval: bool, wait_for_receipt: bool = True) -> list[Step]:
    """Milestones for the destination-chain action."""
    steps = []
    if with_approval:
        steps.append(_step(EXECUTE_APPROVAL_STEP, "EAS"))
    steps.append(_step(EXECUTE_TRANSACTION_SENT, "ETS"))
    if wait_for_receipt:
        steps.append(_step(EXECUTE_TRANSACTION_CONFIRMED, "ETC"))
    return steps


class StepLedger:
    """Tracks and reports milestones through a single callback."""

    def __init__(self, on_event: Optional[EventCallback] = None):
        self.on_event = on_event
        self.steps: list[Step] = []
        self.completed: list[str] = []
        self._announced = False

    def _emit(self, name: str, args: Any) -> None:
        if self.on_event is None:
            return
        self.on_event(NexusEvent(name, args))

    def extend(self, steps: list[Step]) -> None:
        """Add expected steps; only allowed before announce()."""
        if self._announced:
            raise RuntimeError("steps already announced")
        self.steps.extend(steps)

    def announce(self, emit: bool = True) -> None:
        """Emit the full expected list, once.

        emit=False freezes the list without emitting it, for steps already
        announced as part of an enclosing list.
        """
        if self._announced:
            return
        self._announced = True
        if emit:
            self._emit(STEPS_LIST, list(self.steps))

    def has(self, type_id: str) -> bool:
        return any(s.type_id == type_id for s in self.steps)

    def complete(self, type_id: str, **data: Any) -> None:
        """Mark a listed step complete. Unlisted ids are ignored."""
        for step in self.steps:
            if step.type_id == type_id:
                if type_id in self.completed:
                    return
                self.completed.append(type_id)
                done = Step(step.type, step.type_id, {**step.data, **data})
                logger.debug(f"Step complete: {type_id}")
                self._emit(STEP_COMPLETE, done)
                return
        logger.debug(f"Ignoring unlisted step {type_id}")
