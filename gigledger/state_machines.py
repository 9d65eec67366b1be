"""Transition tables for every status-bearing ledger entity.

Escrow lifecycle:
    PENDING → FUNDED → RELEASED
    FUNDED → DISPUTED → RELEASED | REFUNDED   (arbitration only)

Milestone lifecycle (one step at a time):
    PENDING → IN_PROGRESS → COMPLETED → APPROVED

Contract lifecycle:
    PENDING_SIGNATURE → ACTIVE → COMPLETED
    PENDING_SIGNATURE → CANCELLED

Gig lifecycle:
    OPEN → IN_PROGRESS → COMPLETED
    OPEN | IN_PROGRESS → CANCELLED

The tables only validate; persistence and notifications live in the services.
Invalid transitions raise ``InvalidTransition`` and leave the entity untouched.
"""

from __future__ import annotations

from enum import Enum
from typing import Generic, Mapping, TypeVar

from .errors import InvalidTransition
from .models import ContractStatus, EscrowStatus, GigStatus, MilestoneStatus

StatusT = TypeVar("StatusT", bound=Enum)


class TransitionTable(Generic[StatusT]):
    """Validate status changes against an explicit ``{from: {to, ...}}`` table."""

    def __init__(self, entity: str, transitions: Mapping[StatusT, set[StatusT]]) -> None:
        self.entity = entity
        self._transitions = {state: frozenset(targets) for state, targets in transitions.items()}

    def allowed(self, current: StatusT) -> frozenset[StatusT]:
        return self._transitions.get(current, frozenset())

    def is_terminal(self, state: StatusT) -> bool:
        return not self.allowed(state)

    def check(self, current: StatusT | str, target: StatusT) -> StatusT:
        """Return ``target`` if ``current → target`` is permitted."""

        state = type(target)(current)
        if target not in self.allowed(state):
            raise InvalidTransition(self.entity, state.value, target.value)
        return target


ESCROW_TRANSITIONS: TransitionTable[EscrowStatus] = TransitionTable(
    "escrow transaction",
    {
        EscrowStatus.PENDING: {EscrowStatus.FUNDED},
        EscrowStatus.FUNDED: {EscrowStatus.RELEASED, EscrowStatus.DISPUTED},
        EscrowStatus.DISPUTED: {EscrowStatus.RELEASED, EscrowStatus.REFUNDED},
        EscrowStatus.RELEASED: set(),
        EscrowStatus.REFUNDED: set(),
    },
)

# Escrow rows that still hold or await money for their scope.
ACTIVE_ESCROW_STATUSES = frozenset({EscrowStatus.PENDING, EscrowStatus.FUNDED})

MILESTONE_TRANSITIONS: TransitionTable[MilestoneStatus] = TransitionTable(
    "milestone",
    {
        MilestoneStatus.PENDING: {MilestoneStatus.IN_PROGRESS},
        MilestoneStatus.IN_PROGRESS: {MilestoneStatus.COMPLETED},
        MilestoneStatus.COMPLETED: {MilestoneStatus.APPROVED},
        MilestoneStatus.APPROVED: set(),
    },
)

CONTRACT_TRANSITIONS: TransitionTable[ContractStatus] = TransitionTable(
    "contract",
    {
        ContractStatus.PENDING_SIGNATURE: {ContractStatus.ACTIVE, ContractStatus.CANCELLED},
        ContractStatus.ACTIVE: {ContractStatus.COMPLETED},
        ContractStatus.COMPLETED: set(),
        ContractStatus.CANCELLED: set(),
    },
)

GIG_TRANSITIONS: TransitionTable[GigStatus] = TransitionTable(
    "gig",
    {
        GigStatus.OPEN: {GigStatus.IN_PROGRESS, GigStatus.CANCELLED},
        GigStatus.IN_PROGRESS: {GigStatus.COMPLETED, GigStatus.CANCELLED},
        GigStatus.COMPLETED: set(),
        GigStatus.CANCELLED: set(),
    },
)


__all__ = [
    "ACTIVE_ESCROW_STATUSES",
    "CONTRACT_TRANSITIONS",
    "ESCROW_TRANSITIONS",
    "GIG_TRANSITIONS",
    "MILESTONE_TRANSITIONS",
    "TransitionTable",
]
