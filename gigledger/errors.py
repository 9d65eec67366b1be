"""Business and persistence failures raised by the ledger services.

Every error names the precondition that failed so the caller can tell a final
outcome (``InvalidState``, ``Unauthorized`` ...) from a retry-worthy one
(``PersistenceFailure``).
"""

from __future__ import annotations


class LedgerError(Exception):
    """Base class for all ledger failures surfaced to request handlers."""

    code = "ledger_error"

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class NotFound(LedgerError):
    code = "not_found"

    def __init__(self, entity: str, identifier: str) -> None:
        super().__init__(f"{entity} {identifier} does not exist")
        self.entity = entity
        self.identifier = identifier


class Unauthorized(LedgerError):
    code = "unauthorized"


class InvalidState(LedgerError):
    code = "invalid_state"


class InvalidMilestonePlan(InvalidState):
    code = "invalid_milestone_plan"


class InvalidTransition(LedgerError):
    code = "invalid_transition"

    def __init__(self, entity: str, current: str, target: str) -> None:
        super().__init__(f"{entity} cannot move from {current} to {target}")
        self.entity = entity
        self.current = current
        self.target = target


class DuplicateProposal(LedgerError):
    code = "duplicate_proposal"


class MilestonesIncomplete(LedgerError):
    code = "milestones_incomplete"

    def __init__(self, pending_milestone_ids: list[str]) -> None:
        super().__init__(
            f"{len(pending_milestone_ids)} gating milestone(s) are not approved yet"
        )
        self.pending_milestone_ids = pending_milestone_ids


class ValidationFailure(LedgerError):
    code = "validation_failure"


class PersistenceFailure(LedgerError):
    """Store unreachable or a concurrent writer won the commit; safe to retry."""

    code = "persistence_failure"


__all__ = [
    "DuplicateProposal",
    "InvalidMilestonePlan",
    "InvalidState",
    "InvalidTransition",
    "LedgerError",
    "MilestonesIncomplete",
    "NotFound",
    "PersistenceFailure",
    "Unauthorized",
    "ValidationFailure",
]
