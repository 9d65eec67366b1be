from __future__ import annotations

import pytest

from gigledger.errors import InvalidTransition
from gigledger.models import ContractStatus, EscrowStatus, GigStatus, MilestoneStatus
from gigledger.state_machines import (
    ACTIVE_ESCROW_STATUSES,
    CONTRACT_TRANSITIONS,
    ESCROW_TRANSITIONS,
    GIG_TRANSITIONS,
    MILESTONE_TRANSITIONS,
)


@pytest.mark.parametrize(
    ("current", "target"),
    [
        (EscrowStatus.PENDING, EscrowStatus.FUNDED),
        (EscrowStatus.FUNDED, EscrowStatus.RELEASED),
        (EscrowStatus.FUNDED, EscrowStatus.DISPUTED),
        (EscrowStatus.DISPUTED, EscrowStatus.REFUNDED),
    ],
)
def test_escrow_allowed_transitions(current, target):
    assert ESCROW_TRANSITIONS.check(current, target) is target


@pytest.mark.parametrize(
    ("current", "target"),
    [
        (EscrowStatus.PENDING, EscrowStatus.RELEASED),
        (EscrowStatus.PENDING, EscrowStatus.DISPUTED),
        (EscrowStatus.RELEASED, EscrowStatus.FUNDED),
        (EscrowStatus.REFUNDED, EscrowStatus.RELEASED),
    ],
)
def test_escrow_forbidden_transitions(current, target):
    with pytest.raises(InvalidTransition) as excinfo:
        ESCROW_TRANSITIONS.check(current, target)
    assert excinfo.value.current == current.value
    assert excinfo.value.target == target.value


def test_check_accepts_raw_status_strings():
    assert MILESTONE_TRANSITIONS.check("pending", MilestoneStatus.IN_PROGRESS) is MilestoneStatus.IN_PROGRESS
    with pytest.raises(InvalidTransition):
        MILESTONE_TRANSITIONS.check("pending", MilestoneStatus.APPROVED)


def test_terminal_states():
    assert ESCROW_TRANSITIONS.is_terminal(EscrowStatus.RELEASED)
    assert ESCROW_TRANSITIONS.is_terminal(EscrowStatus.REFUNDED)
    assert MILESTONE_TRANSITIONS.is_terminal(MilestoneStatus.APPROVED)
    assert CONTRACT_TRANSITIONS.is_terminal(ContractStatus.CANCELLED)
    assert GIG_TRANSITIONS.is_terminal(GigStatus.COMPLETED)
    assert not GIG_TRANSITIONS.is_terminal(GigStatus.IN_PROGRESS)


def test_contract_cannot_complete_before_signature():
    with pytest.raises(InvalidTransition):
        CONTRACT_TRANSITIONS.check(ContractStatus.PENDING_SIGNATURE, ContractStatus.COMPLETED)


def test_active_escrow_statuses():
    assert ACTIVE_ESCROW_STATUSES == {EscrowStatus.PENDING, EscrowStatus.FUNDED}
