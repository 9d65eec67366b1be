from __future__ import annotations

from decimal import Decimal

import pytest

from gigledger.errors import (
    InvalidState,
    InvalidTransition,
    MilestonesIncomplete,
    NotFound,
    Unauthorized,
    ValidationFailure,
)
from gigledger.models import Contract, EscrowTransaction, Gig

from conftest import ARBITRATOR, BIDDER, OWNER


def _types(ledger, user_id):
    return [item.type for item in ledger.dispatcher.list_for(user_id)]


def _gig_escrow_status(ledger, contract_id):
    with ledger.session() as session:
        escrow = session.query(EscrowTransaction).filter_by(contract_id=contract_id).first()
        return session.get(Gig, escrow.gig_id).escrow_status


def _funded(ledger, contract_id, **kwargs):
    escrow = ledger.escrow.initiate(contract_id, OWNER, **kwargs)
    return ledger.escrow.fund(escrow.escrow_id, OWNER)


def _unsigned_contract(ledger, make_gig, budget="500"):
    gig_id = make_gig(budget)
    proposal = ledger.proposals.submit_proposal(gig_id, BIDDER, "hello")
    contract = ledger.proposals.accept_proposal(proposal.proposal_id, OWNER)
    return gig_id, contract.contract_id


def test_escrow_without_milestones_moves_pending_funded_released(ledger, signed_contract):
    contract_id = signed_contract()

    escrow = ledger.escrow.initiate(contract_id, OWNER)
    assert escrow.status == "pending"
    assert escrow.amount == 1000.0

    funded = ledger.escrow.fund(escrow.escrow_id, OWNER)
    assert funded.status == "funded"
    assert funded.funded_at is not None
    assert "escrow_funded" in _types(ledger, BIDDER)

    released = ledger.escrow.release(escrow.escrow_id, OWNER)
    assert released.status == "released"
    assert released.released_at is not None
    assert "escrow_released" in _types(ledger, BIDDER)
    assert _gig_escrow_status(ledger, contract_id) == "released"


def test_release_requires_funding_first(ledger, signed_contract):
    contract_id = signed_contract()
    escrow = ledger.escrow.initiate(contract_id, OWNER)

    with pytest.raises(InvalidTransition):
        ledger.escrow.release(escrow.escrow_id, OWNER)

    with ledger.session() as session:
        assert session.get(EscrowTransaction, escrow.escrow_id).status == "pending"


def test_fund_twice_is_an_invalid_transition(ledger, signed_contract):
    contract_id = signed_contract()
    escrow = _funded(ledger, contract_id)

    with pytest.raises(InvalidTransition):
        ledger.escrow.fund(escrow.escrow_id, OWNER)


def test_only_client_initiates_and_funds(ledger, signed_contract):
    contract_id = signed_contract()
    with pytest.raises(Unauthorized):
        ledger.escrow.initiate(contract_id, BIDDER)

    escrow = ledger.escrow.initiate(contract_id, OWNER)
    with pytest.raises(Unauthorized):
        ledger.escrow.fund(escrow.escrow_id, BIDDER)


def test_professional_cannot_release_without_milestones(ledger, signed_contract):
    contract_id = signed_contract()
    escrow = _funded(ledger, contract_id)

    with pytest.raises(Unauthorized):
        ledger.escrow.release(escrow.escrow_id, BIDDER)


def test_one_active_escrow_per_scope(ledger, signed_contract):
    contract_id = signed_contract()
    ledger.escrow.initiate(contract_id, OWNER)

    with pytest.raises(InvalidState):
        ledger.escrow.initiate(contract_id, OWNER)


def test_initiate_validates_amount_and_contract(ledger, signed_contract, make_gig):
    contract_id = signed_contract()
    with pytest.raises(ValidationFailure):
        ledger.escrow.initiate(contract_id, OWNER, amount=Decimal("0"))
    with pytest.raises(NotFound):
        ledger.escrow.initiate("missing", OWNER)
    with pytest.raises(NotFound):
        ledger.escrow.initiate(contract_id, OWNER, milestone_id="missing")


def test_escrow_can_be_opened_before_signature(ledger, make_gig):
    gig_id = make_gig("500")
    proposal = ledger.proposals.submit_proposal(gig_id, BIDDER, "hello")
    contract = ledger.proposals.accept_proposal(proposal.proposal_id, OWNER)

    escrow = ledger.escrow.initiate(contract.contract_id, OWNER)

    assert escrow.amount == 500.0


def test_release_is_gated_on_all_milestones(ledger, signed_contract):
    contract_id = signed_contract("60", "40")
    first, second = ledger.milestones.list_milestones(contract_id)
    assert (first.amount, second.amount) == (600.0, 400.0)
    escrow = _funded(ledger, contract_id)

    with pytest.raises(MilestonesIncomplete) as excinfo:
        ledger.escrow.release(escrow.escrow_id, OWNER)
    assert set(excinfo.value.pending_milestone_ids) == {first.milestone_id, second.milestone_id}

    for step in ("in_progress", "completed"):
        ledger.milestones.advance(first.milestone_id, BIDDER, step)
    ledger.milestones.advance(first.milestone_id, OWNER, "approved")

    with pytest.raises(MilestonesIncomplete) as excinfo:
        ledger.escrow.release(escrow.escrow_id, BIDDER)
    assert excinfo.value.pending_milestone_ids == [second.milestone_id]

    for step in ("in_progress", "completed"):
        ledger.milestones.advance(second.milestone_id, BIDDER, step)
    ledger.milestones.advance(second.milestone_id, OWNER, "approved")

    released = ledger.escrow.release(escrow.escrow_id, BIDDER)
    assert released.status == "released"


def test_client_override_releases_despite_open_milestones(ledger, signed_contract):
    contract_id = signed_contract("60", "40")
    escrow = _funded(ledger, contract_id)

    with pytest.raises(MilestonesIncomplete):
        ledger.escrow.release(escrow.escrow_id, BIDDER, override=True)

    released = ledger.escrow.release(escrow.escrow_id, OWNER, override=True)
    assert released.status == "released"


def test_milestone_scoped_escrow_is_gated_on_its_milestone(ledger, signed_contract):
    contract_id = signed_contract("60", "40")
    first, second = ledger.milestones.list_milestones(contract_id)

    escrow = _funded(ledger, contract_id, milestone_id=first.milestone_id)
    assert escrow.amount == 600.0
    assert escrow.milestone_id == first.milestone_id
    # A second scope on the same contract is independent.
    ledger.escrow.initiate(contract_id, OWNER, milestone_id=second.milestone_id)

    for step in ("in_progress", "completed"):
        ledger.milestones.advance(first.milestone_id, BIDDER, step)
    ledger.milestones.advance(first.milestone_id, OWNER, "approved")

    released = ledger.escrow.release(escrow.escrow_id, BIDDER)
    assert released.status == "released"
    [notification] = [
        item for item in ledger.dispatcher.list_for(BIDDER) if item.type == "escrow_released"
    ]
    assert notification.payload["milestoneId"] == first.milestone_id


def test_dispute_and_arbitrated_refund(ledger, signed_contract):
    contract_id = signed_contract()
    escrow = _funded(ledger, contract_id)

    with pytest.raises(ValidationFailure):
        ledger.escrow.dispute(escrow.escrow_id, OWNER, "   ")

    disputed = ledger.escrow.dispute(escrow.escrow_id, OWNER, "Mix never delivered")
    assert disputed.status == "disputed"
    assert disputed.dispute_reason == "Mix never delivered"
    assert "escrow_disputed" in _types(ledger, OWNER)
    assert "escrow_disputed" in _types(ledger, BIDDER)

    with pytest.raises(InvalidTransition):
        ledger.escrow.release(escrow.escrow_id, OWNER, override=True)
    with pytest.raises(Unauthorized):
        ledger.escrow.resolve(escrow.escrow_id, OWNER, "refunded")

    refunded = ledger.escrow.resolve(escrow.escrow_id, ARBITRATOR, "refunded", note="No delivery")
    assert refunded.status == "refunded"
    assert refunded.resolution_note == "No delivery"
    assert "escrow_resolved" in _types(ledger, OWNER)
    assert "escrow_resolved" in _types(ledger, BIDDER)
    assert _gig_escrow_status(ledger, contract_id) == "refunded"

    # A settled escrow no longer blocks a new one.
    again = ledger.escrow.initiate(contract_id, OWNER)
    assert again.status == "pending"


def test_resolve_only_applies_to_disputed_escrow(ledger, signed_contract):
    contract_id = signed_contract()
    escrow = _funded(ledger, contract_id)

    with pytest.raises(InvalidTransition):
        ledger.escrow.resolve(escrow.escrow_id, ARBITRATOR, "released")
    with pytest.raises(ValidationFailure):
        ledger.escrow.resolve(escrow.escrow_id, ARBITRATOR, "funded")


def test_dispute_by_outsider_is_unauthorized(ledger, signed_contract):
    contract_id = signed_contract()
    escrow = _funded(ledger, contract_id)

    with pytest.raises(Unauthorized):
        ledger.escrow.dispute(escrow.escrow_id, "user-stranger", "not my gig")


def test_list_for_contract_returns_escrows_in_creation_order(ledger, signed_contract):
    contract_id = signed_contract()
    first = _funded(ledger, contract_id)
    ledger.escrow.release(first.escrow_id, OWNER)
    second = ledger.escrow.initiate(contract_id, OWNER)

    escrows = ledger.escrow.list_for_contract(contract_id)

    assert [e.escrow_id for e in escrows] == [first.escrow_id, second.escrow_id]
    assert [e.status for e in escrows] == ["released", "pending"]


def test_pending_escrow_blocks_gig_cancellation(ledger, make_gig):
    gig_id, contract_id = _unsigned_contract(ledger, make_gig)
    escrow = ledger.escrow.initiate(contract_id, OWNER)

    with pytest.raises(InvalidState):
        ledger.contracts.cancel_gig(gig_id, OWNER)

    with ledger.session() as session:
        assert session.get(Gig, gig_id).status == "in_progress"
        assert session.get(Contract, contract_id).status == "pending_signature"
        assert session.get(EscrowTransaction, escrow.escrow_id).status == "pending"


def test_escrow_cannot_move_once_contract_is_cancelled(ledger, make_gig):
    _, pending_contract = _unsigned_contract(ledger, make_gig)
    _, funded_contract = _unsigned_contract(ledger, make_gig)
    pending = ledger.escrow.initiate(pending_contract, OWNER)
    funded = _funded(ledger, funded_contract)

    with ledger.uow.session_scope() as session:
        for contract_id in (pending_contract, funded_contract):
            session.get(Contract, contract_id).status = "cancelled"

    with pytest.raises(InvalidState):
        ledger.escrow.fund(pending.escrow_id, OWNER)
    with pytest.raises(InvalidState):
        ledger.escrow.release(funded.escrow_id, OWNER, override=True)

    with ledger.session() as session:
        assert session.get(EscrowTransaction, pending.escrow_id).status == "pending"
        assert session.get(EscrowTransaction, funded.escrow_id).status == "funded"
        assert session.get(Gig, session.get(Contract, funded_contract).gig_id).escrow_status == "funded"
