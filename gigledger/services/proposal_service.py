"""Proposal submission and the proposal→contract conversion."""

from __future__ import annotations

from decimal import Decimal, InvalidOperation
from typing import Any

from loguru import logger
from sqlalchemy.orm import Session

from gigledger import schemas
from gigledger.domain.notifications import (
    ProposalAcceptedPayload,
    ProposalRejectedPayload,
    ProposalSubmittedPayload,
)
from gigledger.errors import (
    DuplicateProposal,
    InvalidState,
    NotFound,
    Unauthorized,
    ValidationFailure,
)
from gigledger.models import (
    Contract,
    ContractStatus,
    Gig,
    GigStatus,
    Proposal,
    ProposalStatus,
    utcnow,
)
from gigledger.repositories import ContractRepository, GigRepository
from gigledger.state_machines import GIG_TRANSITIONS

from .base import Committed, LifecycleService


def _to_amount(value: Any) -> Decimal | None:
    if value is None:
        return None
    try:
        return Decimal(str(value))
    except (InvalidOperation, ValueError) as exc:
        raise ValidationFailure(f"rate {value!r} is not a number") from exc


class ProposalService(LifecycleService):
    """Manage proposals from submission to decision."""

    def submit_proposal(
        self,
        gig_id: str,
        bidder_id: str,
        message: str,
        rate: Decimal | float | str | None = None,
        timeline: str | None = None,
    ) -> schemas.Proposal:
        amount = _to_amount(rate)
        if amount is not None and amount <= 0:
            raise ValidationFailure("a proposed rate must be positive")
        if not message or not message.strip():
            raise ValidationFailure("a proposal needs a message")

        def work(session: Session) -> Committed[schemas.Proposal]:
            gigs = GigRepository(session)
            gig = gigs.get_gig(gig_id, for_update=True)
            if gig is None:
                raise NotFound("gig", gig_id)
            if gig.owner_id == bidder_id:
                raise Unauthorized("gig owners cannot bid on their own gig")
            if gig.status != GigStatus.OPEN.value:
                raise InvalidState(f"gig {gig_id} is {gig.status} and no longer takes proposals")
            if gigs.find_pending_proposal(gig_id, bidder_id) is not None:
                raise DuplicateProposal(f"{bidder_id} already has a pending proposal on gig {gig_id}")

            proposal = gigs.add_proposal(
                Proposal(
                    gig_id=gig_id,
                    bidder_id=bidder_id,
                    message=message.strip(),
                    rate=amount,
                    timeline=timeline,
                    status=ProposalStatus.PENDING.value,
                )
            )
            outbox_id = self._dispatcher.enqueue(
                session,
                gig.owner_id,
                ProposalSubmittedPayload(
                    gig_id=gig.gig_id,
                    gig_title=gig.title,
                    proposal_id=proposal.proposal_id,
                    bidder_id=bidder_id,
                ),
            )
            logger.info("Proposal {} submitted on gig {} by {}", proposal.proposal_id, gig_id, bidder_id)
            return Committed(schemas.Proposal.model_validate(proposal), [outbox_id])

        return self._commit("submit_proposal", work)

    def accept_proposal(self, proposal_id: str, acting_user_id: str) -> schemas.Contract:
        """Accept a proposal and open its contract in one transaction.

        Retrying an accept that already succeeded returns the existing
        contract and enqueues nothing.
        """

        def work(session: Session) -> Committed[schemas.Contract]:
            gigs = GigRepository(session)
            contracts = ContractRepository(session)
            proposal, gig = self._load_for_decision(gigs, proposal_id, acting_user_id)

            if proposal.status == ProposalStatus.ACCEPTED.value:
                existing = contracts.get_contract_for_proposal(proposal_id)
                if existing is not None:
                    logger.info(
                        "Proposal {} was already accepted; returning contract {}",
                        proposal_id,
                        existing.contract_id,
                    )
                    return Committed(schemas.Contract.model_validate(existing))
            if proposal.status != ProposalStatus.PENDING.value:
                raise InvalidState("this proposal has already been decided")
            if gig.status != GigStatus.OPEN.value:
                raise InvalidState(f"gig {gig.gig_id} is {gig.status}, not open")

            total = proposal.rate if proposal.rate is not None else gig.budget
            if total is None or total <= 0:
                raise InvalidState(
                    "the contract amount is unknown: the proposal has no rate and the gig has no budget"
                )

            GIG_TRANSITIONS.check(gig.status, GigStatus.IN_PROGRESS)
            proposal.status = ProposalStatus.ACCEPTED.value
            proposal.decided_at = utcnow()
            gig.status = GigStatus.IN_PROGRESS.value

            contract = contracts.add_contract(
                Contract(
                    gig_id=gig.gig_id,
                    proposal_id=proposal.proposal_id,
                    client_id=gig.owner_id,
                    professional_id=proposal.bidder_id,
                    total_amount=total,
                    terms=proposal.message,
                    status=ContractStatus.PENDING_SIGNATURE.value,
                )
            )
            outbox_id = self._dispatcher.enqueue(
                session,
                proposal.bidder_id,
                ProposalAcceptedPayload(
                    gig_id=gig.gig_id,
                    gig_title=gig.title,
                    proposal_id=proposal.proposal_id,
                    contract_id=contract.contract_id,
                ),
            )
            logger.info(
                "Accepted proposal {} on gig {}; contract {} awaits signature",
                proposal_id,
                gig.gig_id,
                contract.contract_id,
            )
            return Committed(schemas.Contract.model_validate(contract), [outbox_id])

        return self._commit("accept_proposal", work)

    def reject_proposal(self, proposal_id: str, acting_user_id: str) -> schemas.Proposal:
        def work(session: Session) -> Committed[schemas.Proposal]:
            gigs = GigRepository(session)
            proposal, gig = self._load_for_decision(gigs, proposal_id, acting_user_id)
            if proposal.status != ProposalStatus.PENDING.value:
                raise InvalidState("this proposal has already been decided")

            proposal.status = ProposalStatus.REJECTED.value
            proposal.decided_at = utcnow()
            session.flush()
            outbox_id = self._dispatcher.enqueue(
                session,
                proposal.bidder_id,
                ProposalRejectedPayload(
                    gig_id=gig.gig_id,
                    gig_title=gig.title,
                    proposal_id=proposal.proposal_id,
                ),
            )
            logger.info("Rejected proposal {} on gig {}", proposal_id, gig.gig_id)
            return Committed(schemas.Proposal.model_validate(proposal), [outbox_id])

        return self._commit("reject_proposal", work)

    def withdraw_proposal(self, proposal_id: str, acting_user_id: str) -> schemas.Proposal:
        def work(session: Session) -> Committed[schemas.Proposal]:
            proposal = GigRepository(session).get_proposal(proposal_id, for_update=True)
            if proposal is None:
                raise NotFound("proposal", proposal_id)
            if proposal.bidder_id != acting_user_id:
                raise Unauthorized("only the bidder can withdraw a proposal")
            if proposal.status != ProposalStatus.PENDING.value:
                raise InvalidState("this proposal has already been decided")

            proposal.status = ProposalStatus.REJECTED.value
            proposal.decided_at = utcnow()
            session.flush()
            logger.info("Proposal {} withdrawn by {}", proposal_id, acting_user_id)
            return Committed(schemas.Proposal.model_validate(proposal))

        return self._commit("withdraw_proposal", work)

    @staticmethod
    def _load_for_decision(
        gigs: GigRepository, proposal_id: str, acting_user_id: str
    ) -> tuple[Proposal, Gig]:
        proposal = gigs.get_proposal(proposal_id, for_update=True)
        if proposal is None:
            raise NotFound("proposal", proposal_id)
        gig = gigs.get_gig(proposal.gig_id, for_update=True)
        if gig is None:
            raise NotFound("gig", proposal.gig_id)
        if gig.owner_id != acting_user_id:
            raise Unauthorized("only the gig owner can decide on proposals")
        return proposal, gig


__all__ = ["ProposalService"]
