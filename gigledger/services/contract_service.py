"""Contract signing, completion, gig cancellation and reviews."""

from __future__ import annotations

from typing import Sequence

from loguru import logger
from sqlalchemy.orm import Session

from gigledger import schemas
from gigledger.domain import MilestoneSpec
from gigledger.domain.notifications import (
    ContractCancelledPayload,
    ContractCompletedPayload,
    ContractSignedPayload,
    ReviewReceivedPayload,
)
from gigledger.errors import InvalidState, NotFound, Unauthorized, ValidationFailure
from gigledger.models import (
    Contract,
    ContractStatus,
    EscrowStatus,
    Gig,
    GigStatus,
    Review,
    utcnow,
)
from gigledger.repositories import ContractRepository, GigRepository
from gigledger.state_machines import CONTRACT_TRANSITIONS, GIG_TRANSITIONS

from .base import Committed, LifecycleService
from .milestone_service import plan_milestones

# Escrow states that still hold, or may still move, money.
_UNSETTLED_ESCROW = (
    EscrowStatus.PENDING.value,
    EscrowStatus.FUNDED.value,
    EscrowStatus.DISPUTED.value,
)


class ContractService(LifecycleService):
    """Drive a contract from signature to completion."""

    def sign_contract(
        self,
        contract_id: str,
        acting_user_id: str,
        milestones: Sequence[MilestoneSpec] | None = None,
    ) -> schemas.Contract:
        """Activate a contract, optionally planning its milestones in the same commit."""

        def work(session: Session) -> Committed[schemas.Contract]:
            repo = ContractRepository(session)
            contract = repo.lock_contract(contract_id)
            if contract is None:
                raise NotFound("contract", contract_id)
            if contract.professional_id != acting_user_id:
                raise Unauthorized("only the professional can sign the contract")
            CONTRACT_TRANSITIONS.check(contract.status, ContractStatus.ACTIVE)

            contract.status = ContractStatus.ACTIVE.value
            contract.start_date = utcnow()
            session.flush()
            if milestones:
                plan_milestones(repo, contract, milestones)

            gig = self._gig(session, contract.gig_id)
            outbox_id = self._dispatcher.enqueue(
                session,
                contract.client_id,
                ContractSignedPayload(
                    contract_id=contract.contract_id,
                    gig_id=gig.gig_id,
                    gig_title=gig.title,
                    professional_id=contract.professional_id,
                ),
            )
            logger.info("Contract {} signed by {}", contract_id, acting_user_id)
            return Committed(schemas.Contract.model_validate(contract), [outbox_id])

        return self._commit("sign_contract", work)

    def complete_contract(self, contract_id: str, acting_user_id: str) -> schemas.Contract:
        def work(session: Session) -> Committed[schemas.Contract]:
            repo = ContractRepository(session)
            contract = repo.lock_contract(contract_id)
            if contract is None:
                raise NotFound("contract", contract_id)
            if contract.client_id != acting_user_id:
                raise Unauthorized("only the client can complete the contract")
            CONTRACT_TRANSITIONS.check(contract.status, ContractStatus.COMPLETED)

            unsettled = repo.list_escrows(contract_id, statuses=_UNSETTLED_ESCROW)
            if unsettled:
                raise InvalidState(
                    f"contract {contract_id} still has {len(unsettled)} unsettled escrow transaction(s)"
                )

            gig = self._gig(session, contract.gig_id)
            GIG_TRANSITIONS.check(gig.status, GigStatus.COMPLETED)
            contract.status = ContractStatus.COMPLETED.value
            contract.end_date = utcnow()
            gig.status = GigStatus.COMPLETED.value
            session.flush()

            outbox_id = self._dispatcher.enqueue(
                session,
                contract.professional_id,
                ContractCompletedPayload(
                    contract_id=contract.contract_id,
                    gig_id=gig.gig_id,
                    gig_title=gig.title,
                    client_id=contract.client_id,
                ),
            )
            logger.info("Contract {} completed; gig {} closed", contract_id, gig.gig_id)
            return Committed(schemas.Contract.model_validate(contract), [outbox_id])

        return self._commit("complete_contract", work)

    def cancel_gig(self, gig_id: str, acting_user_id: str) -> schemas.Gig:
        """Cancel a gig that is still open, or whose contract is not yet signed."""

        def work(session: Session) -> Committed[schemas.Gig]:
            gig = GigRepository(session).get_gig(gig_id, for_update=True)
            if gig is None:
                raise NotFound("gig", gig_id)
            if gig.owner_id != acting_user_id:
                raise Unauthorized("only the gig owner can cancel the gig")
            GIG_TRANSITIONS.check(gig.status, GigStatus.CANCELLED)

            outbox_ids: list[str] = []
            if gig.status == GigStatus.IN_PROGRESS.value:
                contract = self._cancel_unsigned_contract(session, gig)
                outbox_ids.append(
                    self._dispatcher.enqueue(
                        session,
                        contract.professional_id,
                        ContractCancelledPayload(
                            contract_id=contract.contract_id,
                            gig_id=gig.gig_id,
                            gig_title=gig.title,
                        ),
                    )
                )

            gig.status = GigStatus.CANCELLED.value
            session.flush()
            logger.info("Gig {} cancelled by {}", gig_id, acting_user_id)
            return Committed(schemas.Gig.model_validate(gig), outbox_ids)

        return self._commit("cancel_gig", work)

    def leave_review(
        self,
        contract_id: str,
        reviewer_id: str,
        rating: int,
        comment: str | None = None,
    ) -> schemas.Review:
        if isinstance(rating, bool) or not isinstance(rating, int) or not 1 <= rating <= 5:
            raise ValidationFailure("rating must be a whole number from 1 to 5")

        def work(session: Session) -> Committed[schemas.Review]:
            repo = ContractRepository(session)
            contract = repo.get_contract(contract_id)
            if contract is None:
                raise NotFound("contract", contract_id)
            if reviewer_id not in (contract.client_id, contract.professional_id):
                raise Unauthorized("only the contract parties can leave a review")
            if contract.status != ContractStatus.COMPLETED.value:
                raise InvalidState("reviews open once the contract is completed")
            if repo.find_review(contract_id, reviewer_id) is not None:
                raise InvalidState(f"{reviewer_id} has already reviewed contract {contract_id}")

            reviewee_id = (
                contract.professional_id
                if reviewer_id == contract.client_id
                else contract.client_id
            )
            review = repo.add_review(
                Review(
                    contract_id=contract_id,
                    reviewer_id=reviewer_id,
                    reviewee_id=reviewee_id,
                    rating=rating,
                    comment=comment,
                )
            )
            outbox_id = self._dispatcher.enqueue(
                session,
                reviewee_id,
                ReviewReceivedPayload(
                    review_id=review.review_id,
                    contract_id=contract_id,
                    reviewer_id=reviewer_id,
                    rating=rating,
                ),
            )
            logger.info("Review {} left on contract {} by {}", review.review_id, contract_id, reviewer_id)
            return Committed(schemas.Review.model_validate(review), [outbox_id])

        return self._commit("leave_review", work)

    # ------------------------------------------------------------------
    # Helpers

    @staticmethod
    def _gig(session: Session, gig_id: str) -> Gig:
        gig = GigRepository(session).get_gig(gig_id, for_update=True)
        if gig is None:
            raise NotFound("gig", gig_id)
        return gig

    @staticmethod
    def _cancel_unsigned_contract(session: Session, gig: Gig) -> Contract:
        repo = ContractRepository(session)
        open_contract = repo.get_open_contract_for_gig(gig.gig_id)
        if open_contract is None:
            raise InvalidState(f"gig {gig.gig_id} is in progress but has no open contract")
        contract = repo.lock_contract(open_contract.contract_id)
        if contract.status != ContractStatus.PENDING_SIGNATURE.value:
            raise InvalidState("the contract is already signed; complete it instead of cancelling")
        if repo.list_escrows(contract.contract_id, statuses=_UNSETTLED_ESCROW):
            raise InvalidState("an escrow for this contract is still open or holds money")

        CONTRACT_TRANSITIONS.check(contract.status, ContractStatus.CANCELLED)
        contract.status = ContractStatus.CANCELLED.value
        contract.end_date = utcnow()
        return contract


__all__ = ["ContractService"]
