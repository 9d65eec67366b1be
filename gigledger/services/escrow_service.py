"""Escrow ledger transitions gated by milestone approval.

Every transition locks and version-bumps the owning contract, so two
transitions on the same contract never interleave: the slower writer fails
its version check and is retried against the committed state.
"""

from __future__ import annotations

from decimal import Decimal, InvalidOperation
from typing import Any

from loguru import logger
from sqlalchemy.orm import Session

from gigledger import schemas
from gigledger.domain import NotificationPayload
from gigledger.domain.notifications import (
    EscrowDisputedPayload,
    EscrowFundedPayload,
    EscrowReleasedPayload,
    EscrowResolvedPayload,
)
from gigledger.errors import (
    InvalidState,
    InvalidTransition,
    MilestonesIncomplete,
    NotFound,
    Unauthorized,
    ValidationFailure,
)
from gigledger.models import (
    Contract,
    ContractStatus,
    EscrowStatus,
    EscrowTransaction,
    Gig,
    MilestoneStatus,
    utcnow,
)
from gigledger.repositories import ContractRepository, GigRepository
from gigledger.state_machines import ACTIVE_ESCROW_STATUSES, ESCROW_TRANSITIONS

from .base import Committed, LifecycleService

_FUNDABLE_CONTRACT_STATUSES = {ContractStatus.ACTIVE.value, ContractStatus.PENDING_SIGNATURE.value}
_RESOLUTION_OUTCOMES = {EscrowStatus.RELEASED, EscrowStatus.REFUNDED}


def _positive_amount(value: Any) -> Decimal:
    try:
        amount = Decimal(str(value))
    except (InvalidOperation, ValueError) as exc:
        raise ValidationFailure(f"escrow amount {value!r} is not a number") from exc
    if not amount.is_finite() or amount <= 0:
        raise ValidationFailure("escrow amount must be positive")
    return amount


class EscrowService(LifecycleService):
    """Move escrow transactions through pending → funded → released."""

    # ------------------------------------------------------------------
    # Transitions

    def initiate(
        self,
        contract_id: str,
        acting_user_id: str,
        amount: Decimal | float | str | None = None,
        milestone_id: str | None = None,
    ) -> schemas.EscrowTransaction:
        def work(session: Session) -> Committed[schemas.EscrowTransaction]:
            repo = ContractRepository(session)
            contract = repo.lock_contract(contract_id)
            if contract is None:
                raise NotFound("contract", contract_id)
            if contract.client_id != acting_user_id:
                raise Unauthorized("only the client can open an escrow")
            self._require_open_contract(contract)

            default_amount = contract.total_amount
            if milestone_id is not None:
                milestone = repo.get_milestone(milestone_id)
                if milestone is None or milestone.contract_id != contract_id:
                    raise NotFound("milestone", milestone_id)
                default_amount = milestone.amount
            escrow_amount = _positive_amount(amount if amount is not None else default_amount)

            active = [
                escrow
                for escrow in repo.list_escrows(
                    contract_id, statuses=[status.value for status in ACTIVE_ESCROW_STATUSES]
                )
                if escrow.milestone_id == milestone_id
            ]
            if active:
                scope = f"milestone {milestone_id}" if milestone_id else f"contract {contract_id}"
                raise InvalidState(
                    f"escrow {active[0].escrow_id} is already {active[0].status} for {scope}"
                )

            escrow = repo.add_escrow(
                EscrowTransaction(
                    contract_id=contract_id,
                    gig_id=contract.gig_id,
                    milestone_id=milestone_id,
                    amount=escrow_amount,
                    status=EscrowStatus.PENDING.value,
                )
            )
            self._sync_gig(session, contract, EscrowStatus.PENDING)
            logger.info(
                "Opened escrow {} for {} on contract {}", escrow.escrow_id, escrow_amount, contract_id
            )
            return Committed(schemas.EscrowTransaction.model_validate(escrow))

        return self._commit("initiate_escrow", work)

    def fund(self, escrow_id: str, acting_user_id: str) -> schemas.EscrowTransaction:
        def work(session: Session) -> Committed[schemas.EscrowTransaction]:
            escrow, contract = self._load(session, escrow_id)
            if contract.client_id != acting_user_id:
                raise Unauthorized("only the client can fund an escrow")
            self._require_open_contract(contract)
            ESCROW_TRANSITIONS.check(escrow.status, EscrowStatus.FUNDED)
            _positive_amount(escrow.amount)

            escrow.status = EscrowStatus.FUNDED.value
            escrow.funded_at = utcnow()
            gig = self._sync_gig(session, contract, EscrowStatus.FUNDED)
            outbox_ids = self._notify(
                session,
                [contract.professional_id],
                EscrowFundedPayload(**self._escrow_fields(escrow, gig)),
            )
            logger.info("Escrow {} funded with {}", escrow_id, escrow.amount)
            return Committed(schemas.EscrowTransaction.model_validate(escrow), outbox_ids)

        return self._commit("fund_escrow", work)

    def release(
        self, escrow_id: str, acting_user_id: str, override: bool = False
    ) -> schemas.EscrowTransaction:
        """Release funded money to the professional.

        With gating milestones all approved either party may release. With
        no milestones only the client may. While gating milestones are still
        open only the client may release, and only with ``override``.
        """

        def work(session: Session) -> Committed[schemas.EscrowTransaction]:
            escrow, contract = self._load(session, escrow_id)
            if acting_user_id not in (contract.client_id, contract.professional_id):
                raise Unauthorized("only the contract parties can release an escrow")
            self._require_open_contract(contract)
            if escrow.status != EscrowStatus.FUNDED.value:
                raise InvalidTransition("escrow transaction", escrow.status, EscrowStatus.RELEASED.value)
            ESCROW_TRANSITIONS.check(escrow.status, EscrowStatus.RELEASED)

            repo = ContractRepository(session)
            if escrow.milestone_id:
                gating = [m for m in [repo.get_milestone(escrow.milestone_id)] if m is not None]
            else:
                gating = repo.list_milestones(contract.contract_id)
            pending = [
                m.milestone_id for m in gating if m.status != MilestoneStatus.APPROVED.value
            ]
            is_client = acting_user_id == contract.client_id

            if not gating and not is_client:
                raise Unauthorized("without milestones only the client can release an escrow")
            if pending:
                if not (override and is_client):
                    raise MilestonesIncomplete(pending)
                logger.warning(
                    "Client {} released escrow {} over {} unapproved milestone(s)",
                    acting_user_id,
                    escrow_id,
                    len(pending),
                )

            escrow.status = EscrowStatus.RELEASED.value
            escrow.released_at = utcnow()
            gig = self._sync_gig(session, contract, EscrowStatus.RELEASED)
            outbox_ids = self._notify(
                session,
                [contract.professional_id],
                EscrowReleasedPayload(
                    **self._escrow_fields(escrow, gig), milestone_id=escrow.milestone_id
                ),
            )
            logger.info("Escrow {} released to {}", escrow_id, contract.professional_id)
            return Committed(schemas.EscrowTransaction.model_validate(escrow), outbox_ids)

        return self._commit("release_escrow", work)

    def dispute(self, escrow_id: str, acting_user_id: str, reason: str) -> schemas.EscrowTransaction:
        if not reason or not reason.strip():
            raise ValidationFailure("a dispute needs a reason")

        def work(session: Session) -> Committed[schemas.EscrowTransaction]:
            escrow, contract = self._load(session, escrow_id)
            if acting_user_id not in (contract.client_id, contract.professional_id):
                raise Unauthorized("only the contract parties can dispute an escrow")
            ESCROW_TRANSITIONS.check(escrow.status, EscrowStatus.DISPUTED)

            escrow.status = EscrowStatus.DISPUTED.value
            escrow.dispute_reason = reason.strip()
            gig = self._sync_gig(session, contract, EscrowStatus.DISPUTED)
            outbox_ids = self._notify(
                session,
                [contract.client_id, contract.professional_id],
                EscrowDisputedPayload(
                    **self._escrow_fields(escrow, gig),
                    reason=escrow.dispute_reason,
                    raised_by=acting_user_id,
                ),
            )
            logger.warning("Escrow {} disputed by {}: {}", escrow_id, acting_user_id, reason)
            return Committed(schemas.EscrowTransaction.model_validate(escrow), outbox_ids)

        return self._commit("dispute_escrow", work)

    def resolve(
        self,
        escrow_id: str,
        arbitrator_id: str,
        outcome: EscrowStatus | str,
        note: str | None = None,
    ) -> schemas.EscrowTransaction:
        if arbitrator_id not in self._uow.settings.escrow_arbitrator_ids:
            raise Unauthorized("only a configured arbitrator can resolve a dispute")
        try:
            target = EscrowStatus(outcome)
        except ValueError as exc:
            raise ValidationFailure(f"{outcome!r} is not a dispute outcome") from exc
        if target not in _RESOLUTION_OUTCOMES:
            raise ValidationFailure("a dispute resolves to released or refunded")

        def work(session: Session) -> Committed[schemas.EscrowTransaction]:
            escrow, contract = self._load(session, escrow_id)
            if escrow.status != EscrowStatus.DISPUTED.value:
                raise InvalidTransition("escrow transaction", escrow.status, target.value)
            ESCROW_TRANSITIONS.check(escrow.status, target)

            escrow.status = target.value
            escrow.resolution_note = note
            if target is EscrowStatus.RELEASED:
                escrow.released_at = utcnow()
            gig = self._sync_gig(session, contract, target)
            outbox_ids = self._notify(
                session,
                [contract.client_id, contract.professional_id],
                EscrowResolvedPayload(
                    **self._escrow_fields(escrow, gig), outcome=target.value, note=note
                ),
            )
            logger.info("Escrow {} resolved as {} by {}", escrow_id, target.value, arbitrator_id)
            return Committed(schemas.EscrowTransaction.model_validate(escrow), outbox_ids)

        return self._commit("resolve_escrow", work)

    # ------------------------------------------------------------------
    # Reads

    def list_for_contract(self, contract_id: str) -> list[schemas.EscrowTransaction]:
        def work(session: Session) -> list[schemas.EscrowTransaction]:
            repo = ContractRepository(session)
            if repo.get_contract(contract_id) is None:
                raise NotFound("contract", contract_id)
            return [
                schemas.EscrowTransaction.model_validate(escrow)
                for escrow in repo.list_escrows(contract_id)
            ]

        return self._uow.read("list_escrows", work)

    # ------------------------------------------------------------------
    # Helpers

    @staticmethod
    def _load(session: Session, escrow_id: str) -> tuple[EscrowTransaction, Contract]:
        repo = ContractRepository(session)
        escrow = repo.get_escrow(escrow_id, for_update=True)
        if escrow is None:
            raise NotFound("escrow transaction", escrow_id)
        contract = repo.lock_contract(escrow.contract_id)
        if contract is None:
            raise NotFound("contract", escrow.contract_id)
        return escrow, contract

    @staticmethod
    def _require_open_contract(contract: Contract) -> None:
        if contract.status not in _FUNDABLE_CONTRACT_STATUSES:
            raise InvalidState(
                f"contract {contract.contract_id} is {contract.status}; escrow needs an active or "
                "pending_signature contract"
            )

    @staticmethod
    def _sync_gig(session: Session, contract: Contract, status: EscrowStatus) -> Gig:
        gig = GigRepository(session).get_gig(contract.gig_id, for_update=True)
        if gig is None:
            raise NotFound("gig", contract.gig_id)
        gig.escrow_status = status.value
        session.flush()
        return gig

    @staticmethod
    def _escrow_fields(escrow: EscrowTransaction, gig: Gig) -> dict[str, Any]:
        return {
            "escrow_id": escrow.escrow_id,
            "contract_id": escrow.contract_id,
            "gig_id": gig.gig_id,
            "gig_title": gig.title,
            "amount": escrow.amount,
        }

    def _notify(
        self, session: Session, recipients: list[str], payload: NotificationPayload
    ) -> list[str]:
        return [self._dispatcher.enqueue(session, recipient, payload) for recipient in recipients]


__all__ = ["EscrowService"]
