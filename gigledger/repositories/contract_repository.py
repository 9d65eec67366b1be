"""Contract, milestone, escrow and review persistence helpers."""

from __future__ import annotations

from typing import Any, Iterable

from sqlalchemy import or_, select
from sqlalchemy.orm import Session, selectinload

from gigledger.models import (
    Contract,
    ContractStatus,
    EscrowTransaction,
    Gig,
    Milestone,
    Review,
    utcnow,
)

from .types import ContractSummaryRecord


class ContractRepository:
    """Encapsulate everything stored against a contract."""

    def __init__(self, session: Session) -> None:
        self._session = session

    # ------------------------------------------------------------------
    # Contracts

    def add_contract(self, contract: Contract) -> Contract:
        self._session.add(contract)
        self._session.flush()
        return contract

    def get_contract(self, contract_id: str, *, for_update: bool = False) -> Contract | None:
        query = select(Contract).where(Contract.contract_id == contract_id)
        if for_update:
            query = query.with_for_update()
        return self._session.execute(query).scalar_one_or_none()

    def lock_contract(self, contract_id: str) -> Contract | None:
        """Load a contract for update and bump its version.

        Any other transaction touching the same contract concurrently fails
        its version check on flush.
        """

        contract = self.get_contract(contract_id, for_update=True)
        if contract is not None:
            contract.updated_at = utcnow()
        return contract

    def get_contract_for_proposal(self, proposal_id: str) -> Contract | None:
        query = select(Contract).where(Contract.proposal_id == proposal_id)
        return self._session.execute(query).scalar_one_or_none()

    def get_open_contract_for_gig(self, gig_id: str) -> Contract | None:
        query = select(Contract).where(
            Contract.gig_id == gig_id,
            Contract.status.in_(
                (ContractStatus.PENDING_SIGNATURE.value, ContractStatus.ACTIVE.value)
            ),
        )
        return self._session.execute(query).scalars().first()

    def list_contract_summaries(
        self,
        *,
        user_id: str | None = None,
        contract_ids: Iterable[str] | None = None,
        status: str | None = None,
    ) -> list[ContractSummaryRecord]:
        filters: list[Any] = []
        if user_id:
            filters.append(or_(Contract.client_id == user_id, Contract.professional_id == user_id))
        if contract_ids is not None:
            filters.append(Contract.contract_id.in_(list(contract_ids)))
        if status:
            filters.append(Contract.status == status)

        query = (
            select(Contract, Gig)
            .join(Gig, Contract.gig_id == Gig.gig_id)
            .options(
                selectinload(Contract.milestones),
                selectinload(Contract.escrow_transactions),
            )
            .where(*filters)
            .order_by(Contract.created_at.desc(), Contract.contract_id)
        )
        rows = self._session.execute(query).all()
        return [
            ContractSummaryRecord(
                contract=contract,
                gig=gig,
                milestones=list(contract.milestones),
                latest_escrow=contract.escrow_transactions[-1]
                if contract.escrow_transactions
                else None,
            )
            for contract, gig in rows
        ]

    # ------------------------------------------------------------------
    # Milestones

    def add_milestones(self, milestones: Iterable[Milestone]) -> list[Milestone]:
        records = list(milestones)
        self._session.add_all(records)
        self._session.flush()
        return records

    def get_milestone(self, milestone_id: str, *, for_update: bool = False) -> Milestone | None:
        query = select(Milestone).where(Milestone.milestone_id == milestone_id)
        if for_update:
            query = query.with_for_update()
        return self._session.execute(query).scalar_one_or_none()

    def list_milestones(self, contract_id: str) -> list[Milestone]:
        query = (
            select(Milestone)
            .where(Milestone.contract_id == contract_id)
            .order_by(Milestone.sequence.asc())
        )
        return list(self._session.execute(query).scalars().all())

    # ------------------------------------------------------------------
    # Escrow transactions

    def add_escrow(self, escrow: EscrowTransaction) -> EscrowTransaction:
        self._session.add(escrow)
        self._session.flush()
        return escrow

    def get_escrow(self, escrow_id: str, *, for_update: bool = False) -> EscrowTransaction | None:
        query = select(EscrowTransaction).where(EscrowTransaction.escrow_id == escrow_id)
        if for_update:
            query = query.with_for_update()
        return self._session.execute(query).scalar_one_or_none()

    def list_escrows(
        self,
        contract_id: str,
        *,
        statuses: Iterable[str] | None = None,
    ) -> list[EscrowTransaction]:
        filters: list[Any] = [EscrowTransaction.contract_id == contract_id]
        if statuses is not None:
            filters.append(EscrowTransaction.status.in_(list(statuses)))
        query = (
            select(EscrowTransaction)
            .where(*filters)
            .order_by(EscrowTransaction.created_at.asc(), EscrowTransaction.escrow_id)
        )
        return list(self._session.execute(query).scalars().all())

    # ------------------------------------------------------------------
    # Reviews

    def add_review(self, review: Review) -> Review:
        self._session.add(review)
        self._session.flush()
        return review

    def find_review(self, contract_id: str, reviewer_id: str) -> Review | None:
        query = select(Review).where(
            Review.contract_id == contract_id,
            Review.reviewer_id == reviewer_id,
        )
        return self._session.execute(query).scalar_one_or_none()


__all__ = ["ContractRepository"]
