"""Milestone planning and progress tracking for active contracts."""

from __future__ import annotations

from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Sequence

from loguru import logger
from sqlalchemy.orm import Session

from gigledger import schemas
from gigledger.domain import MilestoneSpec
from gigledger.domain.notifications import MilestoneApprovedPayload, MilestoneCompletedPayload
from gigledger.errors import (
    InvalidMilestonePlan,
    InvalidState,
    NotFound,
    Unauthorized,
    ValidationFailure,
)
from gigledger.models import Contract, ContractStatus, Milestone, MilestoneStatus, utcnow
from gigledger.repositories import ContractRepository
from gigledger.state_machines import MILESTONE_TRANSITIONS

from .base import Committed, LifecycleService

CENTS = Decimal("0.01")
FULL_PLAN = Decimal("100")


def _percentage(spec: MilestoneSpec) -> Decimal:
    try:
        value = Decimal(str(spec.payment_percentage))
    except (InvalidOperation, ValueError) as exc:
        raise InvalidMilestonePlan(
            f"milestone {spec.title!r} has a non-numeric percentage"
        ) from exc
    if not value.is_finite() or value <= 0:
        raise InvalidMilestonePlan(f"milestone {spec.title!r} must pay a positive percentage")
    return value


def plan_milestones(
    repo: ContractRepository, contract: Contract, specs: Sequence[MilestoneSpec]
) -> list[Milestone]:
    """Append milestones to ``contract``; the caller owns the transaction."""

    if not specs:
        raise InvalidMilestonePlan("a milestone plan needs at least one milestone")

    existing = repo.list_milestones(contract.contract_id)
    planned = sum((Decimal(m.payment_percentage) for m in existing), Decimal("0"))
    percentages: list[Decimal] = []
    for spec in specs:
        if not spec.title or not spec.title.strip():
            raise InvalidMilestonePlan("every milestone needs a title")
        percentages.append(_percentage(spec))

    total = planned + sum(percentages, Decimal("0"))
    if total > FULL_PLAN:
        raise InvalidMilestonePlan(
            f"milestone percentages would total {total}% of contract {contract.contract_id}; "
            "the limit is 100%"
        )

    next_sequence = max((m.sequence for m in existing), default=0) + 1
    total_amount = Decimal(contract.total_amount)
    records = [
        Milestone(
            contract_id=contract.contract_id,
            sequence=next_sequence + offset,
            title=spec.title.strip(),
            description=spec.description,
            payment_percentage=percentage,
            amount=(total_amount * percentage / FULL_PLAN).quantize(CENTS, rounding=ROUND_HALF_UP),
            due_date=spec.due_date,
            status=MilestoneStatus.PENDING.value,
        )
        for offset, (spec, percentage) in enumerate(zip(specs, percentages))
    ]
    return repo.add_milestones(records)


class MilestoneService(LifecycleService):
    """Plan milestones and move them through pending→in_progress→completed→approved."""

    def create_milestones(
        self,
        contract_id: str,
        acting_user_id: str,
        specs: Sequence[MilestoneSpec],
    ) -> list[schemas.Milestone]:
        def work(session: Session) -> Committed[list[schemas.Milestone]]:
            repo = ContractRepository(session)
            contract = repo.lock_contract(contract_id)
            if contract is None:
                raise NotFound("contract", contract_id)
            if contract.client_id != acting_user_id:
                raise Unauthorized("only the client can plan milestones")
            if contract.status != ContractStatus.ACTIVE.value:
                raise InvalidState(
                    f"milestones can only be planned on an active contract (contract is {contract.status})"
                )
            created = plan_milestones(repo, contract, specs)
            logger.info("Planned {} milestone(s) on contract {}", len(created), contract_id)
            return Committed([schemas.Milestone.model_validate(m) for m in created])

        return self._commit("create_milestones", work)

    def advance(
        self,
        milestone_id: str,
        acting_user_id: str,
        target_status: MilestoneStatus | str,
    ) -> schemas.Milestone:
        try:
            target = MilestoneStatus(target_status)
        except ValueError as exc:
            raise ValidationFailure(f"{target_status!r} is not a milestone status") from exc

        def work(session: Session) -> Committed[schemas.Milestone]:
            repo = ContractRepository(session)
            milestone = repo.get_milestone(milestone_id, for_update=True)
            if milestone is None:
                raise NotFound("milestone", milestone_id)
            contract = repo.lock_contract(milestone.contract_id)
            if contract is None:
                raise NotFound("contract", milestone.contract_id)

            if target is MilestoneStatus.APPROVED:
                if acting_user_id != contract.client_id:
                    raise Unauthorized("only the client can approve a milestone")
            elif acting_user_id != contract.professional_id:
                raise Unauthorized("only the professional can report milestone progress")
            if contract.status != ContractStatus.ACTIVE.value:
                raise InvalidState(
                    f"contract {contract.contract_id} is {contract.status}; milestones are frozen"
                )

            MILESTONE_TRANSITIONS.check(milestone.status, target)
            milestone.status = target.value
            if target is MilestoneStatus.APPROVED:
                milestone.approved_at = utcnow()
            session.flush()

            outbox_ids: list[str] = []
            if target is MilestoneStatus.COMPLETED:
                outbox_ids.append(
                    self._dispatcher.enqueue(
                        session,
                        contract.client_id,
                        MilestoneCompletedPayload(
                            contract_id=contract.contract_id,
                            milestone_id=milestone.milestone_id,
                            milestone_title=milestone.title,
                            amount=milestone.amount,
                        ),
                    )
                )
            elif target is MilestoneStatus.APPROVED:
                outbox_ids.append(
                    self._dispatcher.enqueue(
                        session,
                        contract.professional_id,
                        MilestoneApprovedPayload(
                            contract_id=contract.contract_id,
                            milestone_id=milestone.milestone_id,
                            milestone_title=milestone.title,
                            amount=milestone.amount,
                        ),
                    )
                )
            logger.info("Milestone {} moved to {}", milestone_id, target.value)
            return Committed(schemas.Milestone.model_validate(milestone), outbox_ids)

        return self._commit("advance_milestone", work)

    def list_milestones(self, contract_id: str) -> list[schemas.Milestone]:
        def work(session: Session) -> list[schemas.Milestone]:
            repo = ContractRepository(session)
            if repo.get_contract(contract_id) is None:
                raise NotFound("contract", contract_id)
            return [schemas.Milestone.model_validate(m) for m in repo.list_milestones(contract_id)]

        return self._uow.read("list_milestones", work)


__all__ = ["MilestoneService", "plan_milestones"]
