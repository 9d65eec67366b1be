"""Read-only conveniences over gigs, proposals and contracts."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Sequence

from sqlalchemy.orm import Session

from gigledger.errors import NotFound, Unauthorized
from gigledger.models import MilestoneStatus, Profile
from gigledger.repositories import (
    ContractRepository,
    ContractSummaryRecord,
    GigListingRecord,
    GigRepository,
)
from gigledger.schemas import (
    Contract,
    ContractSummary,
    EscrowTransaction,
    Gig,
    GigListing,
    Milestone,
    ProfileSummary,
    ProposalWithBidder,
)


@dataclass(slots=True)
class GigQuery:
    status: str | None = "open"
    owner_id: str | None = None
    gig_type: str | None = None
    sort: str = "created_at"
    order: str = "desc"
    limit: int = 50
    offset: int = 0

    def to_repository_kwargs(self) -> dict[str, Any]:
        """Serialize the query so repository functions receive consistent kwargs."""

        return {
            "status": self.status,
            "owner_id": self.owner_id,
            "gig_type": self.gig_type,
            "sort": self.sort,
            "order": self.order,
            "limit": self.limit,
            "offset": self.offset,
        }


@dataclass(slots=True)
class GigQueryResult:
    total: int
    gigs: Sequence[GigListing]


@dataclass(slots=True)
class ContractQueryResult:
    total: int
    contracts: Sequence[ContractSummary]


class MarketplaceService:
    """Read-only facade over committed marketplace state used by the API."""

    def __init__(self, session: Session):
        self._session = session
        self._gig_repo = GigRepository(session)
        self._contract_repo = ContractRepository(session)

    def list_gigs(self, query: GigQuery) -> GigQueryResult:
        records, total = self._gig_repo.list_gigs(**query.to_repository_kwargs())
        return GigQueryResult(total=total, gigs=[self._build_listing(record) for record in records])

    def get_gig(self, gig_id: str) -> GigListing:
        record = self._gig_repo.get_gig_listing(gig_id)
        if record is None:
            raise NotFound("gig", gig_id)
        return self._build_listing(record)

    def list_proposals(self, gig_id: str, acting_user_id: str) -> list[ProposalWithBidder]:
        """The gig owner sees every proposal; anyone else sees only their own."""

        gig = self._gig_repo.get_gig(gig_id)
        if gig is None:
            raise NotFound("gig", gig_id)
        bidder_filter = None if gig.owner_id == acting_user_id else acting_user_id
        records = self._gig_repo.list_proposals(gig_id, bidder_id=bidder_filter)
        payloads: list[ProposalWithBidder] = []
        for record in records:
            proposal = ProposalWithBidder.model_validate(record.proposal)
            if record.bidder is not None:
                proposal = proposal.model_copy(
                    update={"bidder": ProfileSummary.model_validate(record.bidder)}
                )
            payloads.append(proposal)
        return payloads

    def list_contracts(self, user_id: str, status: str | None = None) -> ContractQueryResult:
        records = self._contract_repo.list_contract_summaries(user_id=user_id, status=status)
        profiles = self._collect_profiles(records)
        summaries = [self._build_summary(record, profiles, viewer_id=user_id) for record in records]
        return ContractQueryResult(total=len(summaries), contracts=summaries)

    def get_contract(self, contract_id: str, acting_user_id: str) -> ContractSummary:
        records = self._contract_repo.list_contract_summaries(contract_ids=[contract_id])
        if not records:
            raise NotFound("contract", contract_id)
        record = records[0]
        if acting_user_id not in (record.contract.client_id, record.contract.professional_id):
            raise Unauthorized("only the contract parties can view the contract")
        profiles = self._collect_profiles(records)
        return self._build_summary(record, profiles, viewer_id=acting_user_id)

    def _collect_profiles(self, records: Sequence[ContractSummaryRecord]) -> dict[str, Profile]:
        user_ids = {
            user_id
            for record in records
            for user_id in (record.contract.client_id, record.contract.professional_id)
        }
        return self._gig_repo.get_profiles(sorted(user_ids))

    @staticmethod
    def _build_listing(record: GigListingRecord) -> GigListing:
        gig = Gig.model_validate(record.gig)
        return GigListing(
            **gig.model_dump(),
            proposal_count=record.proposal_count,
            pending_proposal_count=record.pending_proposal_count,
        )

    @staticmethod
    def _build_summary(
        record: ContractSummaryRecord,
        profiles: dict[str, Profile],
        *,
        viewer_id: str,
    ) -> ContractSummary:
        """Adapt a repository bundle into the API schema from ``viewer_id``'s side."""

        contract = record.contract
        client = profiles.get(contract.client_id)
        professional = profiles.get(contract.professional_id)
        counterpart = professional if viewer_id == contract.client_id else client
        milestones = [Milestone.model_validate(m) for m in record.milestones]
        latest = (
            EscrowTransaction.model_validate(record.latest_escrow)
            if record.latest_escrow is not None
            else None
        )
        return ContractSummary(
            contract=Contract.model_validate(contract),
            gig_title=record.gig.title,
            gig_status=record.gig.status,
            client=ProfileSummary.model_validate(client) if client else None,
            professional=ProfileSummary.model_validate(professional) if professional else None,
            counterpart=ProfileSummary.model_validate(counterpart) if counterpart else None,
            milestones=milestones,
            milestones_total=len(milestones),
            milestones_approved=sum(
                1 for m in milestones if m.status == MilestoneStatus.APPROVED.value
            ),
            escrow_status=latest.status if latest else None,
            latest_escrow=latest,
        )


__all__ = ["ContractQueryResult", "GigQuery", "GigQueryResult", "MarketplaceService"]
