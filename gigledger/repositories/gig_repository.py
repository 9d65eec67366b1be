"""Gig and proposal persistence helpers."""

from __future__ import annotations

from typing import Any, Sequence

from sqlalchemy import asc, case, desc, func, select
from sqlalchemy.orm import Session

from gigledger.domain import GigDraft
from gigledger.models import Gig, GigStatus, Profile, Proposal, ProposalStatus

from .types import GigListingRecord, ProposalRecord


class GigRepository:
    """Encapsulate gig and proposal persistence concerns."""

    def __init__(self, session: Session) -> None:
        self._session = session

    # ------------------------------------------------------------------
    # Gigs

    def create_gig(self, owner_id: str, draft: GigDraft) -> Gig:
        gig = Gig(
            owner_id=owner_id,
            title=draft.title,
            description=draft.description,
            budget=draft.budget,
            deadline=draft.deadline,
            required_skills=sorted(set(draft.required_skills)),
            category=draft.category,
            gig_type=draft.gig_type,
            location=draft.location,
            status=GigStatus.OPEN.value,
        )
        self._session.add(gig)
        self._session.flush()
        return gig

    def get_gig(self, gig_id: str, *, for_update: bool = False) -> Gig | None:
        query = select(Gig).where(Gig.gig_id == gig_id)
        if for_update:
            query = query.with_for_update()
        return self._session.execute(query).scalar_one_or_none()

    def list_gigs(
        self,
        *,
        status: str | None = None,
        owner_id: str | None = None,
        gig_type: str | None = None,
        sort: str = "created_at",
        order: str = "desc",
        limit: int = 50,
        offset: int = 0,
    ) -> tuple[list[GigListingRecord], int]:
        filters: list[Any] = []
        if status:
            filters.append(Gig.status == status)
        if owner_id:
            filters.append(Gig.owner_id == owner_id)
        if gig_type:
            filters.append(Gig.gig_type == gig_type)

        counts = (
            select(
                Proposal.gig_id.label("gig_id"),
                func.count(Proposal.proposal_id).label("proposal_count"),
                func.sum(
                    case((Proposal.status == ProposalStatus.PENDING.value, 1), else_=0)
                ).label("pending_count"),
            )
            .group_by(Proposal.gig_id)
            .subquery()
        )

        sort_column = {
            "created_at": Gig.created_at,
            "deadline": Gig.deadline,
            "budget": Gig.budget,
        }.get(sort, Gig.created_at)
        sort_direction = asc if order.lower() == "asc" else desc

        query = (
            select(Gig, counts.c.proposal_count, counts.c.pending_count)
            .outerjoin(counts, counts.c.gig_id == Gig.gig_id)
            .where(*filters)
            .order_by(sort_direction(sort_column), Gig.gig_id)
            .limit(limit)
            .offset(offset)
        )
        total_query = select(func.count(Gig.gig_id)).where(*filters)

        rows = self._session.execute(query).all()
        total = self._session.execute(total_query).scalar_one()
        records = [
            GigListingRecord(
                gig=gig,
                proposal_count=int(proposal_count or 0),
                pending_proposal_count=int(pending_count or 0),
            )
            for gig, proposal_count, pending_count in rows
        ]
        return records, total

    def get_gig_listing(self, gig_id: str) -> GigListingRecord | None:
        gig = self.get_gig(gig_id)
        if gig is None:
            return None
        rows = self._session.execute(
            select(Proposal.status, func.count(Proposal.proposal_id))
            .where(Proposal.gig_id == gig_id)
            .group_by(Proposal.status)
        ).all()
        by_status = {status: int(count) for status, count in rows}
        return GigListingRecord(
            gig=gig,
            proposal_count=sum(by_status.values()),
            pending_proposal_count=by_status.get(ProposalStatus.PENDING.value, 0),
        )

    # ------------------------------------------------------------------
    # Proposals

    def add_proposal(self, proposal: Proposal) -> Proposal:
        self._session.add(proposal)
        self._session.flush()
        return proposal

    def get_proposal(self, proposal_id: str, *, for_update: bool = False) -> Proposal | None:
        query = select(Proposal).where(Proposal.proposal_id == proposal_id)
        if for_update:
            query = query.with_for_update()
        return self._session.execute(query).scalar_one_or_none()

    def find_pending_proposal(self, gig_id: str, bidder_id: str) -> Proposal | None:
        query = select(Proposal).where(
            Proposal.gig_id == gig_id,
            Proposal.bidder_id == bidder_id,
            Proposal.status == ProposalStatus.PENDING.value,
        )
        return self._session.execute(query).scalars().first()

    def count_accepted(self, gig_id: str) -> int:
        query = select(func.count(Proposal.proposal_id)).where(
            Proposal.gig_id == gig_id,
            Proposal.status == ProposalStatus.ACCEPTED.value,
        )
        return int(self._session.execute(query).scalar_one())

    def list_proposals(
        self, gig_id: str, *, bidder_id: str | None = None
    ) -> list[ProposalRecord]:
        filters: list[Any] = [Proposal.gig_id == gig_id]
        if bidder_id:
            filters.append(Proposal.bidder_id == bidder_id)
        query = (
            select(Proposal, Profile)
            .outerjoin(Profile, Profile.user_id == Proposal.bidder_id)
            .where(*filters)
            .order_by(Proposal.created_at.asc(), Proposal.proposal_id)
        )
        rows = self._session.execute(query).all()
        return [ProposalRecord(proposal=proposal, bidder=profile) for proposal, profile in rows]

    # ------------------------------------------------------------------
    # Profiles

    def upsert_profile(
        self,
        user_id: str,
        *,
        full_name: str | None,
        username: str | None,
        avatar_url: str | None,
    ) -> Profile:
        existing = self._session.get(Profile, user_id)
        if existing is None:
            existing = Profile(user_id=user_id)
            self._session.add(existing)

        existing.full_name = full_name
        existing.username = username
        existing.avatar_url = avatar_url
        return existing

    def get_profiles(self, user_ids: Sequence[str]) -> dict[str, Profile]:
        if not user_ids:
            return {}
        query = select(Profile).where(Profile.user_id.in_(set(user_ids)))
        return {profile.user_id: profile for profile in self._session.execute(query).scalars()}


__all__ = ["GigRepository"]
