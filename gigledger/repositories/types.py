"""Shared repository result types."""

from __future__ import annotations

from dataclasses import dataclass, field

from gigledger.models import Contract, EscrowTransaction, Gig, Milestone, Profile, Proposal


@dataclass(slots=True)
class GigListingRecord:
    """A gig with its live proposal counts."""

    gig: Gig
    proposal_count: int = 0
    pending_proposal_count: int = 0


@dataclass(slots=True)
class ProposalRecord:
    """A proposal joined with the bidder's profile, when one is known."""

    proposal: Proposal
    bidder: Profile | None = None


@dataclass(slots=True)
class ContractSummaryRecord:
    """Bundle a contract with its gig, both parties and its payment state."""

    contract: Contract
    gig: Gig
    client: Profile | None = None
    professional: Profile | None = None
    milestones: list[Milestone] = field(default_factory=list)
    latest_escrow: EscrowTransaction | None = None


__all__ = ["ContractSummaryRecord", "GigListingRecord", "ProposalRecord"]
