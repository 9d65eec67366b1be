from datetime import datetime
from decimal import Decimal
from typing import Any, Literal

from pydantic import BaseModel, Field, field_validator


def _coerce_money(value: Any) -> float | None:
    if value is None:
        return None
    return float(value)


class ProfileSummary(BaseModel):
    user_id: str
    full_name: str | None = None
    username: str | None = None
    avatar_url: str | None = None

    model_config = {"from_attributes": True}


class GigBase(BaseModel):
    gig_id: str
    owner_id: str
    title: str
    description: str | None = None
    budget: float | None = None
    deadline: datetime | None = None
    required_skills: list[str] = Field(default_factory=list)
    category: str | None = None
    gig_type: str
    location: str | None = None
    status: str
    escrow_status: str
    created_at: datetime

    @field_validator("budget", mode="before")
    @classmethod
    def _coerce_budget(cls, value: Any) -> float | None:
        return _coerce_money(value)


class Gig(GigBase):
    model_config = {"from_attributes": True}


class GigListing(GigBase):
    proposal_count: int = 0
    pending_proposal_count: int = 0


class GigList(BaseModel):
    total: int
    items: list[GigListing]


class Proposal(BaseModel):
    proposal_id: str
    gig_id: str
    bidder_id: str
    message: str
    rate: float | None = None
    timeline: str | None = None
    status: str
    created_at: datetime
    decided_at: datetime | None = None

    model_config = {"from_attributes": True}

    @field_validator("rate", mode="before")
    @classmethod
    def _coerce_rate(cls, value: Any) -> float | None:
        return _coerce_money(value)


class ProposalWithBidder(Proposal):
    bidder: ProfileSummary | None = None


class Contract(BaseModel):
    contract_id: str
    gig_id: str
    proposal_id: str
    client_id: str
    professional_id: str
    total_amount: float
    terms: str | None = None
    status: str
    start_date: datetime | None = None
    end_date: datetime | None = None
    created_at: datetime

    model_config = {"from_attributes": True}

    @field_validator("total_amount", mode="before")
    @classmethod
    def _coerce_total(cls, value: Any) -> float | None:
        return _coerce_money(value)


class Milestone(BaseModel):
    milestone_id: str
    contract_id: str
    sequence: int
    title: str
    description: str | None = None
    payment_percentage: float
    amount: float
    due_date: datetime | None = None
    status: str
    approved_at: datetime | None = None

    model_config = {"from_attributes": True}

    @field_validator("payment_percentage", "amount", mode="before")
    @classmethod
    def _coerce_numeric(cls, value: Any) -> float | None:
        return _coerce_money(value)


class EscrowTransaction(BaseModel):
    escrow_id: str
    contract_id: str
    gig_id: str
    milestone_id: str | None = None
    amount: float
    status: str
    created_at: datetime
    funded_at: datetime | None = None
    released_at: datetime | None = None
    dispute_reason: str | None = None
    resolution_note: str | None = None

    model_config = {"from_attributes": True}

    @field_validator("amount", mode="before")
    @classmethod
    def _coerce_amount(cls, value: Any) -> float | None:
        return _coerce_money(value)


class Review(BaseModel):
    review_id: str
    contract_id: str
    reviewer_id: str
    reviewee_id: str
    rating: int
    comment: str | None = None
    created_at: datetime

    model_config = {"from_attributes": True}


class ContractSummary(BaseModel):
    contract: Contract
    gig_title: str
    gig_status: str
    client: ProfileSummary | None = None
    professional: ProfileSummary | None = None
    counterpart: ProfileSummary | None = None
    milestones: list[Milestone] = Field(default_factory=list)
    milestones_total: int = 0
    milestones_approved: int = 0
    escrow_status: str | None = None
    latest_escrow: EscrowTransaction | None = None


class ContractList(BaseModel):
    total: int
    items: list[ContractSummary]


class Notification(BaseModel):
    notification_id: str
    recipient_id: str
    type: str
    payload: dict[str, Any]
    is_read: bool
    created_at: datetime

    model_config = {"from_attributes": True}


class NotificationList(BaseModel):
    unread: int
    items: list[Notification]


# ----------------------------------------------------------------------
# Request bodies


class GigCreate(BaseModel):
    title: str = Field(min_length=1, max_length=200)
    description: str | None = None
    budget: Decimal | None = Field(default=None, ge=0)
    deadline: datetime | None = None
    required_skills: list[str] = Field(default_factory=list)
    category: str | None = None
    gig_type: Literal[
        "studio_session", "live_performance", "songwriting", "mixing_mastering", "other"
    ] = "other"
    location: str | None = None


class ProposalCreate(BaseModel):
    message: str = Field(min_length=1)
    rate: Decimal | None = None
    timeline: str | None = None


class MilestoneSpecIn(BaseModel):
    title: str = Field(min_length=1)
    payment_percentage: Decimal
    description: str | None = None
    due_date: datetime | None = None


class MilestonePlan(BaseModel):
    milestones: list[MilestoneSpecIn] = Field(default_factory=list)


class MilestoneAdvance(BaseModel):
    target_status: Literal["in_progress", "completed", "approved"]


class EscrowInitiate(BaseModel):
    amount: Decimal | None = None
    milestone_id: str | None = None


class EscrowRelease(BaseModel):
    override: bool = False


class EscrowDispute(BaseModel):
    reason: str


class EscrowResolve(BaseModel):
    outcome: Literal["released", "refunded"]
    note: str | None = None


class ReviewCreate(BaseModel):
    rating: int = Field(ge=1, le=5)
    comment: str | None = None


class ErrorResponse(BaseModel):
    code: str
    detail: str
