from __future__ import annotations

from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from uuid import uuid4

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    JSON,
    Numeric,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .db import Base


class GigStatus(str, Enum):
    OPEN = "open"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class GigType(str, Enum):
    STUDIO_SESSION = "studio_session"
    LIVE_PERFORMANCE = "live_performance"
    SONGWRITING = "songwriting"
    MIXING_MASTERING = "mixing_mastering"
    OTHER = "other"


class ProposalStatus(str, Enum):
    PENDING = "pending"
    ACCEPTED = "accepted"
    REJECTED = "rejected"


class ContractStatus(str, Enum):
    PENDING_SIGNATURE = "pending_signature"
    ACTIVE = "active"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class MilestoneStatus(str, Enum):
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    APPROVED = "approved"


class EscrowStatus(str, Enum):
    PENDING = "pending"
    FUNDED = "funded"
    RELEASED = "released"
    DISPUTED = "disputed"
    REFUNDED = "refunded"


class NotificationType(str, Enum):
    CONNECTION_REQUEST = "connection_request"
    PROPOSAL_SUBMITTED = "proposal_submitted"
    PROPOSAL_ACCEPTED = "proposal_accepted"
    PROPOSAL_REJECTED = "proposal_rejected"
    CONTRACT_SIGNED = "contract_signed"
    CONTRACT_COMPLETED = "contract_completed"
    CONTRACT_CANCELLED = "contract_cancelled"
    MILESTONE_COMPLETED = "milestone_completed"
    MILESTONE_APPROVED = "milestone_approved"
    ESCROW_FUNDED = "escrow_funded"
    ESCROW_RELEASED = "escrow_released"
    ESCROW_DISPUTED = "escrow_disputed"
    ESCROW_RESOLVED = "escrow_resolved"
    REVIEW_RECEIVED = "review_received"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_id() -> str:
    return str(uuid4())


class Profile(Base):
    __tablename__ = "profiles"

    user_id: Mapped[str] = mapped_column(String, primary_key=True)
    full_name: Mapped[str | None] = mapped_column(String, nullable=True)
    username: Mapped[str | None] = mapped_column(String, nullable=True)
    avatar_url: Mapped[str | None] = mapped_column(String, nullable=True)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow
    )


class Gig(Base):
    __tablename__ = "gigs"

    gig_id: Mapped[str] = mapped_column(String, primary_key=True, default=new_id)
    owner_id: Mapped[str] = mapped_column(String, nullable=False, index=True)
    title: Mapped[str] = mapped_column(String, nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    budget: Mapped[Decimal | None] = mapped_column(Numeric(18, 2), nullable=True)
    deadline: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    required_skills: Mapped[list[str]] = mapped_column(JSON, nullable=False, default=list)
    category: Mapped[str | None] = mapped_column(String, nullable=True)
    gig_type: Mapped[str] = mapped_column(String, nullable=False, default=GigType.OTHER.value)
    location: Mapped[str | None] = mapped_column(String, nullable=True)
    status: Mapped[str] = mapped_column(
        String, nullable=False, default=GigStatus.OPEN.value, index=True
    )
    escrow_status: Mapped[str] = mapped_column(
        String, nullable=False, default=EscrowStatus.PENDING.value
    )
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow
    )
    version_id: Mapped[int] = mapped_column(Integer, nullable=False)

    proposals: Mapped[list["Proposal"]] = relationship(
        "Proposal", back_populates="gig", cascade="all, delete-orphan"
    )
    contracts: Mapped[list["Contract"]] = relationship("Contract", back_populates="gig")

    __table_args__ = (
        CheckConstraint("budget IS NULL OR budget >= 0", name="ck_gig_budget_non_negative"),
    )
    __mapper_args__ = {"version_id_col": version_id}


class Proposal(Base):
    __tablename__ = "proposals"

    proposal_id: Mapped[str] = mapped_column(String, primary_key=True, default=new_id)
    gig_id: Mapped[str] = mapped_column(String, ForeignKey("gigs.gig_id"), nullable=False)
    bidder_id: Mapped[str] = mapped_column(String, nullable=False)
    message: Mapped[str] = mapped_column(Text, nullable=False)
    rate: Mapped[Decimal | None] = mapped_column(Numeric(18, 2), nullable=True)
    timeline: Mapped[str | None] = mapped_column(Text, nullable=True)
    status: Mapped[str] = mapped_column(String, nullable=False, default=ProposalStatus.PENDING.value)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)
    decided_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    version_id: Mapped[int] = mapped_column(Integer, nullable=False)

    gig: Mapped[Gig] = relationship("Gig", back_populates="proposals")
    contract: Mapped["Contract | None"] = relationship(
        "Contract", back_populates="proposal", uselist=False
    )

    __table_args__ = (
        Index("ix_proposals_gig_bidder", "gig_id", "bidder_id"),
        Index("ix_proposals_gig_status", "gig_id", "status"),
    )
    __mapper_args__ = {"version_id_col": version_id}


class Contract(Base):
    __tablename__ = "contracts"

    contract_id: Mapped[str] = mapped_column(String, primary_key=True, default=new_id)
    gig_id: Mapped[str] = mapped_column(String, ForeignKey("gigs.gig_id"), nullable=False, index=True)
    proposal_id: Mapped[str] = mapped_column(
        String, ForeignKey("proposals.proposal_id"), nullable=False
    )
    client_id: Mapped[str] = mapped_column(String, nullable=False, index=True)
    professional_id: Mapped[str] = mapped_column(String, nullable=False, index=True)
    total_amount: Mapped[Decimal] = mapped_column(Numeric(18, 2), nullable=False)
    terms: Mapped[str | None] = mapped_column(Text, nullable=True)
    status: Mapped[str] = mapped_column(
        String, nullable=False, default=ContractStatus.PENDING_SIGNATURE.value
    )
    start_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    end_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow
    )
    version_id: Mapped[int] = mapped_column(Integer, nullable=False)

    gig: Mapped[Gig] = relationship("Gig", back_populates="contracts")
    proposal: Mapped[Proposal] = relationship("Proposal", back_populates="contract")
    milestones: Mapped[list["Milestone"]] = relationship(
        "Milestone",
        back_populates="contract",
        cascade="all, delete-orphan",
        order_by="Milestone.sequence",
    )
    escrow_transactions: Mapped[list["EscrowTransaction"]] = relationship(
        "EscrowTransaction",
        back_populates="contract",
        cascade="all, delete-orphan",
        order_by="EscrowTransaction.created_at",
    )
    reviews: Mapped[list["Review"]] = relationship(
        "Review", back_populates="contract", cascade="all, delete-orphan"
    )

    __table_args__ = (
        UniqueConstraint("proposal_id", name="uq_contract_proposal"),
        CheckConstraint("total_amount > 0", name="ck_contract_amount_positive"),
    )
    __mapper_args__ = {"version_id_col": version_id}


class Milestone(Base):
    __tablename__ = "milestones"

    milestone_id: Mapped[str] = mapped_column(String, primary_key=True, default=new_id)
    contract_id: Mapped[str] = mapped_column(
        String, ForeignKey("contracts.contract_id"), nullable=False, index=True
    )
    sequence: Mapped[int] = mapped_column(Integer, nullable=False)
    title: Mapped[str] = mapped_column(String, nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    payment_percentage: Mapped[Decimal] = mapped_column(Numeric(5, 2), nullable=False)
    amount: Mapped[Decimal] = mapped_column(Numeric(18, 2), nullable=False)
    due_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    status: Mapped[str] = mapped_column(String, nullable=False, default=MilestoneStatus.PENDING.value)
    approved_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow
    )
    version_id: Mapped[int] = mapped_column(Integer, nullable=False)

    contract: Mapped[Contract] = relationship("Contract", back_populates="milestones")

    __table_args__ = (
        UniqueConstraint("contract_id", "sequence", name="uq_milestone_sequence"),
        CheckConstraint(
            "payment_percentage > 0 AND payment_percentage <= 100",
            name="ck_milestone_percentage_range",
        ),
    )
    __mapper_args__ = {"version_id_col": version_id}


class EscrowTransaction(Base):
    __tablename__ = "escrow_transactions"

    escrow_id: Mapped[str] = mapped_column(String, primary_key=True, default=new_id)
    contract_id: Mapped[str] = mapped_column(
        String, ForeignKey("contracts.contract_id"), nullable=False, index=True
    )
    gig_id: Mapped[str] = mapped_column(String, ForeignKey("gigs.gig_id"), nullable=False)
    milestone_id: Mapped[str | None] = mapped_column(
        String, ForeignKey("milestones.milestone_id"), nullable=True
    )
    amount: Mapped[Decimal] = mapped_column(Numeric(18, 2), nullable=False)
    status: Mapped[str] = mapped_column(String, nullable=False, default=EscrowStatus.PENDING.value)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)
    funded_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    released_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    dispute_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    resolution_note: Mapped[str | None] = mapped_column(Text, nullable=True)
    version_id: Mapped[int] = mapped_column(Integer, nullable=False)

    contract: Mapped[Contract] = relationship("Contract", back_populates="escrow_transactions")
    milestone: Mapped[Milestone | None] = relationship("Milestone")

    __table_args__ = (
        CheckConstraint("amount > 0", name="ck_escrow_amount_positive"),
        Index("ix_escrow_contract_status", "contract_id", "status"),
    )
    __mapper_args__ = {"version_id_col": version_id}


class Review(Base):
    __tablename__ = "reviews"

    review_id: Mapped[str] = mapped_column(String, primary_key=True, default=new_id)
    contract_id: Mapped[str] = mapped_column(
        String, ForeignKey("contracts.contract_id"), nullable=False
    )
    reviewer_id: Mapped[str] = mapped_column(String, nullable=False)
    reviewee_id: Mapped[str] = mapped_column(String, nullable=False, index=True)
    rating: Mapped[int] = mapped_column(Integer, nullable=False)
    comment: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)

    contract: Mapped[Contract] = relationship("Contract", back_populates="reviews")

    __table_args__ = (
        UniqueConstraint("contract_id", "reviewer_id", name="uq_review_scope"),
        CheckConstraint("rating BETWEEN 1 AND 5", name="ck_review_rating_range"),
    )


class Notification(Base):
    __tablename__ = "notifications"

    notification_id: Mapped[str] = mapped_column(String, primary_key=True, default=new_id)
    recipient_id: Mapped[str] = mapped_column(String, nullable=False)
    type: Mapped[str] = mapped_column(String, nullable=False)
    subject_id: Mapped[str] = mapped_column(String, nullable=False)
    dedupe_key: Mapped[str] = mapped_column(String, nullable=False, index=True)
    payload: Mapped[dict] = mapped_column(JSON, nullable=False)
    is_read: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)

    __table_args__ = (
        Index("ix_notifications_recipient_created", "recipient_id", "created_at"),
    )


class NotificationOutbox(Base):
    __tablename__ = "notification_outbox"

    outbox_id: Mapped[str] = mapped_column(String, primary_key=True, default=new_id)
    recipient_id: Mapped[str] = mapped_column(String, nullable=False)
    type: Mapped[str] = mapped_column(String, nullable=False)
    payload: Mapped[dict] = mapped_column(JSON, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)
    delivered_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    notification_id: Mapped[str | None] = mapped_column(String, nullable=True)
    attempts: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    last_error: Mapped[str | None] = mapped_column(Text, nullable=True)
    version_id: Mapped[int] = mapped_column(Integer, nullable=False)

    __table_args__ = (
        Index("ix_outbox_pending", "delivered_at", "created_at"),
    )

    __mapper_args__ = {"version_id_col": version_id}
