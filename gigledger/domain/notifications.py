"""Notification payload variants.

Each notification ``type`` carries a fixed payload shape. Payloads are stored
as JSON with camelCase keys (``gigId``, ``gigTitle`` ...), the shape the inbox
reader renders, and every variant names the entity it reports on through
``subject_id`` so the dispatcher can suppress duplicates.
"""

from __future__ import annotations

from decimal import Decimal
from typing import Annotated, Any, Literal, Mapping, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter
from pydantic.alias_generators import to_camel


class _PayloadBase(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    @property
    def subject_id(self) -> str:
        raise NotImplementedError

    def to_json(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True)


class ConnectionRequestPayload(_PayloadBase):
    type: Literal["connection_request"] = "connection_request"
    requester_id: str
    requester_name: str | None = None

    @property
    def subject_id(self) -> str:
        return self.requester_id


class ProposalSubmittedPayload(_PayloadBase):
    type: Literal["proposal_submitted"] = "proposal_submitted"
    gig_id: str
    gig_title: str
    proposal_id: str
    bidder_id: str

    @property
    def subject_id(self) -> str:
        return self.proposal_id


class ProposalAcceptedPayload(_PayloadBase):
    type: Literal["proposal_accepted"] = "proposal_accepted"
    gig_id: str
    gig_title: str
    proposal_id: str
    contract_id: str

    @property
    def subject_id(self) -> str:
        return self.proposal_id


class ProposalRejectedPayload(_PayloadBase):
    type: Literal["proposal_rejected"] = "proposal_rejected"
    gig_id: str
    gig_title: str
    proposal_id: str

    @property
    def subject_id(self) -> str:
        return self.proposal_id


class _ContractPayload(_PayloadBase):
    contract_id: str
    gig_id: str
    gig_title: str

    @property
    def subject_id(self) -> str:
        return self.contract_id


class ContractSignedPayload(_ContractPayload):
    type: Literal["contract_signed"] = "contract_signed"
    professional_id: str


class ContractCompletedPayload(_ContractPayload):
    type: Literal["contract_completed"] = "contract_completed"
    client_id: str


class ContractCancelledPayload(_ContractPayload):
    type: Literal["contract_cancelled"] = "contract_cancelled"


class _MilestonePayload(_PayloadBase):
    contract_id: str
    milestone_id: str
    milestone_title: str
    amount: Decimal

    @property
    def subject_id(self) -> str:
        return self.milestone_id


class MilestoneCompletedPayload(_MilestonePayload):
    type: Literal["milestone_completed"] = "milestone_completed"


class MilestoneApprovedPayload(_MilestonePayload):
    type: Literal["milestone_approved"] = "milestone_approved"


class _EscrowPayload(_PayloadBase):
    escrow_id: str
    contract_id: str
    gig_id: str
    gig_title: str
    amount: Decimal

    @property
    def subject_id(self) -> str:
        return self.escrow_id


class EscrowFundedPayload(_EscrowPayload):
    type: Literal["escrow_funded"] = "escrow_funded"


class EscrowReleasedPayload(_EscrowPayload):
    type: Literal["escrow_released"] = "escrow_released"
    milestone_id: str | None = None


class EscrowDisputedPayload(_EscrowPayload):
    type: Literal["escrow_disputed"] = "escrow_disputed"
    reason: str
    raised_by: str


class EscrowResolvedPayload(_EscrowPayload):
    type: Literal["escrow_resolved"] = "escrow_resolved"
    outcome: Literal["released", "refunded"]
    note: str | None = None


class ReviewReceivedPayload(_PayloadBase):
    type: Literal["review_received"] = "review_received"
    review_id: str
    contract_id: str
    reviewer_id: str
    rating: int

    @property
    def subject_id(self) -> str:
        return self.review_id


NotificationPayload = Annotated[
    Union[
        ConnectionRequestPayload,
        ProposalSubmittedPayload,
        ProposalAcceptedPayload,
        ProposalRejectedPayload,
        ContractSignedPayload,
        ContractCompletedPayload,
        ContractCancelledPayload,
        MilestoneCompletedPayload,
        MilestoneApprovedPayload,
        EscrowFundedPayload,
        EscrowReleasedPayload,
        EscrowDisputedPayload,
        EscrowResolvedPayload,
        ReviewReceivedPayload,
    ],
    Field(discriminator="type"),
]

payload_adapter: TypeAdapter[NotificationPayload] = TypeAdapter(NotificationPayload)


def build_payload(notification_type: str, data: Mapping[str, Any]) -> NotificationPayload:
    """Validate raw payload data against the shape registered for ``notification_type``."""

    return payload_adapter.validate_python({**data, "type": notification_type})


__all__ = [
    "ConnectionRequestPayload",
    "ContractCancelledPayload",
    "ContractCompletedPayload",
    "ContractSignedPayload",
    "EscrowDisputedPayload",
    "EscrowFundedPayload",
    "EscrowReleasedPayload",
    "EscrowResolvedPayload",
    "MilestoneApprovedPayload",
    "MilestoneCompletedPayload",
    "NotificationPayload",
    "ProposalAcceptedPayload",
    "ProposalRejectedPayload",
    "ProposalSubmittedPayload",
    "ReviewReceivedPayload",
    "build_payload",
    "payload_adapter",
]
