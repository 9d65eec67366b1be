"""Repository abstractions for database interactions."""

from .contract_repository import ContractRepository
from .gig_repository import GigRepository
from .notification_repository import NotificationRepository
from .types import ContractSummaryRecord, GigListingRecord, ProposalRecord

__all__ = [
    "ContractRepository",
    "ContractSummaryRecord",
    "GigListingRecord",
    "GigRepository",
    "NotificationRepository",
    "ProposalRecord",
]
