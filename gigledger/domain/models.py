"""Typed inputs accepted by the ledger services."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal


@dataclass(slots=True)
class GigDraft:
    """A work request as posted by its owner."""

    title: str
    description: str | None = None
    budget: Decimal | None = None
    deadline: datetime | None = None
    required_skills: list[str] = field(default_factory=list)
    category: str | None = None
    gig_type: str = "other"
    location: str | None = None


@dataclass(slots=True)
class MilestoneSpec:
    """One planned deliverable and the share of the contract it pays out."""

    title: str
    payment_percentage: Decimal
    description: str | None = None
    due_date: datetime | None = None


@dataclass(slots=True)
class ProfileInput:
    user_id: str
    full_name: str | None = None
    username: str | None = None
    avatar_url: str | None = None
