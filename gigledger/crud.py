from __future__ import annotations

from collections.abc import Iterable

from sqlalchemy.orm import Session

from gigledger.domain import GigDraft, ProfileInput
from gigledger.errors import ValidationFailure
from gigledger.repositories import GigRepository

from .models import Gig, Profile


def create_gig(session: Session, owner_id: str, draft: GigDraft) -> Gig:
    if not draft.title or not draft.title.strip():
        raise ValidationFailure("a gig needs a title")
    if draft.budget is not None and draft.budget < 0:
        raise ValidationFailure("a gig budget cannot be negative")
    return GigRepository(session).create_gig(owner_id, draft)


def get_gig(session: Session, gig_id: str) -> Gig | None:
    return GigRepository(session).get_gig(gig_id)


def upsert_profile(session: Session, profile: ProfileInput) -> Profile:
    return GigRepository(session).upsert_profile(
        profile.user_id,
        full_name=profile.full_name,
        username=profile.username,
        avatar_url=profile.avatar_url,
    )


def upsert_profiles(session: Session, profiles: Iterable[ProfileInput]) -> list[Profile]:
    return [upsert_profile(session, profile) for profile in profiles]
