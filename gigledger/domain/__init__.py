"""Domain inputs and notification payload variants shared by services and the API."""

from .models import GigDraft, MilestoneSpec, ProfileInput
from .notifications import (
    NotificationPayload,
    build_payload,
    payload_adapter,
)

__all__ = [
    "GigDraft",
    "MilestoneSpec",
    "NotificationPayload",
    "ProfileInput",
    "build_payload",
    "payload_adapter",
]
