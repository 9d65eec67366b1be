"""Notification inbox and outbox persistence helpers."""

from __future__ import annotations

from datetime import datetime
from typing import Any

from sqlalchemy import func, select, update
from sqlalchemy.orm import Session

from gigledger.models import Notification, NotificationOutbox


class NotificationRepository:
    """Encapsulate the per-user inbox and the delivery outbox."""

    def __init__(self, session: Session) -> None:
        self._session = session

    # ------------------------------------------------------------------
    # Outbox

    def add_outbox_event(
        self,
        *,
        recipient_id: str,
        notification_type: str,
        payload: dict[str, Any],
    ) -> NotificationOutbox:
        event = NotificationOutbox(
            recipient_id=recipient_id,
            type=notification_type,
            payload=payload,
        )
        self._session.add(event)
        self._session.flush()
        return event

    def get_outbox_event(
        self, outbox_id: str, *, for_update: bool = False
    ) -> NotificationOutbox | None:
        query = select(NotificationOutbox).where(NotificationOutbox.outbox_id == outbox_id)
        if for_update:
            query = query.with_for_update()
        return self._session.execute(query).scalar_one_or_none()

    def list_pending_outbox(
        self, *, limit: int, max_attempts: int | None = None
    ) -> list[NotificationOutbox]:
        filters: list[Any] = [NotificationOutbox.delivered_at.is_(None)]
        if max_attempts is not None:
            filters.append(NotificationOutbox.attempts < max_attempts)
        query = (
            select(NotificationOutbox)
            .where(*filters)
            .order_by(
                NotificationOutbox.attempts.asc(),
                NotificationOutbox.created_at.asc(),
                NotificationOutbox.outbox_id,
            )
            .limit(limit)
        )
        return list(self._session.execute(query).scalars().all())

    # ------------------------------------------------------------------
    # Inbox

    def add_notification(self, notification: Notification) -> Notification:
        self._session.add(notification)
        self._session.flush()
        return notification

    def find_recent(self, dedupe_key: str, *, since: datetime) -> Notification | None:
        query = (
            select(Notification)
            .where(Notification.dedupe_key == dedupe_key, Notification.created_at >= since)
            .order_by(Notification.created_at.desc())
        )
        return self._session.execute(query).scalars().first()

    def get_notification(self, notification_id: str) -> Notification | None:
        return self._session.get(Notification, notification_id)

    def list_for(
        self,
        recipient_id: str,
        *,
        unread_only: bool = False,
        limit: int = 50,
        offset: int = 0,
    ) -> list[Notification]:
        filters: list[Any] = [Notification.recipient_id == recipient_id]
        if unread_only:
            filters.append(Notification.is_read.is_(False))
        query = (
            select(Notification)
            .where(*filters)
            .order_by(Notification.created_at.desc(), Notification.notification_id.desc())
            .limit(limit)
            .offset(offset)
        )
        return list(self._session.execute(query).scalars().all())

    def mark_all_read(self, recipient_id: str) -> int:
        result = self._session.execute(
            update(Notification)
            .where(Notification.recipient_id == recipient_id, Notification.is_read.is_(False))
            .values(is_read=True)
            .execution_options(synchronize_session=False)
        )
        return int(result.rowcount or 0)

    def unread_count(self, recipient_id: str) -> int:
        query = select(func.count(Notification.notification_id)).where(
            Notification.recipient_id == recipient_id,
            Notification.is_read.is_(False),
        )
        return int(self._session.execute(query).scalar_one())


__all__ = ["NotificationRepository"]
