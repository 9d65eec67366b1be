"""Outbox-backed notification delivery and the per-user inbox."""

from __future__ import annotations

from collections.abc import Callable, Mapping, Sequence
from datetime import datetime, timedelta
from typing import Any

from loguru import logger
from sqlalchemy.orm import Session

from gigledger import schemas
from gigledger.domain import NotificationPayload, build_payload
from gigledger.errors import NotFound, Unauthorized
from gigledger.models import Notification, utcnow
from gigledger.repositories import NotificationRepository

from .unit_of_work import UnitOfWork


def dedupe_key(recipient_id: str, payload: NotificationPayload) -> str:
    return f"{recipient_id}:{payload.type}:{payload.subject_id}"


class NotificationDispatcher:
    """Turn lifecycle events into inbox notifications.

    Lifecycle services call :meth:`enqueue` inside their own transaction so the
    event commits together with the state change it reports. Once that
    transaction has committed they hand the outbox ids to :meth:`deliver`.
    Rows that fail to deliver stay pending for :meth:`deliver_pending`.
    """

    def __init__(
        self,
        uow: UnitOfWork,
        *,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._uow = uow
        self._clock = clock

    @property
    def _settings(self):
        return self._uow.settings

    # ------------------------------------------------------------------
    # Producing events

    def enqueue(
        self, session: Session, recipient_id: str, payload: NotificationPayload
    ) -> str:
        """Write an outbox row in the caller's transaction and return its id."""

        event = NotificationRepository(session).add_outbox_event(
            recipient_id=recipient_id,
            notification_type=payload.type,
            payload=payload.to_json(),
        )
        return event.outbox_id

    def deliver(self, outbox_ids: Sequence[str]) -> int:
        """Deliver committed outbox rows; returns how many were delivered now."""

        delivered = 0
        for outbox_id in outbox_ids:
            if self._deliver_one(outbox_id):
                delivered += 1
        return delivered

    def deliver_pending(self, limit: int | None = None) -> int:
        batch_size = limit or self._settings.notification_delivery_batch_size
        pending_ids = self._uow.read(
            "list_pending_outbox",
            lambda session: [
                event.outbox_id
                for event in NotificationRepository(session).list_pending_outbox(
                    limit=batch_size,
                    max_attempts=self._settings.notification_max_delivery_attempts,
                )
            ],
        )
        if not pending_ids:
            return 0
        logger.info("Redelivering {} pending notification(s)", len(pending_ids))
        return self.deliver(pending_ids)

    def emit(
        self,
        recipient_id: str,
        notification_type: str,
        payload: Mapping[str, Any] | NotificationPayload,
    ) -> schemas.Notification:
        """Persist a notification directly, honouring the dedupe window."""

        data = dict(payload) if isinstance(payload, Mapping) else payload.to_json()
        parsed = build_payload(notification_type, data)

        def work(session: Session) -> schemas.Notification:
            notification = self._emit(session, recipient_id, parsed)
            return schemas.Notification.model_validate(notification)

        return self._uow.run("emit_notification", work)

    def _emit(
        self, session: Session, recipient_id: str, payload: NotificationPayload
    ) -> Notification:
        repo = NotificationRepository(session)
        now = self._clock()
        key = dedupe_key(recipient_id, payload)

        window = self._settings.notification_dedupe_window_seconds
        if window:
            existing = repo.find_recent(key, since=now - timedelta(seconds=window))
            if existing is not None:
                logger.warning(
                    "Suppressed duplicate {} notification for {} (existing {})",
                    payload.type,
                    recipient_id,
                    existing.notification_id,
                )
                return existing

        return repo.add_notification(
            Notification(
                recipient_id=recipient_id,
                type=payload.type,
                subject_id=payload.subject_id,
                dedupe_key=key,
                payload=payload.to_json(),
                is_read=False,
                created_at=now,
            )
        )

    def _deliver_one(self, outbox_id: str) -> bool:
        def work(session: Session) -> bool:
            # The row lock and its version keep a concurrent sweep from delivering twice.
            event = NotificationRepository(session).get_outbox_event(outbox_id, for_update=True)
            if event is None or event.delivered_at is not None:
                return False
            payload = build_payload(event.type, event.payload)
            notification = self._emit(session, event.recipient_id, payload)
            event.attempts += 1
            event.delivered_at = self._clock()
            event.notification_id = notification.notification_id
            event.last_error = None
            return True

        try:
            return self._uow.run("deliver_notification", work)
        except Exception as exc:  # noqa: BLE001
            logger.exception("Failed to deliver outbox event {}", outbox_id)
            self._record_failure(outbox_id, exc)
            return False

    def _record_failure(self, outbox_id: str, exc: Exception) -> None:
        def work(session: Session) -> None:
            event = NotificationRepository(session).get_outbox_event(outbox_id, for_update=True)
            if event is None:
                return
            event.attempts += 1
            event.last_error = f"{exc.__class__.__name__}: {exc}"[:2000]
            if event.attempts >= self._settings.notification_max_delivery_attempts:
                logger.warning(
                    "Outbox event {} failed {} times; no longer redelivered", outbox_id, event.attempts
                )

        try:
            self._uow.run("record_delivery_failure", work)
        except Exception:  # noqa: BLE001
            logger.exception("Could not record delivery failure for outbox event {}", outbox_id)

    # ------------------------------------------------------------------
    # Inbox

    def list_for(
        self,
        recipient_id: str,
        *,
        unread_only: bool = False,
        limit: int = 50,
        offset: int = 0,
    ) -> list[schemas.Notification]:
        return self._uow.read(
            "list_notifications",
            lambda session: [
                schemas.Notification.model_validate(row)
                for row in NotificationRepository(session).list_for(
                    recipient_id, unread_only=unread_only, limit=limit, offset=offset
                )
            ],
        )

    def unread_count(self, recipient_id: str) -> int:
        return self._uow.read(
            "count_unread_notifications",
            lambda session: NotificationRepository(session).unread_count(recipient_id),
        )

    def mark_read(self, notification_id: str, recipient_id: str) -> schemas.Notification:
        def work(session: Session) -> schemas.Notification:
            notification = NotificationRepository(session).get_notification(notification_id)
            if notification is None:
                raise NotFound("notification", notification_id)
            if notification.recipient_id != recipient_id:
                raise Unauthorized("only the recipient may mark a notification as read")
            notification.is_read = True
            session.flush()
            return schemas.Notification.model_validate(notification)

        return self._uow.run("mark_notification_read", work)

    def mark_all_read(self, recipient_id: str) -> int:
        updated = self._uow.run(
            "mark_all_notifications_read",
            lambda session: NotificationRepository(session).mark_all_read(recipient_id),
        )
        logger.info("Marked {} notification(s) read for {}", updated, recipient_id)
        return updated


__all__ = ["NotificationDispatcher", "dedupe_key"]
