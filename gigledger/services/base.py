"""Plumbing shared by the lifecycle services."""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Generic, TypeVar

from sqlalchemy.orm import Session

from .notification_service import NotificationDispatcher
from .unit_of_work import UnitOfWork

T = TypeVar("T")


@dataclass(slots=True)
class Committed(Generic[T]):
    """Result of a unit of work plus the outbox events it enqueued."""

    value: T
    outbox_ids: list[str] = field(default_factory=list)


class LifecycleService:
    """Commit a transition, then hand its notifications to the dispatcher."""

    def __init__(self, uow: UnitOfWork, dispatcher: NotificationDispatcher) -> None:
        self._uow = uow
        self._dispatcher = dispatcher

    def _commit(self, operation: str, work: Callable[[Session], Committed[T]]) -> T:
        committed = self._uow.run(operation, work)
        if committed.outbox_ids:
            self._dispatcher.deliver(committed.outbox_ids)
        return committed.value


__all__ = ["Committed", "LifecycleService"]
