"""Transaction boundaries for ledger writes."""

from __future__ import annotations

import time
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from typing import TypeVar

from loguru import logger
from sqlalchemy.exc import DBAPIError
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.orm.exc import StaleDataError

from gigledger.core.config import Settings, get_settings
from gigledger.errors import PersistenceFailure

T = TypeVar("T")

# Raised when the store is unreachable, a constraint lost a race, or a
# versioned row changed underneath the transaction.
RETRYABLE_ERRORS = (DBAPIError, StaleDataError)


class UnitOfWork:
    """Run a unit of work in its own session and commit it as one transaction."""

    def __init__(
        self,
        session_factory: Callable[[], Session] | sessionmaker[Session] | None = None,
        *,
        settings: Settings | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        if session_factory is None:
            from gigledger.db import SessionLocal

            session_factory = SessionLocal
        self._session_factory = session_factory
        self._settings = settings or get_settings()
        self._sleep = sleep

    @property
    def settings(self) -> Settings:
        return self._settings

    @contextmanager
    def session_scope(self) -> Iterator[Session]:
        session = self._session_factory()
        try:
            yield session
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    def run(self, operation: str, work: Callable[[Session], T]) -> T:
        """Commit ``work`` atomically, retrying once on store conflicts.

        Business errors raised by ``work`` roll the transaction back and
        propagate untouched. Store failures are retried up to
        ``write_retry_attempts`` in total, then surface as ``PersistenceFailure``.
        """

        attempts = self._settings.write_retry_attempts
        backoff = self._settings.write_retry_backoff_schedule
        attempt = 1
        while True:
            try:
                with self.session_scope() as session:
                    return work(session)
            except RETRYABLE_ERRORS as exc:
                if attempt >= attempts:
                    logger.error(
                        "{} failed after {} attempt(s): {}",
                        operation,
                        attempt,
                        exc.__class__.__name__,
                    )
                    raise PersistenceFailure(
                        f"{operation} could not be committed; the ledger store is "
                        "unavailable or a concurrent change won"
                    ) from exc
                delay = backoff[min(attempt - 1, len(backoff) - 1)]
                logger.warning(
                    "{} hit a store conflict on attempt {}/{} ({}); retrying in {}s",
                    operation,
                    attempt,
                    attempts,
                    exc.__class__.__name__,
                    delay,
                )
                if delay:
                    self._sleep(delay)
                attempt += 1

    def read(self, operation: str, work: Callable[[Session], T]) -> T:
        """Run a read-only query; nothing is committed and nothing is retried."""

        session = self._session_factory()
        try:
            return work(session)
        except RETRYABLE_ERRORS as exc:
            raise PersistenceFailure(f"{operation} could not read the ledger store") from exc
        finally:
            session.rollback()
            session.close()


__all__ = ["RETRYABLE_ERRORS", "UnitOfWork"]
