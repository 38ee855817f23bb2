"""Registration service - capacity-safe join and leave"""

from __future__ import annotations

import logging
import random
import time
from typing import Callable, Tuple, TypeVar

from prometheus_client import Counter
from sqlalchemy import delete, or_, select, update
from sqlalchemy.exc import DBAPIError, IntegrityError
from sqlalchemy.orm import Session

from app.config import settings
from app.core.exceptions import (
    AlreadyRegisteredError,
    DatabaseError,
    EventFullError,
    InvalidStateError,
    ResourceNotFoundError,
)
from app.core.security import Principal
from app.models.event import Event, EventRegistration
from app.services.event_service import (
    APPROVED,
    department_can_see,
    get_event_in_college,
    is_restricted,
)
from app.services.notification_service import NotificationService, notification_service
from app.services.scope_resolver import Scope

logger = logging.getLogger(__name__)

REGISTRATIONS = Counter(
    "registrations_total",
    "Registration attempts by outcome",
    ["outcome"],
)

T = TypeVar("T")

RETRYABLE_PGCODES = {"40001", "40P01"}


def is_retryable(exc: DBAPIError) -> bool:
    """Serialization failures, deadlocks and SQLite busy locks are safe to retry."""
    orig = getattr(exc, "orig", None)
    if getattr(orig, "pgcode", None) in RETRYABLE_PGCODES:
        return True
    return "database is locked" in str(orig or exc).lower()


class RegistrationService:
    """
    Join/leave events without over-subscription.

    Each attempt is a single transaction at the configured isolation level:
    a guarded counter increment (compare-and-swap on registration_count)
    followed by the registration insert, whose unique (event_id, user_id)
    key is the backstop against duplicates. Nothing in the transaction
    touches the network.

    Conflicting attempts are retried with jittered exponential backoff until
    both the retry count and the deadline are spent.
    """

    def __init__(
        self,
        notifier: NotificationService,
        isolation_level: str = "READ COMMITTED",
        max_retries: int = 5,
        retry_deadline_seconds: float = 5.0,
    ):
        self.notifier = notifier
        self.isolation_level = isolation_level
        self.max_retries = max(1, max_retries)
        self.retry_deadline_seconds = max(0.0, retry_deadline_seconds)

    def _isolation_for(self, db: Session) -> str:
        # pysqlite only knows SERIALIZABLE, READ UNCOMMITTED and AUTOCOMMIT
        if db.get_bind().dialect.name == "sqlite" and self.isolation_level != "READ UNCOMMITTED":
            return "SERIALIZABLE"
        return self.isolation_level

    @staticmethod
    def _backoff(attempt: int) -> float:
        return random.uniform(0, min(0.5, 0.02 * 2 ** attempt))

    def _atomic(self, db: Session, operation: Callable[[Session], T], label: str) -> T:
        # The lookup transaction must be over so the isolation level applies.
        db.rollback()
        isolation_level = self._isolation_for(db)
        deadline = time.monotonic() + self.retry_deadline_seconds
        attempt = 0
        while True:
            attempt += 1
            try:
                db.connection(execution_options={"isolation_level": isolation_level})
                return operation(db)
            except DBAPIError as exc:
                db.rollback()
                if not is_retryable(exc):
                    logger.exception("%s failed", label)
                    raise DatabaseError()
                if attempt >= self.max_retries and time.monotonic() >= deadline:
                    logger.error("%s gave up after %d conflicting attempts", label, attempt)
                    raise DatabaseError("Could not complete the operation due to concurrent updates")
                logger.warning("%s conflicted (attempt %d), retrying", label, attempt)
                time.sleep(self._backoff(attempt))

    @staticmethod
    def _claim_seat(db: Session, event_id: str, user_id: str) -> Tuple[EventRegistration, bool]:
        """Returns the new registration and whether it took the last seat."""
        claimed = db.execute(
            update(Event)
            .where(
                Event.id == event_id,
                or_(Event.capacity.is_(None), Event.registration_count < Event.capacity),
            )
            .values(registration_count=Event.registration_count + 1)
            .execution_options(synchronize_session=False)
        ).rowcount
        if not claimed:
            exists = db.execute(select(Event.id).where(Event.id == event_id)).first()
            db.rollback()
            if exists is None:
                raise ResourceNotFoundError("Event")
            raise EventFullError()

        count, capacity = db.execute(
            select(Event.registration_count, Event.capacity).where(Event.id == event_id)
        ).one()
        became_full = capacity is not None and count == capacity

        registration = EventRegistration(event_id=event_id, user_id=user_id)
        db.add(registration)
        try:
            db.flush()
        except IntegrityError:
            # Undoes the seat claimed above as well.
            db.rollback()
            raise AlreadyRegisteredError()
        db.commit()
        return registration, became_full

    def register(self, db: Session, principal: Principal, scope: Scope, event_id: str) -> EventRegistration:
        """
        Register the caller for an event

        Raises:
            ResourceNotFoundError: If the event is not visible to the caller
            InvalidStateError: If the event is not approved or is archived
            EventFullError: If capacity is reached
            AlreadyRegisteredError: If the caller already holds a registration
        """
        event = get_event_in_college(db, scope, event_id)
        if is_restricted(principal) and not department_can_see(event, scope.department):
            raise ResourceNotFoundError("Event")
        if event.moderation_status != APPROVED or event.is_archived:
            raise InvalidStateError("Event not open for registration")

        try:
            registration, became_full = self._atomic(
                db, lambda session: self._claim_seat(session, event_id, principal.user_id), "Registration"
            )
        except EventFullError:
            REGISTRATIONS.labels(outcome="full").inc()
            logger.info("Registration for event %s rejected: full", event_id)
            raise
        except AlreadyRegisteredError:
            REGISTRATIONS.labels(outcome="duplicate").inc()
            raise

        REGISTRATIONS.labels(outcome="accepted").inc()
        db.refresh(registration)
        logger.info("User %s registered for event %s", principal.user_id, event_id)

        if became_full:
            self._notify_full(db, event_id)
        return registration

    def _notify_full(self, db: Session, event_id: str) -> None:
        try:
            event = db.get(Event, event_id)
            if event is not None:
                self.notifier.event_full(event.author_id, event)
        except Exception:
            logger.exception("Failed to send capacity notification for event %s", event_id)

    @staticmethod
    def _release_seat(db: Session, event_id: str, user_id: str) -> bool:
        removed = db.execute(
            delete(EventRegistration)
            .where(EventRegistration.event_id == event_id, EventRegistration.user_id == user_id)
            .execution_options(synchronize_session=False)
        ).rowcount
        if removed:
            db.execute(
                update(Event)
                .where(Event.id == event_id, Event.registration_count > 0)
                .values(registration_count=Event.registration_count - removed)
                .execution_options(synchronize_session=False)
            )
        db.commit()
        return bool(removed)

    def unregister(self, db: Session, principal: Principal, scope: Scope, event_id: str) -> bool:
        """
        Remove the caller's registration; succeeds whether or not one existed

        Returns:
            True if a registration was removed
        """
        get_event_in_college(db, scope, event_id)
        removed = self._atomic(
            db, lambda session: self._release_seat(session, event_id, principal.user_id), "Unregistration"
        )
        if removed:
            logger.info("User %s unregistered from event %s", principal.user_id, event_id)
        return removed


registration_service = RegistrationService(
    notification_service,
    isolation_level=settings.REGISTRATION_ISOLATION_LEVEL,
    max_retries=settings.REGISTRATION_MAX_RETRIES,
    retry_deadline_seconds=settings.REGISTRATION_RETRY_DEADLINE_SECONDS,
)
