"""Booking lifecycle: the transitions a booking takes before it becomes reviewable.

``pending -> accepted -> completed`` is the happy path. A pending booking may
also be rejected by its provider, and a pending or accepted booking may be
cancelled. ``completed``, ``rejected`` and ``cancelled`` are terminal, and only
``completed`` unlocks a review.

Transitions are applied with a compare-and-set update on the current status,
so two callers racing on the same booking cannot both win.
"""
import logging
from typing import Dict, FrozenSet, Optional

from sqlalchemy import exists, select, update
from sqlalchemy.orm import Session

from .errors import AuthorizationError, ConflictError, NotFoundError
from .events import publish_event
from .models import Booking, BookingStatus, Review, RoleEnum, User, utcnow

logger = logging.getLogger(__name__)

ALLOWED_TRANSITIONS: Dict[BookingStatus, FrozenSet[BookingStatus]] = {
    BookingStatus.PENDING: frozenset({BookingStatus.ACCEPTED, BookingStatus.REJECTED, BookingStatus.CANCELLED}),
    BookingStatus.ACCEPTED: frozenset({BookingStatus.COMPLETED, BookingStatus.CANCELLED}),
    BookingStatus.COMPLETED: frozenset(),
    BookingStatus.REJECTED: frozenset(),
    BookingStatus.CANCELLED: frozenset(),
}
TERMINAL_STATES: FrozenSet[BookingStatus] = frozenset(
    state for state, targets in ALLOWED_TRANSITIONS.items() if not targets
)


def can_transition(current: BookingStatus, target: BookingStatus) -> bool:
    return target in ALLOWED_TRANSITIONS[current]


def get_booking(db: Session, booking_id: int) -> Booking:
    booking = db.get(Booking, booking_id)
    if booking is None:
        raise NotFoundError("Booking not found")
    return booking


def _ensure_actor_may_move(booking: Booking, target: BookingStatus, actor: Optional[User]) -> None:
    # None is the internal service identity, already authenticated by its key.
    if actor is None:
        return
    if actor.role == RoleEnum.ADMIN and target in {BookingStatus.COMPLETED, BookingStatus.CANCELLED}:
        return
    if target == BookingStatus.CANCELLED:
        allowed = actor.id in {booking.client_id, booking.provider_id}
    else:
        allowed = actor.id == booking.provider_id
    if not allowed:
        raise AuthorizationError(f"Not allowed to mark this booking {target.value}")


def transition_booking(
    db: Session,
    booking: Booking,
    target: BookingStatus,
    actor: Optional[User] = None,
    reason: Optional[str] = None,
) -> Booking:
    """Move ``booking`` to ``target`` on behalf of ``actor`` (``None`` for the service identity)."""
    _ensure_actor_may_move(booking, target, actor)

    current = booking.status
    if not can_transition(current, target):
        raise ConflictError(f"Cannot move a {current.value} booking to {target.value}")

    now = utcnow()
    values = {"status": target, "updated_at": now}
    if target == BookingStatus.ACCEPTED:
        values["accepted_at"] = now
    elif target == BookingStatus.COMPLETED:
        values["completed_at"] = now
    elif target == BookingStatus.REJECTED:
        values["rejected_at"] = now
        values["rejection_reason"] = reason
    elif target == BookingStatus.CANCELLED:
        values["cancelled_at"] = now
        values["cancelled_by"] = actor.role if actor is not None else RoleEnum.SERVICE
        values["cancellation_reason"] = reason

    result = db.execute(
        update(Booking)
        .where(Booking.id == booking.id, Booking.status == current)
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        db.rollback()
        raise ConflictError("Booking was modified concurrently; reload it and retry")
    db.commit()
    db.refresh(booking)

    logger.info("Booking %s moved %s -> %s", booking.id, current.value, target.value)
    publish_event(
        "booking_status_changed",
        {"booking_id": booking.id, "from": current.value, "to": target.value},
    )
    return booking


def has_review(db: Session, booking_id: int) -> bool:
    return bool(db.scalar(select(exists().where(Review.booking_id == booking_id))))


def is_reviewable(db: Session, booking: Booking) -> bool:
    """True iff the booking is completed and no review references it yet."""
    return booking.status == BookingStatus.COMPLETED and not has_review(db, booking.id)
