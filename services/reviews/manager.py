"""Review record rules: creation, provider responses, reports and moderation.

Every function validates before it writes and commits a single review row, so
a rejected call leaves no partial state behind. Functions that change the set
of visible reviews refresh the provider's rating summary after their commit.
"""
import html
import logging
from typing import Mapping, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from common.booking_lifecycle import get_booking, has_review
from common.config import get_settings
from common.errors import AuthorizationError, ConflictError, NotFoundError, ValidationError
from common.events import publish_event
from common.models import BookingStatus, Review, ReviewCategory, User, utcnow

from .aggregator import refresh_provider_rating
from .moderation import can_moderate

logger = logging.getLogger(__name__)

RATING_RANGE = range(1, 6)


def _sanitize(text: str) -> str:
    return html.escape(text)


def _clean_text(value: Optional[str], field: str, max_length: int, required: bool = False) -> Optional[str]:
    """Strip ``value`` and enforce its length on the text as typed, before escaping."""
    stripped = (value or "").strip()
    if not stripped:
        if required:
            raise ValidationError(f"{field} must not be empty")
        return None
    if len(stripped) > max_length:
        raise ValidationError(f"{field} must be at most {max_length} characters")
    return _sanitize(stripped)


def _check_score(value: object, field: str) -> int:
    # bool is an int subclass; True must not pass as a 1-star score
    if isinstance(value, bool) or not isinstance(value, int) or value not in RATING_RANGE:
        raise ValidationError(f"{field} must be an integer between 1 and 5")
    return value


def _category(key: object) -> ReviewCategory:
    try:
        return ReviewCategory(key)
    except ValueError as exc:
        raise ValidationError(f"Unknown review category: {key}") from exc


def get_review(db: Session, review_id: int) -> Review:
    review = db.get(Review, review_id)
    if review is None:
        raise NotFoundError("Review not found")
    return review


def create_review(
    db: Session,
    actor: User,
    booking_id: int,
    rating: int,
    comment: Optional[str] = None,
    categories: Optional[Mapping[ReviewCategory, int]] = None,
) -> Review:
    settings = get_settings()
    booking = get_booking(db, booking_id)
    if booking.client_id != actor.id:
        raise AuthorizationError("Only the booking's client can review it")
    if booking.status != BookingStatus.COMPLETED:
        raise ConflictError("Only completed bookings can be reviewed")
    if has_review(db, booking.id):
        raise ConflictError("This booking has already been reviewed")

    rating = _check_score(rating, "rating")
    scores = {}
    for key, value in (categories or {}).items():
        category = _category(key)
        if value is not None:
            scores[category] = _check_score(value, category.value)
    comment = _clean_text(comment, "comment", settings.comment_max_length)

    review = Review(
        booking_id=booking.id,
        client_id=booking.client_id,
        provider_id=booking.provider_id,
        profile_id=booking.profile_id,
        rating=rating,
        comment=comment,
        # the booking is completed and the author is its client
        is_verified=True,
        is_visible=True,
        reported=False,
        **{category.value: value for category, value in scores.items()},
    )
    db.add(review)
    try:
        db.commit()
    except IntegrityError as exc:
        # The unique index on booking_id is what settles concurrent creates.
        db.rollback()
        raise ConflictError("This booking has already been reviewed") from exc
    db.refresh(review)

    logger.info("Review %s created for booking %s (rating=%s)", review.id, booking.id, rating)
    refresh_provider_rating(db, review.provider_id)
    publish_event(
        "review_created",
        {"review_id": review.id, "booking_id": booking.id, "provider_id": review.provider_id, "rating": rating},
    )
    return review


def attach_provider_response(db: Session, actor: User, review_id: int, text: str) -> Review:
    settings = get_settings()
    review = get_review(db, review_id)
    if review.provider_id != actor.id:
        raise AuthorizationError("Only the reviewed provider can respond")
    response = _clean_text(text, "response", settings.response_max_length, required=True)
    if review.provider_response and not settings.allow_response_overwrite:
        raise ConflictError("This review already has a response")

    review.provider_response = response
    review.provider_response_at = utcnow()
    db.commit()
    db.refresh(review)
    logger.info("Provider %s responded to review %s", actor.id, review.id)
    return review


def report_review(db: Session, actor: User, review_id: int, reason: str) -> Review:
    """Flag a review for moderator attention. Visibility is left unchanged."""
    reason = _clean_text(reason, "reason", get_settings().comment_max_length, required=True)
    review = get_review(db, review_id)

    review.reported = True
    review.report_reason = reason
    review.reported_by = actor.id
    review.reported_at = utcnow()
    db.commit()
    db.refresh(review)
    logger.info("Review %s reported by user %s", review.id, actor.id)
    return review


def moderate_review(
    db: Session,
    actor: User,
    review_id: int,
    visible: bool,
    reason: Optional[str] = None,
) -> Review:
    """Set visibility and stamp the moderator. Reports stay open; see :func:`resolve_report`."""
    if not can_moderate(actor):
        raise AuthorizationError("Moderator role required")
    review = get_review(db, review_id)
    reason = _clean_text(reason, "reason", get_settings().comment_max_length)

    visibility_changed = review.is_visible != visible
    review.is_visible = visible
    review.moderated_by = actor.id
    review.moderated_at = utcnow()
    review.moderation_reason = reason
    db.commit()
    db.refresh(review)

    logger.info("Review %s moderated by %s: visible=%s", review.id, actor.id, visible)
    if visibility_changed:
        refresh_provider_rating(db, review.provider_id)
        publish_event(
            "review_moderated",
            {"review_id": review.id, "provider_id": review.provider_id, "visible": visible},
        )
    return review


def resolve_report(db: Session, actor: User, review_id: int, note: Optional[str] = None) -> Review:
    """Close an open report. Visibility is a separate decision made with :func:`moderate_review`."""
    if not can_moderate(actor):
        raise AuthorizationError("Moderator role required")
    review = get_review(db, review_id)
    if not review.reported:
        raise ConflictError("This review has no open report")
    note = _clean_text(note, "note", get_settings().comment_max_length)

    review.reported = False
    review.report_reason = None
    review.reported_by = None
    review.reported_at = None
    review.moderated_by = actor.id
    review.moderated_at = utcnow()
    if note is not None:
        review.moderation_reason = note
    db.commit()
    db.refresh(review)
    logger.info("Report on review %s resolved by %s", review.id, actor.id)
    return review
