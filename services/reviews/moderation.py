"""Public-visibility gate for reviews. Pure predicates; nothing here writes."""
from typing import Optional

from sqlalchemy import and_
from sqlalchemy.sql.elements import ColumnElement

from common.config import get_settings
from common.dependencies import MODERATOR_ROLES
from common.models import Review, User


def _hide_reported(hide_reported: Optional[bool]) -> bool:
    return get_settings().hide_reported_reviews if hide_reported is None else hide_reported


def is_publicly_visible(review: Review, hide_reported: Optional[bool] = None) -> bool:
    if not review.is_visible:
        return False
    return not (_hide_reported(hide_reported) and review.reported)


def public_review_filter(hide_reported: Optional[bool] = None) -> ColumnElement[bool]:
    """SQL form of :func:`is_publicly_visible`, for listing queries."""
    clause = Review.is_visible.is_(True)
    if _hide_reported(hide_reported):
        clause = and_(clause, Review.reported.is_(False))
    return clause


def can_moderate(user: User) -> bool:
    return user.role in MODERATOR_ROLES


def is_party(review: Review, user: User) -> bool:
    return user.id in {review.client_id, review.provider_id}


def can_view(review: Review, user: Optional[User]) -> bool:
    """Hidden reviews stay readable by moderators and by the two parties to the booking."""
    if is_publicly_visible(review):
        return True
    return user is not None and (can_moderate(user) or is_party(review, user))
