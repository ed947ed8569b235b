"""Provider rating aggregation and the public review listing.

The stored :class:`ProviderRatingSummary` is a derived view. It is only ever
rebuilt from the provider's visible reviews and written back whole, never
patched incrementally, so a missed update path can leave it stale but not
wrong.
"""
import logging
from decimal import ROUND_HALF_UP, Decimal
from typing import List, Optional, Tuple

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from common.cache import SimpleTTLCache
from common.config import get_settings
from common.errors import NotFoundError, ValidationError
from common.models import ProviderRatingSummary, Review, ReviewCategory, RoleEnum, User, utcnow
from common.schemas import RatingSummaryRead

from .moderation import public_review_filter

logger = logging.getLogger(__name__)
settings = get_settings()

_ONE_DECIMAL = Decimal("0.1")
_summary_cache: SimpleTTLCache[RatingSummaryRead] = SimpleTTLCache(ttl=settings.rating_summary_cache_ttl)


def clear_summary_cache() -> None:
    _summary_cache.clear()


def _mean(total: int, count: int) -> Optional[float]:
    if not count:
        return None
    return float((Decimal(total) / Decimal(count)).quantize(_ONE_DECIMAL, rounding=ROUND_HALF_UP))


def get_provider(db: Session, provider_id: int) -> User:
    provider = db.get(User, provider_id)
    if provider is None or provider.role != RoleEnum.PROVIDER:
        raise NotFoundError("Provider not found")
    return provider


def compute_rating_summary(db: Session, provider_id: int) -> RatingSummaryRead:
    """Aggregate the provider's visible reviews without writing anything."""
    columns = [func.count(Review.id), func.coalesce(func.sum(Review.rating), 0)]
    for category in ReviewCategory:
        column = getattr(Review, category.value)
        # count(column) skips NULLs, so unrated categories drop out per field
        columns += [func.count(column), func.coalesce(func.sum(column), 0)]

    row = db.execute(
        select(*columns).where(Review.provider_id == provider_id, Review.is_visible.is_(True))
    ).one()

    review_count, rating_total = row[0], row[1]
    category_averages = {}
    for index, category in enumerate(ReviewCategory):
        count, total = row[2 + 2 * index], row[3 + 2 * index]
        if count:
            category_averages[category] = _mean(total, count)

    return RatingSummaryRead(
        provider_id=provider_id,
        average_rating=_mean(rating_total, review_count),
        review_count=review_count,
        category_averages=category_averages,
    )


def _store(db: Session, summary: RatingSummaryRead) -> None:
    row = db.get(ProviderRatingSummary, summary.provider_id)
    if row is None:
        row = ProviderRatingSummary(provider_id=summary.provider_id)
        db.add(row)
    row.average_rating = summary.average_rating
    row.review_count = summary.review_count
    for category in ReviewCategory:
        setattr(row, f"{category.value}_average", summary.category_averages.get(category))
    row.computed_at = utcnow()
    db.commit()


def recompute_provider_rating(db: Session, provider_id: int) -> RatingSummaryRead:
    """Rebuild and atomically replace the stored summary. Idempotent."""
    summary = compute_rating_summary(db, provider_id)
    try:
        _store(db, summary)
    except IntegrityError:
        # Another writer inserted the first summary row in the meantime.
        db.rollback()
        _store(db, summary)
    _summary_cache.pop(provider_id)
    logger.info(
        "Recomputed rating for provider %s: average=%s count=%s",
        provider_id,
        summary.average_rating,
        summary.review_count,
    )
    return summary


def refresh_provider_rating(db: Session, provider_id: int) -> Optional[RatingSummaryRead]:
    """Post-commit recompute. A failure keeps the previous summary and is left for a retry."""
    try:
        return recompute_provider_rating(db, provider_id)
    except SQLAlchemyError:
        db.rollback()
        logger.exception("Rating recompute failed for provider %s; previous summary kept", provider_id)
        return None


def _from_row(row: ProviderRatingSummary) -> RatingSummaryRead:
    return RatingSummaryRead(
        provider_id=row.provider_id,
        average_rating=row.average_rating,
        review_count=row.review_count,
        category_averages=row.category_averages,
    )


def get_provider_rating_summary(db: Session, provider_id: int) -> RatingSummaryRead:
    get_provider(db, provider_id)

    def load() -> RatingSummaryRead:
        row = db.get(ProviderRatingSummary, provider_id)
        if row is None:
            return recompute_provider_rating(db, provider_id)
        return _from_row(row)

    return _summary_cache.get_or_load(provider_id, load)


def page_size(limit: Optional[int] = None) -> int:
    """Requested page size, defaulted and capped by configuration."""
    if limit is not None and limit < 1:
        raise ValidationError("limit must be 1 or greater")
    return min(limit or settings.default_page_size, settings.max_page_size)


def get_visible_reviews(
    db: Session,
    provider_id: int,
    page: int = 1,
    limit: Optional[int] = None,
) -> Tuple[List[Review], int]:
    """Publicly visible reviews of a provider, most recent first, one page at a time."""
    if page < 1:
        raise ValidationError("page must be 1 or greater")
    limit = page_size(limit)
    get_provider(db, provider_id)

    query = db.query(Review).filter(Review.provider_id == provider_id, public_review_filter())
    total = query.count()
    items = (
        query.order_by(Review.created_at.desc(), Review.id.desc())
        .offset((page - 1) * limit)
        .limit(limit)
        .all()
    )
    return items, total
