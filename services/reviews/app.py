from contextlib import asynccontextmanager
from typing import List, Optional, Union

from fastapi import Depends, FastAPI, Query, Request, status
from fastapi.middleware.cors import CORSMiddleware
from prometheus_client import CollectorRegistry
from prometheus_fastapi_instrumentator import Instrumentator
from sqlalchemy.orm import Session

from common.config import get_settings
from common.database import Base, engine, get_db
from common.dependencies import get_current_user, require_moderator
from common.errors import NotFoundError, register_error_handlers
from common.logging_middleware import add_audit_middleware
from common.models import Review, User
from common.rate_limit import apply_rate_limiter, limiter
from common.schemas import (
    ModerationIn,
    ModerationQueuePage,
    ProviderResponseIn,
    RatingSummaryRead,
    ReportIn,
    ResolveReportIn,
    ReviewCreate,
    ReviewModerationRead,
    ReviewPage,
    ReviewRead,
)

from . import aggregator, manager
from .moderation import can_moderate, can_view

settings = get_settings()


@asynccontextmanager
async def lifespan(_: FastAPI):
    if settings.run_db_migrations:
        Base.metadata.create_all(bind=engine)
    yield


def create_app() -> FastAPI:
    fastapi_app = FastAPI(title="Reviews Service", version="1.0.0", lifespan=lifespan)
    fastapi_app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    apply_rate_limiter(fastapi_app)
    register_error_handlers(fastapi_app)
    add_audit_middleware(fastapi_app, "reviews")
    Instrumentator(registry=CollectorRegistry()).instrument(fastapi_app).expose(fastapi_app)
    return fastapi_app


app = create_app()


def _review_view(review: Review, viewer: User) -> ReviewRead:
    """Moderators get the full record. Everyone else, parties included, gets the public fields."""
    if can_moderate(viewer):
        return ReviewModerationRead.model_validate(review)
    return ReviewRead.model_validate(review)


@app.get("/health", tags=["health"])
def health() -> dict[str, str]:
    return {"status": "ok", "service": "reviews"}


@app.post("/reviews", response_model=ReviewRead, status_code=status.HTTP_201_CREATED)
@limiter.limit("30/minute")
def submit_review(
    request: Request,
    review_in: ReviewCreate,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> Review:
    return manager.create_review(
        db,
        current_user,
        booking_id=review_in.booking_id,
        rating=review_in.rating,
        comment=review_in.comment,
        categories=review_in.categories.rated() if review_in.categories else None,
    )


@app.get("/reviews/me", response_model=List[ReviewRead])
@limiter.limit("30/minute")
def my_reviews(
    request: Request,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> List[Review]:
    return (
        db.query(Review)
        .filter(Review.client_id == current_user.id)
        .order_by(Review.created_at.desc(), Review.id.desc())
        .all()
    )


@app.get("/reviews/provider/{provider_id}", response_model=ReviewPage)
@limiter.limit("60/minute")
def provider_reviews(
    request: Request,
    provider_id: int,
    page: int = Query(1, ge=1),
    limit: Optional[int] = Query(None, ge=1),
    db: Session = Depends(get_db),
) -> ReviewPage:
    items, total = aggregator.get_visible_reviews(db, provider_id, page=page, limit=limit)
    return ReviewPage(
        items=[ReviewRead.model_validate(review) for review in items],
        total=total,
        page=page,
        limit=aggregator.page_size(limit),
    )


@app.get("/reviews/provider/{provider_id}/stats", response_model=RatingSummaryRead)
@limiter.limit("60/minute")
def provider_rating_summary(request: Request, provider_id: int, db: Session = Depends(get_db)) -> RatingSummaryRead:
    return aggregator.get_provider_rating_summary(db, provider_id)


@app.post("/reviews/provider/{provider_id}/recompute", response_model=RatingSummaryRead)
@limiter.limit("10/minute")
def recompute_provider_rating(
    request: Request,
    provider_id: int,
    _: User = Depends(require_moderator),
    db: Session = Depends(get_db),
) -> RatingSummaryRead:
    aggregator.get_provider(db, provider_id)
    return aggregator.recompute_provider_rating(db, provider_id)


@app.get("/reviews/{review_id}", response_model=Union[ReviewModerationRead, ReviewRead])
@limiter.limit("60/minute")
def read_review(
    request: Request,
    review_id: int,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> ReviewRead:
    review = manager.get_review(db, review_id)
    if not can_view(review, current_user):
        raise NotFoundError("Review not found")
    return _review_view(review, current_user)


@app.put("/reviews/{review_id}/response", response_model=ReviewRead)
@limiter.limit("20/minute")
def respond_to_review(
    request: Request,
    review_id: int,
    response_in: ProviderResponseIn,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> Review:
    return manager.attach_provider_response(db, current_user, review_id, response_in.text)


@app.post("/reviews/{review_id}/report", response_model=ReviewRead)
@limiter.limit("15/minute")
def report_review(
    request: Request,
    review_id: int,
    report_in: ReportIn,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> Review:
    return manager.report_review(db, current_user, review_id, report_in.reason)


@app.post("/reviews/{review_id}/moderate", response_model=ReviewModerationRead)
@limiter.limit("30/minute")
def moderate_review(
    request: Request,
    review_id: int,
    moderation_in: ModerationIn,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> Review:
    return manager.moderate_review(db, current_user, review_id, moderation_in.visible, moderation_in.reason)


@app.post("/reviews/{review_id}/resolve-report", response_model=ReviewModerationRead)
@limiter.limit("30/minute")
def resolve_review_report(
    request: Request,
    review_id: int,
    resolve_in: Optional[ResolveReportIn] = None,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> Review:
    return manager.resolve_report(db, current_user, review_id, resolve_in.note if resolve_in else None)


@app.get("/moderation/reviews", response_model=ModerationQueuePage)
@limiter.limit("30/minute")
def moderation_queue(
    request: Request,
    reported: Optional[bool] = True,
    visible: Optional[bool] = None,
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    _: User = Depends(require_moderator),
    db: Session = Depends(get_db),
) -> ModerationQueuePage:
    query = db.query(Review)
    if reported is not None:
        query = query.filter(Review.reported.is_(reported))
    if visible is not None:
        query = query.filter(Review.is_visible.is_(visible))
    total = query.count()
    items = (
        query.order_by(Review.reported_at.desc(), Review.created_at.desc(), Review.id.desc())
        .offset((page - 1) * limit)
        .limit(limit)
        .all()
    )
    return ModerationQueuePage(
        items=[ReviewModerationRead.model_validate(review) for review in items],
        total=total,
        page=page,
        limit=limit,
    )
