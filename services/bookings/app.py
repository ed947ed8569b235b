from contextlib import asynccontextmanager
from typing import List, Optional

from fastapi import Depends, FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from prometheus_client import CollectorRegistry
from prometheus_fastapi_instrumentator import Instrumentator
from sqlalchemy.orm import Session

from common.booking_lifecycle import get_booking, is_reviewable, transition_booking
from common.config import get_settings
from common.database import Base, engine, get_db
from common.dependencies import allow_roles, get_current_user, require_service_key
from common.errors import AuthorizationError, NotFoundError, register_error_handlers
from common.logging_middleware import add_audit_middleware
from common.models import Booking, BookingStatus, ProviderProfile, RoleEnum, User
from common.rate_limit import apply_rate_limiter, limiter
from common.schemas import BookingCreate, BookingRead, BookingTransition, Reviewability

settings = get_settings()


@asynccontextmanager
async def lifespan(_: FastAPI):
    if settings.run_db_migrations:
        Base.metadata.create_all(bind=engine)
    yield


def create_app() -> FastAPI:
    fastapi_app = FastAPI(title="Bookings Service", version="1.0.0", lifespan=lifespan)
    fastapi_app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    apply_rate_limiter(fastapi_app)
    register_error_handlers(fastapi_app)
    add_audit_middleware(fastapi_app, "bookings")
    Instrumentator(registry=CollectorRegistry()).instrument(fastapi_app).expose(fastapi_app)
    return fastapi_app


app = create_app()


@app.get("/health", tags=["health"])
def health() -> dict[str, str]:
    return {"status": "ok", "service": "bookings"}


def _visible_booking(db: Session, booking_id: int, current_user: User) -> Booking:
    booking = get_booking(db, booking_id)
    if current_user.role != RoleEnum.ADMIN and current_user.id not in {booking.client_id, booking.provider_id}:
        raise AuthorizationError("Access denied")
    return booking


@app.post("/bookings", response_model=BookingRead, status_code=status.HTTP_201_CREATED)
@limiter.limit("20/minute")
def create_booking(
    request: Request,
    booking_in: BookingCreate,
    current_user: User = Depends(allow_roles(RoleEnum.CLIENT)),
    db: Session = Depends(get_db),
) -> Booking:
    profile = db.query(ProviderProfile).filter(ProviderProfile.user_id == booking_in.provider_id).first()
    if not profile:
        raise NotFoundError("Provider profile not found")

    booking = Booking(
        client_id=current_user.id,
        provider_id=booking_in.provider_id,
        profile_id=profile.id,
        service_name=booking_in.service_name,
        scheduled_at=booking_in.scheduled_at,
        notes=booking_in.notes,
        status=BookingStatus.PENDING,
    )
    db.add(booking)
    db.commit()
    db.refresh(booking)
    return booking


@app.get("/bookings/me", response_model=List[BookingRead])
@limiter.limit("30/minute")
def my_bookings(
    request: Request,
    status_filter: Optional[BookingStatus] = None,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> List[Booking]:
    query = db.query(Booking).filter(
        (Booking.client_id == current_user.id) | (Booking.provider_id == current_user.id)
    )
    if status_filter is not None:
        query = query.filter(Booking.status == status_filter)
    return query.order_by(Booking.created_at.desc(), Booking.id.desc()).all()


@app.get("/bookings/{booking_id}", response_model=BookingRead)
@limiter.limit("60/minute")
def read_booking(
    request: Request,
    booking_id: int,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> Booking:
    return _visible_booking(db, booking_id, current_user)


@app.get("/bookings/{booking_id}/reviewable", response_model=Reviewability)
@limiter.limit("60/minute")
def booking_reviewable(
    request: Request,
    booking_id: int,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> Reviewability:
    booking = _visible_booking(db, booking_id, current_user)
    return Reviewability(booking_id=booking.id, reviewable=is_reviewable(db, booking))


def _move(db: Session, booking_id: int, target: BookingStatus, actor: Optional[User], reason: Optional[str] = None) -> Booking:
    return transition_booking(db, get_booking(db, booking_id), target, actor=actor, reason=reason)


@app.post("/bookings/{booking_id}/accept", response_model=BookingRead)
@limiter.limit("20/minute")
def accept_booking(
    request: Request,
    booking_id: int,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> Booking:
    return _move(db, booking_id, BookingStatus.ACCEPTED, current_user)


@app.post("/bookings/{booking_id}/reject", response_model=BookingRead)
@limiter.limit("20/minute")
def reject_booking(
    request: Request,
    booking_id: int,
    body: Optional[BookingTransition] = None,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> Booking:
    return _move(db, booking_id, BookingStatus.REJECTED, current_user, body.reason if body else None)


@app.post("/bookings/{booking_id}/cancel", response_model=BookingRead)
@limiter.limit("20/minute")
def cancel_booking(
    request: Request,
    booking_id: int,
    body: Optional[BookingTransition] = None,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> Booking:
    return _move(db, booking_id, BookingStatus.CANCELLED, current_user, body.reason if body else None)


@app.post("/bookings/{booking_id}/complete", response_model=BookingRead)
@limiter.limit("20/minute")
def complete_booking(
    request: Request,
    booking_id: int,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> Booking:
    return _move(db, booking_id, BookingStatus.COMPLETED, current_user)


@app.post(
    "/internal/bookings/{booking_id}/complete",
    response_model=BookingRead,
    dependencies=[Depends(require_service_key)],
    tags=["internal"],
)
def confirm_service_completion(booking_id: int, db: Session = Depends(get_db)) -> Booking:
    return _move(db, booking_id, BookingStatus.COMPLETED, None)
