"""SQLAlchemy models shared across all services."""
from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Dict, Optional

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    DateTime,
    Enum as SqlEnum,
    Float,
    ForeignKey,
    Integer,
    String,
    Text,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .database import Base


def utcnow() -> datetime:
    """Naive UTC timestamp, the representation stored in every DateTime column."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


class RoleEnum(str, Enum):
    ADMIN = "admin"
    MODERATOR = "moderator"
    CLIENT = "client"
    PROVIDER = "provider"
    SERVICE = "service"


class BookingStatus(str, Enum):
    PENDING = "pending"
    ACCEPTED = "accepted"
    REJECTED = "rejected"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class ReviewCategory(str, Enum):
    PUNCTUALITY = "punctuality"
    COMMUNICATION = "communication"
    PROFESSIONALISM = "professionalism"
    OVERALL = "overall"


class User(Base):
    __tablename__ = "users"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    name: Mapped[str] = mapped_column(String(100))
    username: Mapped[str] = mapped_column(String(50), unique=True, index=True)
    hashed_password: Mapped[str] = mapped_column(String(255))
    email: Mapped[str] = mapped_column(String(255), unique=True)
    role: Mapped[RoleEnum] = mapped_column(SqlEnum(RoleEnum), default=RoleEnum.CLIENT)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)

    profile: Mapped[Optional["ProviderProfile"]] = relationship(back_populates="user", uselist=False)


class ProviderProfile(Base):
    __tablename__ = "provider_profiles"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), unique=True, index=True)
    display_name: Mapped[str] = mapped_column(String(100))
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)

    user: Mapped[User] = relationship(back_populates="profile")


class Booking(Base):
    __tablename__ = "bookings"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    client_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), index=True)
    provider_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), index=True)
    profile_id: Mapped[int] = mapped_column(ForeignKey("provider_profiles.id", ondelete="CASCADE"), index=True)
    service_name: Mapped[str] = mapped_column(String(100))
    scheduled_at: Mapped[datetime] = mapped_column(DateTime, index=True)
    notes: Mapped[Optional[str]] = mapped_column(Text, default=None)
    status: Mapped[BookingStatus] = mapped_column(
        SqlEnum(BookingStatus), default=BookingStatus.PENDING, index=True
    )
    accepted_at: Mapped[Optional[datetime]] = mapped_column(DateTime, default=None)
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime, default=None)
    rejected_at: Mapped[Optional[datetime]] = mapped_column(DateTime, default=None)
    rejection_reason: Mapped[Optional[str]] = mapped_column(Text, default=None)
    cancelled_at: Mapped[Optional[datetime]] = mapped_column(DateTime, default=None)
    cancelled_by: Mapped[Optional[RoleEnum]] = mapped_column(SqlEnum(RoleEnum), default=None)
    cancellation_reason: Mapped[Optional[str]] = mapped_column(Text, default=None)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, index=True)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, onupdate=utcnow)

    client: Mapped[User] = relationship(foreign_keys=[client_id])
    provider: Mapped[User] = relationship(foreign_keys=[provider_id])
    profile: Mapped[ProviderProfile] = relationship()
    review: Mapped[Optional["Review"]] = relationship(back_populates="booking", uselist=False)


class Review(Base):
    __tablename__ = "reviews"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    # Unique: at most one review per booking, enforced by the database.
    booking_id: Mapped[int] = mapped_column(ForeignKey("bookings.id", ondelete="CASCADE"), unique=True)
    client_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), index=True)
    provider_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), index=True)
    profile_id: Mapped[int] = mapped_column(ForeignKey("provider_profiles.id", ondelete="CASCADE"), index=True)

    rating: Mapped[int] = mapped_column(Integer)
    comment: Mapped[Optional[str]] = mapped_column(Text, default=None)
    punctuality: Mapped[Optional[int]] = mapped_column(Integer, default=None)
    communication: Mapped[Optional[int]] = mapped_column(Integer, default=None)
    professionalism: Mapped[Optional[int]] = mapped_column(Integer, default=None)
    overall: Mapped[Optional[int]] = mapped_column(Integer, default=None)

    is_verified: Mapped[bool] = mapped_column(Boolean)
    is_visible: Mapped[bool] = mapped_column(Boolean, index=True)
    moderated_by: Mapped[Optional[int]] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"), default=None)
    moderated_at: Mapped[Optional[datetime]] = mapped_column(DateTime, default=None)
    moderation_reason: Mapped[Optional[str]] = mapped_column(Text, default=None)

    provider_response: Mapped[Optional[str]] = mapped_column(Text, default=None)
    provider_response_at: Mapped[Optional[datetime]] = mapped_column(DateTime, default=None)

    reported: Mapped[bool] = mapped_column(Boolean, default=False, index=True)
    report_reason: Mapped[Optional[str]] = mapped_column(Text, default=None)
    reported_by: Mapped[Optional[int]] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"), default=None)
    reported_at: Mapped[Optional[datetime]] = mapped_column(DateTime, default=None)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, index=True)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, onupdate=utcnow)

    booking: Mapped[Booking] = relationship(back_populates="review")

    __table_args__ = (
        CheckConstraint("rating >= 1 AND rating <= 5", name="check_rating_range"),
        CheckConstraint(
            "punctuality IS NULL OR (punctuality >= 1 AND punctuality <= 5)",
            name="check_punctuality_range",
        ),
        CheckConstraint(
            "communication IS NULL OR (communication >= 1 AND communication <= 5)",
            name="check_communication_range",
        ),
        CheckConstraint(
            "professionalism IS NULL OR (professionalism >= 1 AND professionalism <= 5)",
            name="check_professionalism_range",
        ),
        CheckConstraint("overall IS NULL OR (overall >= 1 AND overall <= 5)", name="check_overall_range"),
        CheckConstraint("reported OR report_reason IS NULL", name="check_report_reason_requires_report"),
    )

    @property
    def categories(self) -> Dict[ReviewCategory, int]:
        """Rated categories only; an unrated category is absent, not zero."""
        return {
            category: getattr(self, category.value)
            for category in ReviewCategory
            if getattr(self, category.value) is not None
        }


class ProviderRatingSummary(Base):
    """Derived view over a provider's visible reviews. Written only by the aggregator."""

    __tablename__ = "provider_rating_summaries"

    provider_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), primary_key=True)
    average_rating: Mapped[Optional[float]] = mapped_column(Float, default=None)
    review_count: Mapped[int] = mapped_column(Integer, default=0)
    punctuality_average: Mapped[Optional[float]] = mapped_column(Float, default=None)
    communication_average: Mapped[Optional[float]] = mapped_column(Float, default=None)
    professionalism_average: Mapped[Optional[float]] = mapped_column(Float, default=None)
    overall_average: Mapped[Optional[float]] = mapped_column(Float, default=None)
    computed_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)

    @property
    def category_averages(self) -> Dict[ReviewCategory, float]:
        return {
            category: getattr(self, f"{category.value}_average")
            for category in ReviewCategory
            if getattr(self, f"{category.value}_average") is not None
        }

