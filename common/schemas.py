"""Pydantic schemas shared across the services."""
from __future__ import annotations

from datetime import datetime
from typing import Dict, List, Optional

from pydantic import BaseModel, EmailStr, Field

from .models import BookingStatus, ReviewCategory, RoleEnum


class Token(BaseModel):
    access_token: str
    token_type: str = "bearer"


class UserBase(BaseModel):
    name: str = Field(..., max_length=100)
    username: str = Field(..., max_length=50)
    email: EmailStr
    role: RoleEnum = RoleEnum.CLIENT


class UserCreate(UserBase):
    password: str = Field(..., min_length=8)


class UserRead(UserBase):
    id: int
    created_at: datetime

    model_config = {"from_attributes": True}


class ProviderProfileRead(BaseModel):
    id: int
    user_id: int
    display_name: str
    created_at: datetime

    model_config = {"from_attributes": True}


class BookingCreate(BaseModel):
    provider_id: int
    service_name: str = Field(..., min_length=1, max_length=100)
    scheduled_at: datetime
    notes: Optional[str] = Field(None, max_length=500)


class BookingTransition(BaseModel):
    reason: Optional[str] = Field(None, max_length=500)


class BookingRead(BaseModel):
    id: int
    client_id: int
    provider_id: int
    profile_id: int
    service_name: str
    scheduled_at: datetime
    notes: Optional[str]
    status: BookingStatus
    accepted_at: Optional[datetime]
    completed_at: Optional[datetime]
    rejected_at: Optional[datetime]
    rejection_reason: Optional[str]
    cancelled_at: Optional[datetime]
    cancelled_by: Optional[RoleEnum]
    cancellation_reason: Optional[str]
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}


class Reviewability(BaseModel):
    booking_id: int
    reviewable: bool


class ReviewCategories(BaseModel):
    """Optional sub-ratings. A category left out is "not rated" and is skipped by aggregation."""

    model_config = {"extra": "forbid"}

    punctuality: Optional[int] = Field(None, description="1 to 5 when rated")
    communication: Optional[int] = Field(None, description="1 to 5 when rated")
    professionalism: Optional[int] = Field(None, description="1 to 5 when rated")
    overall: Optional[int] = Field(None, description="1 to 5 when rated")

    def rated(self) -> Dict[ReviewCategory, int]:
        return {ReviewCategory(name): value for name, value in self.model_dump(exclude_none=True).items()}


class ReviewCreate(BaseModel):
    booking_id: int
    rating: int = Field(..., description="Rating from 1 to 5")
    comment: Optional[str] = None
    categories: Optional[ReviewCategories] = None


class ProviderResponseIn(BaseModel):
    text: str


class ReportIn(BaseModel):
    reason: str = Field(..., max_length=1000)


class ModerationIn(BaseModel):
    visible: bool
    reason: Optional[str] = Field(None, max_length=1000)


class ResolveReportIn(BaseModel):
    note: Optional[str] = Field(None, max_length=1000)


class ReviewRead(BaseModel):
    id: int
    booking_id: int
    client_id: int
    provider_id: int
    profile_id: int
    rating: int
    comment: Optional[str]
    categories: Dict[ReviewCategory, int]
    is_verified: bool
    is_visible: bool
    provider_response: Optional[str]
    provider_response_at: Optional[datetime]
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}


class ReviewModerationRead(ReviewRead):
    """Full record, including who reported or moderated the review. Moderators only."""

    moderated_by: Optional[int]
    moderated_at: Optional[datetime]
    moderation_reason: Optional[str]
    reported: bool
    report_reason: Optional[str]
    reported_by: Optional[int]
    reported_at: Optional[datetime]


class ReviewPage(BaseModel):
    items: List[ReviewRead]
    total: int
    page: int
    limit: int


class ModerationQueuePage(BaseModel):
    items: List[ReviewModerationRead]
    total: int
    page: int
    limit: int


class RatingSummaryRead(BaseModel):
    provider_id: int
    average_rating: Optional[float]
    review_count: int
    category_averages: Dict[ReviewCategory, float]
