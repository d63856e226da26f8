"""
Pydantic schemas for reviews.

Guests review the listing and its host after a stay; hosts may review
their guests.  The review type and the reviewee are derived from the
booking on the server.
"""

from typing import Optional

from pydantic import BaseModel, Field, field_validator

MIN_COMMENT_LENGTH = 20
MAX_COMMENT_LENGTH = 2000


def _clean_comment(v: Optional[str]) -> Optional[str]:
    if v is None:
        return None
    v = v.strip()
    if len(v) < MIN_COMMENT_LENGTH:
        raise ValueError(f"Comment must be at least {MIN_COMMENT_LENGTH} characters")
    if len(v) > MAX_COMMENT_LENGTH:
        raise ValueError(f"Comment must be {MAX_COMMENT_LENGTH} characters or fewer")
    return v


class ReviewCreate(BaseModel):
    booking_id: int = Field(..., gt=0)
    rating: int = Field(..., ge=1, le=5, description="Overall rating from 1 to 5")
    comment: str
    cleanliness: Optional[int] = Field(None, ge=1, le=5)
    accuracy: Optional[int] = Field(None, ge=1, le=5)
    communication: Optional[int] = Field(None, ge=1, le=5)
    location: Optional[int] = Field(None, ge=1, le=5)
    value: Optional[int] = Field(None, ge=1, le=5)

    @field_validator("comment")
    @classmethod
    def sanitize_comment(cls, v: str) -> str:
        return _clean_comment(v)


class ReviewUpdate(BaseModel):
    rating: Optional[int] = Field(None, ge=1, le=5)
    comment: Optional[str] = None
    cleanliness: Optional[int] = Field(None, ge=1, le=5)
    accuracy: Optional[int] = Field(None, ge=1, le=5)
    communication: Optional[int] = Field(None, ge=1, le=5)
    location: Optional[int] = Field(None, ge=1, le=5)
    value: Optional[int] = Field(None, ge=1, le=5)

    @field_validator("comment")
    @classmethod
    def sanitize_comment(cls, v: Optional[str]) -> Optional[str]:
        return _clean_comment(v)


class ReviewResponseCreate(BaseModel):
    response: str = Field(..., min_length=1, max_length=1000)


class ReviewRead(BaseModel):
    id: int
    booking_id: int
    listing_id: int
    reviewer_id: int
    reviewee_id: int
    type: str
    rating: int
    cleanliness: Optional[int] = None
    accuracy: Optional[int] = None
    communication: Optional[int] = None
    location: Optional[int] = None
    value: Optional[int] = None
    comment: str
    response: Optional[str] = None
    response_at: Optional[str] = None
    status: str
    flagged_count: int = 0
    created_at: Optional[str] = None
    updated_at: Optional[str] = None

    model_config = {"from_attributes": True}
