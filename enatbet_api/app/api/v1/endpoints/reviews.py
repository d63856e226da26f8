"""
API endpoints for reviews.

Reviews are written by either side of a completed stay.  Listing
reviews are read through ``GET /listings/{id}/reviews``; moderation
lives under ``/admin/reviews``.
"""

from typing import Any, Dict

from fastapi import APIRouter, Depends, status

from enatbet_api.app.core.security import get_current_user
from enatbet_api.app.schemas.review import ReviewCreate, ReviewRead, ReviewResponseCreate, ReviewUpdate
from enatbet_api.app.services.errors import http_error
from enatbet_api.app.services.review_service import ReviewService

router = APIRouter()


@router.post("", response_model=ReviewRead, status_code=status.HTTP_201_CREATED, summary="Submit a review")
async def create_review(
    data: ReviewCreate,
    current_user: Dict[str, Any] = Depends(get_current_user),
) -> ReviewRead:
    """Review the other party of a booking within 14 days of check-out."""
    try:
        return await ReviewService.create_review(data, current_user)
    except ValueError as e:
        raise http_error(e)


@router.get("/{review_id}", response_model=ReviewRead, summary="Get a review")
async def get_review(review_id: int) -> ReviewRead:
    try:
        return await ReviewService.get_review(review_id)
    except ValueError as e:
        raise http_error(e)


@router.put("/{review_id}", response_model=ReviewRead, summary="Edit a review")
async def update_review(
    review_id: int,
    data: ReviewUpdate,
    current_user: Dict[str, Any] = Depends(get_current_user),
) -> ReviewRead:
    try:
        return await ReviewService.update_review(review_id, data, current_user)
    except ValueError as e:
        raise http_error(e)


@router.post("/{review_id}/response", response_model=ReviewRead, summary="Respond to a review")
async def respond_to_review(
    review_id: int,
    data: ReviewResponseCreate,
    current_user: Dict[str, Any] = Depends(get_current_user),
) -> ReviewRead:
    try:
        return await ReviewService.add_response(review_id, data.response, current_user)
    except ValueError as e:
        raise http_error(e)


@router.post("/{review_id}/flag", response_model=ReviewRead, summary="Report a review")
async def flag_review(
    review_id: int,
    current_user: Dict[str, Any] = Depends(get_current_user),
) -> ReviewRead:
    try:
        return await ReviewService.flag_review(review_id, current_user)
    except ValueError as e:
        raise http_error(e)
