"""
API endpoints for the authenticated user's profile, host application and favorites.

There is no registration endpoint: the first authenticated request with
a valid Firebase ID token creates the user.
"""

from typing import Any, Dict, List

from fastapi import APIRouter, Depends, HTTPException, status

from enatbet_api.app.core.security import get_current_user
from enatbet_api.app.schemas.listing import ListingRead
from enatbet_api.app.schemas.user import (
    BecomeHost,
    FavoriteCreate,
    HostApplicationCreate,
    HostApplicationRead,
    UserRead,
    UserUpdate,
)
from enatbet_api.app.services.errors import http_error
from enatbet_api.app.services.host_application_service import HostApplicationService
from enatbet_api.app.services.user_service import UserService

router = APIRouter()


@router.get("/me", response_model=UserRead, summary="Current user profile")
async def read_me(current_user: Dict[str, Any] = Depends(get_current_user)) -> UserRead:
    try:
        return await UserService.get_user(current_user["user_id"])
    except ValueError as e:
        raise http_error(e)


@router.put("/me", response_model=UserRead, summary="Update profile")
async def update_me(
    data: UserUpdate,
    current_user: Dict[str, Any] = Depends(get_current_user),
) -> UserRead:
    try:
        return await UserService.update_profile(current_user["user_id"], data)
    except ValueError as e:
        raise http_error(e)


@router.post("/me/host", response_model=UserRead, summary="Become a host")
async def become_host(
    data: BecomeHost,
    current_user: Dict[str, Any] = Depends(get_current_user),
) -> UserRead:
    """Opt in to hosting, optionally registering a Stripe Connect account for payouts."""
    try:
        return await UserService.become_host(
            current_user["user_id"], data.stripe_connect_account_id, current_user.get("role")
        )
    except ValueError as e:
        raise http_error(e)


@router.post(
    "/me/host-application",
    response_model=HostApplicationRead,
    status_code=status.HTTP_201_CREATED,
    summary="Apply to become a host",
)
async def apply_to_host(
    data: HostApplicationCreate,
    current_user: Dict[str, Any] = Depends(get_current_user),
) -> HostApplicationRead:
    try:
        return await HostApplicationService.apply(data, current_user)
    except ValueError as e:
        raise http_error(e)


@router.get("/me/host-application", response_model=HostApplicationRead, summary="My latest host application")
async def read_my_host_application(
    current_user: Dict[str, Any] = Depends(get_current_user),
) -> HostApplicationRead:
    try:
        return await HostApplicationService.latest_for_user(current_user["user_id"])
    except ValueError as e:
        raise http_error(e)


@router.get("/me/favorites", response_model=List[ListingRead], summary="List favorite listings")
async def list_favorites(current_user: Dict[str, Any] = Depends(get_current_user)) -> List[ListingRead]:
    return await UserService.list_favorites(current_user["user_id"])


@router.post("/me/favorites", status_code=status.HTTP_204_NO_CONTENT, summary="Add a favorite")
async def add_favorite(
    data: FavoriteCreate,
    current_user: Dict[str, Any] = Depends(get_current_user),
) -> None:
    try:
        await UserService.add_favorite(current_user["user_id"], data.listing_id)
    except ValueError as e:
        raise http_error(e)


@router.delete(
    "/me/favorites/{listing_id}", status_code=status.HTTP_204_NO_CONTENT, summary="Remove a favorite"
)
async def remove_favorite(
    listing_id: int,
    current_user: Dict[str, Any] = Depends(get_current_user),
) -> None:
    await UserService.remove_favorite(current_user["user_id"], listing_id)


@router.get("/{user_id}", response_model=UserRead, summary="Public user profile")
async def read_user(
    user_id: int,
    current_user: Dict[str, Any] = Depends(get_current_user),
) -> UserRead:
    """Return another user's profile without payout details."""
    try:
        user = await UserService.get_user(user_id)
    except ValueError as e:
        raise http_error(e)
    if user.status != "active" and current_user["role"] != "admin":
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"User {user_id} not found")
    if current_user["user_id"] != user_id and current_user["role"] != "admin":
        user = user.model_copy(update={"email": None, "phone": None, "stripe_connect_account_id": None})
    return user
