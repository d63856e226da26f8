"""
Top-level router for version 1 of the API.

This router aggregates the domain routers (users, listings, bookings,
payments, etc.) under a unified prefix.  When new domains are
introduced, include their routers here.
"""

from fastapi import APIRouter

from .endpoints import (
    admin,
    bookings,
    cron,
    listings,
    messages,
    notifications,
    payments,
    reviews,
    users,
)

router = APIRouter()

router.include_router(users.router, prefix="/users", tags=["users"])
router.include_router(listings.router, prefix="/listings", tags=["listings"])
router.include_router(bookings.router, prefix="/bookings", tags=["bookings"])
# Payments keep the /stripe prefix the mobile clients and the webhook
# registration in the Stripe dashboard point at.
router.include_router(payments.router, prefix="/stripe", tags=["payments"])
router.include_router(reviews.router, prefix="/reviews", tags=["reviews"])
router.include_router(messages.router, prefix="/messages", tags=["messages"])
router.include_router(notifications.router, prefix="/notifications", tags=["notifications"])
router.include_router(admin.router, prefix="/admin", tags=["admin"])
router.include_router(cron.router, prefix="/cron", tags=["cron"])
