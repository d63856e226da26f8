"""
Endpoints called by the external scheduler.

Authenticated with ``Authorization: Bearer <CRON_SECRET>`` rather than
a user token.
"""

from fastapi import APIRouter, Depends

from enatbet_api.app.core.security import require_cron_secret
from enatbet_api.app.schemas.admin import CleanupResult
from enatbet_api.app.services.maintenance_service import MaintenanceService

router = APIRouter()


@router.get(
    "/cleanup-bookings",
    response_model=CleanupResult,
    summary="Expire holds and complete past stays",
    dependencies=[Depends(require_cron_secret)],
)
async def cleanup_bookings() -> CleanupResult:
    return await MaintenanceService.cleanup_bookings()
