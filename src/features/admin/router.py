"""Admin maintenance API endpoints."""

from fastapi import APIRouter, Depends, Query

from src.features.analytics.models import CleanupResult
from src.features.analytics.service import AnalyticsService, get_analytics_service
from src.features.auth import verify_admin_token

router = APIRouter(
    prefix="/api/admin",
    tags=["admin"],
    dependencies=[Depends(verify_admin_token)],
)


@router.post("/analytics/cleanup", response_model=CleanupResult)
async def cleanup_performance_samples(
    older_than_days: int | None = Query(default=None, alias="olderThanDays"),
    service: AnalyticsService = Depends(get_analytics_service),
):
    """
    Delete performance samples past the retention window.

    Defaults to PERFORMANCE_RETENTION_DAYS when olderThanDays is omitted.
    """
    return await service.cleanup_old_samples(older_than_days)
