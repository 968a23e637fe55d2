"""Analytics API endpoints."""

from datetime import date, datetime

from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import StreamingResponse

from src.config import get_settings
from src.core.rate_limiter import export_rate_limit, limiter, per_minute_limit
from src.features.auth import AuthenticatedCustomer, get_current_customer
from src.features.conversations.models import ConversationMetricsUpdate

from .models import GenerateAnalyticsRequest, GenerateAnalyticsResponse
from .service import AnalyticsService, get_analytics_service, resolve_time_range

router = APIRouter(prefix="/api/analytics", tags=["analytics"])


def _ok(data) -> dict:
    return {"success": True, "data": data}


@router.get("/summary")
async def get_summary(
    period: str | None = None,
    customer: AuthenticatedCustomer = Depends(get_current_customer),
    service: AnalyticsService = Depends(get_analytics_service),
):
    """
    Get analytics summary across all of the customer's chatbots.

    Args:
        period: 7d, 30d, 90d or 1y (default 30d)
    """
    return _ok(await service.get_user_summary(customer.customer_id, period))


@router.get("/chatbots/{chatbot_id}/dashboard")
async def get_dashboard(
    chatbot_id: str,
    start_date: datetime | None = Query(default=None, alias="startDate"),
    end_date: datetime | None = Query(default=None, alias="endDate"),
    period: str | None = None,
    customer: AuthenticatedCustomer = Depends(get_current_customer),
    service: AnalyticsService = Depends(get_analytics_service),
):
    """
    Get dashboard metrics for a chatbot.

    Explicit startDate and endDate take precedence over period.
    """
    time_range = resolve_time_range(start_date, end_date, period)
    metrics = await service.get_dashboard_metrics(customer.customer_id, chatbot_id, time_range)
    return _ok({"chatbot_id": chatbot_id, "time_range": time_range, "metrics": metrics})


@router.get("/chatbots/{chatbot_id}/insights")
async def get_conversation_insights(
    chatbot_id: str,
    start_date: datetime | None = Query(default=None, alias="startDate"),
    end_date: datetime | None = Query(default=None, alias="endDate"),
    period: str | None = None,
    customer: AuthenticatedCustomer = Depends(get_current_customer),
    service: AnalyticsService = Depends(get_analytics_service),
):
    """Get conversation length, satisfaction, intent and topic insights."""
    time_range = resolve_time_range(start_date, end_date, period)
    insights = await service.get_conversation_insights(customer.customer_id, chatbot_id, time_range)
    return _ok({"chatbot_id": chatbot_id, "time_range": time_range, "insights": insights})


@router.get("/chatbots/{chatbot_id}/performance")
async def get_performance_insights(
    chatbot_id: str,
    start_date: datetime | None = Query(default=None, alias="startDate"),
    end_date: datetime | None = Query(default=None, alias="endDate"),
    period: str | None = None,
    granularity: str = "day",
    customer: AuthenticatedCustomer = Depends(get_current_customer),
    service: AnalyticsService = Depends(get_analytics_service),
):
    """
    Get latency statistics and the performance trend.

    Args:
        granularity: Trend bucket width, day or hour
    """
    time_range = resolve_time_range(start_date, end_date, period)
    insights = await service.get_performance_insights(
        customer.customer_id, chatbot_id, time_range, granularity
    )
    return _ok({
        "chatbot_id": chatbot_id,
        "time_range": time_range,
        "granularity": granularity,
        **insights.model_dump(),
    })


@router.get("/chatbots/{chatbot_id}/conversations")
async def get_conversation_history(
    chatbot_id: str,
    page: int = 1,
    limit: int | None = None,
    search: str | None = None,
    start_date: datetime | None = Query(default=None, alias="startDate"),
    end_date: datetime | None = Query(default=None, alias="endDate"),
    min_satisfaction: int | None = Query(default=None, alias="minSatisfaction"),
    max_satisfaction: int | None = Query(default=None, alias="maxSatisfaction"),
    sort_by: str = Query(default="started_at", alias="sortBy"),
    sort_order: str = Query(default="desc", alias="sortOrder"),
    customer: AuthenticatedCustomer = Depends(get_current_customer),
    service: AnalyticsService = Depends(get_analytics_service),
):
    """
    Get paginated conversation history with messages and metrics.

    Pagination and filter values are validated by the service so that
    bad values are reported as VALIDATION_ERROR.
    """
    result = await service.get_conversation_history(
        customer.customer_id,
        chatbot_id,
        filters={
            "search": search,
            "start_date": start_date,
            "end_date": end_date,
            "min_satisfaction": min_satisfaction,
            "max_satisfaction": max_satisfaction,
        },
        pagination={
            "page": page,
            "limit": limit if limit is not None else get_settings().conversation_page_size_default,
        },
        sort={"field": sort_by, "direction": sort_order},
    )
    return _ok(result)


@router.put("/chatbots/{chatbot_id}/conversations/{conversation_id}/metrics")
async def update_conversation_metrics(
    chatbot_id: str,
    conversation_id: str,
    body: ConversationMetricsUpdate,
    customer: AuthenticatedCustomer = Depends(get_current_customer),
    service: AnalyticsService = Depends(get_analytics_service),
):
    """Record metrics for a conversation, creating its record on first use."""
    metrics = await service.update_conversation_metrics(
        customer.customer_id, chatbot_id, conversation_id, body
    )
    return _ok(metrics)


@router.get("/chatbots/{chatbot_id}/export")
@limiter.limit(export_rate_limit)
async def export_analytics(
    request: Request,
    chatbot_id: str,
    start_date: date | None = Query(default=None, alias="startDate"),
    end_date: date | None = Query(default=None, alias="endDate"),
    format: str = "json",
    customer: AuthenticatedCustomer = Depends(get_current_customer),
    service: AnalyticsService = Depends(get_analytics_service),
):
    """Export aggregate analytics, trends and satisfaction as JSON or CSV."""
    result = await service.export_analytics_data(
        customer.customer_id, chatbot_id, start_date, end_date, format
    )
    return StreamingResponse(
        iter([result.content]),
        media_type=result.media_type,
        headers={"Content-Disposition": f'attachment; filename="{result.filename}"'},
    )


@router.post("/chatbots/{chatbot_id}/generate")
@limiter.limit(per_minute_limit)
async def generate_analytics(
    request: Request,
    chatbot_id: str,
    body: GenerateAnalyticsRequest,
    customer: AuthenticatedCustomer = Depends(get_current_customer),
    service: AnalyticsService = Depends(get_analytics_service),
):
    """Regenerate daily snapshots for every day from startDate to endDate."""
    snapshots = await service.generate_analytics(
        customer.customer_id, chatbot_id, body.start_date, body.end_date
    )
    return _ok(
        GenerateAnalyticsResponse(
            chatbot_id=chatbot_id,
            generated_analytics=len(snapshots),
            analytics=snapshots,
        )
    )
