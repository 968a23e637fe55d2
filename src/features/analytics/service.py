"""Analytics service: ownership checks and per-request orchestration."""

import asyncio
import logging
from datetime import date, datetime, timedelta

from fastapi import Depends
from pydantic import ValidationError as PydanticValidationError

from src.config import get_settings
from src.core.exceptions import NotFoundError, ValidationError
from src.core.firestore import FirestoreClient, get_firestore_client
from src.features.conversations.metrics import (
    ConversationMetricsTracker,
    length_stats,
    satisfaction_stats,
)
from src.features.conversations.models import (
    ConversationFilters,
    ConversationMetrics,
    ConversationMetricsUpdate,
    ConversationPage,
    ConversationSort,
    Pagination,
)
from src.features.conversations.query import ConversationQueryEngine
from src.utils.dates import ensure_utc, resolve_period, utcnow

from .calculator import error_breakdown, summarize
from .export import ExportFormatter, validate_range
from .insights import goal_achievement_rate, top_intents, top_topics
from .models import (
    ChatbotSummary,
    CleanupResult,
    ConversationInsights,
    DailySnapshot,
    DashboardMetrics,
    ExportFormat,
    ExportResult,
    Granularity,
    PerformanceInsights,
    PerformanceOverview,
    PerformanceSample,
    PerformanceSampleCreate,
    SnapshotDelta,
    TimeRange,
    UserAnalyticsSummary,
    UserSummaryTotals,
)
from .rollup import RollupManager, aggregate_snapshots
from .trends import TrendBuilder, build_trend, conversation_trend, satisfaction_trend

logger = logging.getLogger(__name__)


def _first_error(exc: PydanticValidationError) -> str:
    error = exc.errors()[0]
    location = ".".join(str(part) for part in error.get("loc", ()))
    return f"{location}: {error['msg']}" if location else error["msg"]


def resolve_time_range(
    start_date: datetime | None = None,
    end_date: datetime | None = None,
    period: str | None = None,
    now: datetime | None = None,
) -> TimeRange:
    """
    Resolve the reporting window of a request.

    Explicit dates win when both are given; otherwise the named period is
    measured back from now. The span may not exceed the configured lookback.
    """
    settings = get_settings()

    if start_date and end_date:
        start, end = ensure_utc(start_date), ensure_utc(end_date)
        if end < start:
            raise ValidationError("endDate must not be before startDate")
    else:
        start, end = resolve_period(period or settings.analytics_default_period, now)

    if end - start > timedelta(days=settings.analytics_max_lookback_days):
        raise ValidationError(
            f"Time range may not exceed {settings.analytics_max_lookback_days} days"
        )
    return TimeRange(start_date=start, end_date=end)


class AnalyticsService:
    """Service for analytics operations."""

    def __init__(self, firestore: FirestoreClient):
        self.firestore = firestore
        self.rollups = RollupManager(firestore)
        self.trends = TrendBuilder(firestore)
        self.metrics = ConversationMetricsTracker(firestore)
        self.conversations = ConversationQueryEngine(firestore)
        self.exports = ExportFormatter(firestore)

    async def verify_ownership(self, customer_id: str, chatbot_id: str) -> dict:
        """Return the chatbot when it belongs to the customer."""
        chatbot = await self.firestore.get_chatbot(chatbot_id)
        if not chatbot or chatbot.get("customer_id") != customer_id:
            raise NotFoundError("Chatbot not found or access denied")
        return chatbot

    async def _snapshots(self, chatbot_id: str, time_range: TimeRange) -> list[DailySnapshot]:
        return await self.rollups.list_snapshots(
            chatbot_id, time_range.start_date, time_range.end_date
        )

    async def _samples(self, chatbot_id: str, time_range: TimeRange) -> list[PerformanceSample]:
        return list(
            self.trends.iter_samples(chatbot_id, time_range.start_date, time_range.end_date)
        )

    async def _metrics(self, chatbot_id: str, time_range: TimeRange) -> list[ConversationMetrics]:
        return await self.metrics.list_metrics(
            chatbot_id, time_range.start_date, time_range.end_date
        )

    async def _dashboard(self, chatbot_id: str, time_range: TimeRange) -> DashboardMetrics:
        snapshots, samples = await asyncio.gather(
            self._snapshots(chatbot_id, time_range),
            self._samples(chatbot_id, time_range),
        )
        aggregate = aggregate_snapshots(snapshots)
        stats = summarize(samples)

        return DashboardMetrics(
            total_conversations=aggregate.total_conversations,
            total_messages=aggregate.total_messages,
            average_response_time=aggregate.avg_response_time,
            user_satisfaction_score=aggregate.avg_satisfaction_score,
            total_ratings=aggregate.total_ratings,
            average_conversation_length=aggregate.avg_conversation_length,
            popular_queries=aggregate.popular_queries,
            response_categories=aggregate.response_categories,
            conversation_trends=conversation_trend(snapshots),
            satisfaction_trends=satisfaction_trend(snapshots),
            performance=PerformanceOverview(
                average_response_time=stats.average_response_time,
                p95_response_time=stats.p95_response_time,
                error_rate=stats.error_rate,
                total_requests=stats.total_requests,
            ),
        )

    async def get_dashboard_metrics(
        self, customer_id: str, chatbot_id: str, time_range: TimeRange
    ) -> DashboardMetrics:
        await self.verify_ownership(customer_id, chatbot_id)
        return await self._dashboard(chatbot_id, time_range)

    async def get_performance_insights(
        self,
        customer_id: str,
        chatbot_id: str,
        time_range: TimeRange,
        granularity: Granularity | str = Granularity.DAY,
    ) -> PerformanceInsights:
        """Latency statistics, a trend at the requested granularity and an error breakdown."""
        try:
            granularity = Granularity(granularity)
        except ValueError:
            raise ValidationError(f"Unsupported granularity: {granularity}. Use day or hour")

        await self.verify_ownership(customer_id, chatbot_id)
        samples = await self._samples(chatbot_id, time_range)

        return PerformanceInsights(
            performance_stats=summarize(samples),
            performance_trends=build_trend(samples, granularity),
            error_stats=error_breakdown(samples),
        )

    async def get_conversation_insights(
        self, customer_id: str, chatbot_id: str, time_range: TimeRange
    ) -> ConversationInsights:
        await self.verify_ownership(customer_id, chatbot_id)
        records = await self._metrics(chatbot_id, time_range)

        lengths = length_stats(records)
        return ConversationInsights(
            total_conversations=lengths.total_conversations,
            average_length=lengths.average_length,
            median_length=lengths.median_length,
            satisfaction=satisfaction_stats(records),
            top_intents=top_intents(records),
            top_topics=top_topics(records),
            goal_achievement_rate=goal_achievement_rate(records),
        )

    async def get_conversation_history(
        self,
        customer_id: str,
        chatbot_id: str,
        filters: ConversationFilters | dict | None = None,
        pagination: Pagination | dict | None = None,
        sort: ConversationSort | dict | None = None,
    ) -> ConversationPage:
        """
        Page through a chatbot's conversations.

        Filters, pagination and sort may be passed as plain dicts; they are
        validated before anything is read from the store.
        """
        try:
            if not isinstance(filters, ConversationFilters):
                filters = ConversationFilters(**(filters or {}))
            if not isinstance(pagination, Pagination):
                pagination = Pagination(**(pagination or {}))
            if not isinstance(sort, ConversationSort):
                sort = ConversationSort(**(sort or {}))
        except PydanticValidationError as e:
            raise ValidationError(_first_error(e)) from e

        await self.verify_ownership(customer_id, chatbot_id)
        return await self.conversations.find_conversations(chatbot_id, filters, pagination, sort)

    async def update_conversation_metrics(
        self,
        customer_id: str,
        chatbot_id: str,
        conversation_id: str,
        update: ConversationMetricsUpdate,
    ) -> ConversationMetrics:
        await self.verify_ownership(customer_id, chatbot_id)
        return await self.metrics.track_conversation(conversation_id, chatbot_id, update)

    async def export_analytics_data(
        self,
        customer_id: str,
        chatbot_id: str,
        start: date | datetime | None,
        end: date | datetime | None,
        format: ExportFormat | str = ExportFormat.JSON,
    ) -> ExportResult:
        await self.verify_ownership(customer_id, chatbot_id)
        return await self.exports.export_result(chatbot_id, start, end, format)

    async def generate_analytics(
        self,
        customer_id: str,
        chatbot_id: str,
        start: date | datetime | None,
        end: date | datetime | None,
    ) -> list[DailySnapshot]:
        """Regenerate the daily snapshots of an inclusive day range."""
        await self.verify_ownership(customer_id, chatbot_id)

        if not start or not end:
            raise ValidationError("Start date and end date are required")
        start_day, end_day = validate_range(start, end)

        return await self.rollups.batch_generate(chatbot_id, start_day, end_day)

    async def get_user_summary(
        self, customer_id: str, period: str | None = None
    ) -> UserAnalyticsSummary:
        """
        Summarize every chatbot of a customer over a named period.

        A chatbot whose metrics cannot be read contributes zeros instead of
        failing the whole summary.
        """
        chatbots = await self.firestore.list_chatbots_for_customer(customer_id)
        if not chatbots:
            return UserAnalyticsSummary(summary=UserSummaryTotals(), chatbot_summaries=[])

        time_range = resolve_time_range(period=period)

        async def summarize_chatbot(chatbot: dict) -> ChatbotSummary:
            chatbot_id = chatbot["id"]
            name = chatbot.get("name", "")
            try:
                metrics = await self._dashboard(chatbot_id, time_range)
            except Exception:
                logger.exception("Error getting metrics for chatbot %s", chatbot_id)
                return ChatbotSummary(chatbot_id=chatbot_id, chatbot_name=name)

            return ChatbotSummary(
                chatbot_id=chatbot_id,
                chatbot_name=name,
                total_conversations=metrics.total_conversations,
                total_messages=metrics.total_messages,
                average_response_time=metrics.average_response_time,
                user_satisfaction_score=metrics.user_satisfaction_score,
                total_ratings=metrics.total_ratings,
            )

        summaries = await asyncio.gather(*(summarize_chatbot(c) for c in chatbots))

        return UserAnalyticsSummary(
            time_range=time_range,
            summary=UserSummaryTotals(
                total_chatbots=len(chatbots),
                total_conversations=sum(s.total_conversations for s in summaries),
                total_messages=sum(s.total_messages for s in summaries),
                avg_satisfaction_score=sum(s.user_satisfaction_score for s in summaries) / len(summaries),
            ),
            chatbot_summaries=list(summaries),
        )

    async def record_performance_sample(
        self, chatbot_id: str, sample: PerformanceSampleCreate
    ) -> PerformanceSample:
        """Store the measurement of one generated reply."""
        data = sample.model_dump()
        data["chatbot_id"] = chatbot_id
        data["timestamp"] = ensure_utc(sample.timestamp) if sample.timestamp else utcnow()
        stored = await self.firestore.create_performance_sample(data)
        return PerformanceSample(**stored)

    async def record_daily_event(
        self, chatbot_id: str, day: date | datetime, delta: SnapshotDelta
    ) -> DailySnapshot:
        """Fold an incremental change into the chatbot's snapshot for that day."""
        return await self.rollups.upsert_snapshot(chatbot_id, day, delta)

    async def cleanup_old_samples(self, older_than_days: int | None = None) -> CleanupResult:
        """Delete performance samples older than the retention window."""
        if older_than_days is None:
            older_than_days = get_settings().performance_retention_days
        if older_than_days < 1:
            raise ValidationError("olderThanDays must be at least 1")

        cutoff = utcnow() - timedelta(days=older_than_days)
        deleted = await self.firestore.delete_performance_samples_before(cutoff)
        logger.info("Deleted %d performance samples older than %s", deleted, cutoff.isoformat())
        return CleanupResult(deleted=deleted, older_than_days=older_than_days)


def get_analytics_service(
    firestore: FirestoreClient = Depends(get_firestore_client),
) -> AnalyticsService:
    """Get analytics service instance."""
    return AnalyticsService(firestore=firestore)
