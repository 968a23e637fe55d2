"""Analytics service tests."""

from datetime import date, timedelta

import pytest

from src.core.exceptions import NotFoundError, ValidationError
from src.features.analytics.models import PerformanceSampleCreate, SnapshotDelta
from src.features.analytics.service import resolve_time_range
from src.utils.dates import utcnow

from tests.conftest import CHATBOT_ID, CUSTOMER_ID, OTHER_CHATBOT_ID, OTHER_CUSTOMER_ID, utc


def test_explicit_dates_win_over_period():
    time_range = resolve_time_range(utc(2024, 3, 1), utc(2024, 3, 8), "90d")
    assert time_range.start_date == utc(2024, 3, 1)
    assert time_range.end_date == utc(2024, 3, 8)


def test_single_date_falls_back_to_period():
    now = utc(2024, 6, 15)
    time_range = resolve_time_range(utc(2024, 3, 1), None, "7d", now=now)
    assert time_range.start_date == now - timedelta(days=7)


def test_time_range_validation():
    with pytest.raises(ValidationError):
        resolve_time_range(utc(2024, 3, 8), utc(2024, 3, 1))
    with pytest.raises(ValidationError):
        resolve_time_range(utc(2022, 1, 1), utc(2024, 1, 1))


@pytest.mark.asyncio
async def test_ownership_is_checked_before_reading(service):
    time_range = resolve_time_range(period="7d")

    with pytest.raises(NotFoundError, match="Chatbot not found or access denied"):
        await service.get_dashboard_metrics(CUSTOMER_ID, OTHER_CHATBOT_ID, time_range)
    with pytest.raises(NotFoundError):
        await service.get_performance_insights(CUSTOMER_ID, "missing", time_range)


@pytest.mark.asyncio
async def test_dashboard_combines_rollups_and_samples(service, store):
    today = utcnow()
    await service.record_daily_event(CHATBOT_ID, today, SnapshotDelta(total_conversations=2, total_messages=7))
    await service.record_daily_event(
        CHATBOT_ID, today, SnapshotDelta(total_conversations=1, avg_response_time=900, user_satisfaction_score=4)
    )
    await service.record_performance_sample(
        CHATBOT_ID, PerformanceSampleCreate(response_time=250, timestamp=today - timedelta(minutes=5))
    )

    metrics = await service.get_dashboard_metrics(CUSTOMER_ID, CHATBOT_ID, resolve_time_range(period="7d"))

    assert metrics.total_conversations == 3
    assert metrics.total_messages == 7
    assert metrics.average_response_time == 900
    assert metrics.user_satisfaction_score == 4
    assert metrics.performance.total_requests == 1
    assert metrics.performance.average_response_time == 250
    assert len(metrics.conversation_trends) == 1


@pytest.mark.asyncio
async def test_performance_insights_hourly(service, store):
    store.add_sample(CHATBOT_ID, utc(2024, 3, 1, 9, 10), 100)
    store.add_sample(CHATBOT_ID, utc(2024, 3, 1, 11, 10), 300, status_code=500)
    time_range = resolve_time_range(utc(2024, 3, 1), utc(2024, 3, 2))

    insights = await service.get_performance_insights(CUSTOMER_ID, CHATBOT_ID, time_range, "hour")

    assert [p.bucket for p in insights.performance_trends] == ["2024-03-01T09:00", "2024-03-01T11:00"]
    assert insights.performance_stats.error_rate == 50
    assert insights.error_stats.total_errors == 1

    with pytest.raises(ValidationError):
        await service.get_performance_insights(CUSTOMER_ID, CHATBOT_ID, time_range, "minute")


@pytest.mark.asyncio
async def test_conversation_insights(service, store):
    created = utc(2024, 3, 1, 12)
    store.add_metrics("c1", CHATBOT_ID, message_count=4, user_intent="billing", topics_discussed=["invoice"],
                      goal_achieved=True, user_satisfaction=5, created_at=created)
    store.add_metrics("c2", CHATBOT_ID, message_count=2, user_intent="billing", topics_discussed=["invoice", "refund"],
                      goal_achieved=False, created_at=created)
    store.add_metrics("c3", CHATBOT_ID, message_count=6, user_intent="sales", created_at=created)

    insights = await service.get_conversation_insights(
        CUSTOMER_ID, CHATBOT_ID, resolve_time_range(utc(2024, 3, 1), utc(2024, 3, 2))
    )

    assert insights.total_conversations == 3
    assert insights.average_length == 4
    assert insights.median_length == 4
    assert insights.satisfaction.total_ratings == 1
    assert [(i.label, i.count) for i in insights.top_intents] == [("billing", 2), ("sales", 1)]
    assert insights.top_topics[0].label == "invoice"
    assert insights.goal_achievement_rate == 50


@pytest.mark.asyncio
async def test_conversation_history_rejects_bad_pagination(service):
    with pytest.raises(ValidationError):
        await service.get_conversation_history(CUSTOMER_ID, CHATBOT_ID, pagination={"page": 0})
    with pytest.raises(ValidationError):
        await service.get_conversation_history(CUSTOMER_ID, CHATBOT_ID, pagination={"limit": 101})
    with pytest.raises(ValidationError):
        await service.get_conversation_history(CUSTOMER_ID, CHATBOT_ID, sort={"direction": "sideways"})


@pytest.mark.asyncio
async def test_generate_analytics_requires_dates(service):
    with pytest.raises(ValidationError):
        await service.generate_analytics(CUSTOMER_ID, CHATBOT_ID, None, date(2024, 3, 1))

    snapshots = await service.generate_analytics(CUSTOMER_ID, CHATBOT_ID, date(2024, 3, 1), date(2024, 3, 2))
    assert len(snapshots) == 2



@pytest.mark.asyncio
async def test_generate_analytics_caps_the_range(service, store):
    with pytest.raises(ValidationError, match="may not exceed"):
        await service.generate_analytics(CUSTOMER_ID, CHATBOT_ID, date(2000, 1, 1), date(2030, 1, 1))
    assert store.snapshots == {}


@pytest.mark.asyncio
async def test_export_caps_the_range(service):
    with pytest.raises(ValidationError):
        await service.export_analytics_data(CUSTOMER_ID, CHATBOT_ID, date(2000, 1, 1), date(2030, 1, 1))


@pytest.mark.asyncio
async def test_user_summary_tolerates_failing_chatbot(service, store):
    store.add_chatbot("bot-3", CUSTOMER_ID, name="Broken Bot")
    store.broken_chatbots.add("bot-3")
    await service.record_daily_event(CHATBOT_ID, utcnow(), SnapshotDelta(total_conversations=5, total_messages=9))

    summary = await service.get_user_summary(CUSTOMER_ID, "30d")

    assert summary.summary.total_chatbots == 2
    assert summary.summary.total_conversations == 5
    broken = next(s for s in summary.chatbot_summaries if s.chatbot_id == "bot-3")
    assert broken.total_conversations == 0


@pytest.mark.asyncio
async def test_user_summary_without_chatbots(service):
    summary = await service.get_user_summary("nobody")
    assert summary.summary.total_chatbots == 0
    assert summary.chatbot_summaries == []


@pytest.mark.asyncio
async def test_cleanup_old_samples(service, store):
    store.add_sample(CHATBOT_ID, utcnow() - timedelta(days=120), 100)
    store.add_sample(CHATBOT_ID, utcnow() - timedelta(days=1), 100)

    result = await service.cleanup_old_samples()

    assert result.deleted == 1
    assert result.older_than_days == 90
    assert len(store.samples) == 1

    with pytest.raises(ValidationError):
        await service.cleanup_old_samples(0)


@pytest.mark.asyncio
async def test_other_customer_cannot_export(service):
    with pytest.raises(NotFoundError):
        await service.export_analytics_data(OTHER_CUSTOMER_ID, CHATBOT_ID, date(2024, 3, 1), date(2024, 3, 2))
