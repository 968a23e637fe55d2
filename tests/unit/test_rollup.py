"""Daily rollup manager tests."""

import asyncio
from datetime import date

import pytest

from src.core.exceptions import DatastoreError
from src.features.analytics.models import DailySnapshot, PopularQuery, SnapshotDelta
from src.features.analytics.rollup import (
    RollupManager,
    aggregate_snapshots,
    merge_snapshot,
    snapshot_id,
)

from tests.conftest import CHATBOT_ID, utc

DAY = date(2024, 3, 1)


def test_snapshot_id_is_chatbot_and_day():
    assert snapshot_id("bot-1", utc(2024, 3, 1, 23, 59)) == "bot-1_2024-03-01"


def test_merge_adds_counts_and_overwrites_rates():
    first = merge_snapshot(None, CHATBOT_ID, DAY, SnapshotDelta(total_conversations=1))
    second = merge_snapshot(
        first, CHATBOT_ID, DAY, SnapshotDelta(total_conversations=1, avg_response_time=900)
    )

    assert second.total_conversations == 2
    assert second.avg_response_time == 900
    # The input snapshot is not modified
    assert first.total_conversations == 1
    assert first.avg_response_time == 0


def test_merge_keeps_rates_not_supplied():
    existing = DailySnapshot(chatbot_id=CHATBOT_ID, date=DAY, avg_response_time=450, total_messages=3)
    merged = merge_snapshot(existing, CHATBOT_ID, DAY, SnapshotDelta(total_messages=2))
    assert merged.avg_response_time == 450
    assert merged.total_messages == 5


def test_aggregate_sums_counts_and_averages_rated_days():
    snapshots = [
        DailySnapshot(
            chatbot_id=CHATBOT_ID,
            date=date(2024, 3, 1),
            total_conversations=2,
            total_messages=10,
            avg_response_time=100,
            user_satisfaction_score=4,
            total_ratings=2,
            popular_queries=[PopularQuery(query="refund", count=3)],
        ),
        DailySnapshot(
            chatbot_id=CHATBOT_ID,
            date=date(2024, 3, 2),
            total_conversations=3,
            total_messages=6,
            avg_response_time=300,
            popular_queries=[PopularQuery(query="refund", count=1), PopularQuery(query="hours", count=2)],
        ),
    ]

    aggregate = aggregate_snapshots(snapshots)

    assert aggregate.days == 2
    assert aggregate.total_conversations == 5
    assert aggregate.total_messages == 16
    assert aggregate.avg_response_time == 200
    assert aggregate.avg_satisfaction_score == 4
    assert aggregate.total_ratings == 2
    assert [(q.query, q.count) for q in aggregate.popular_queries] == [("refund", 4), ("hours", 2)]


def test_aggregate_of_nothing():
    assert aggregate_snapshots([]).total_conversations == 0



def test_aggregate_without_rated_days():
    """With no rated day the satisfaction average is 0."""
    snapshots = [
        DailySnapshot(chatbot_id=CHATBOT_ID, date=date(2024, 3, day), total_conversations=1)
        for day in (1, 2)
    ]

    aggregate = aggregate_snapshots(snapshots)

    assert aggregate.avg_satisfaction_score == 0
    assert aggregate.total_conversations == 2


@pytest.mark.asyncio
async def test_sequential_upserts_accumulate(store):
    rollups = RollupManager(store)

    await rollups.upsert_snapshot(CHATBOT_ID, DAY, SnapshotDelta(total_conversations=1))
    result = await rollups.upsert_snapshot(
        CHATBOT_ID, utc(2024, 3, 1, 18), SnapshotDelta(total_conversations=1, avg_response_time=900)
    )

    assert result.total_conversations == 2
    assert result.avg_response_time == 900
    assert list(store.snapshots) == ["bot-1_2024-03-01"]


@pytest.mark.asyncio
async def test_concurrent_upserts_do_not_lose_counts(store):
    rollups = RollupManager(store)

    await asyncio.gather(*(
        rollups.upsert_snapshot(CHATBOT_ID, DAY, SnapshotDelta(total_conversations=1, total_messages=2))
        for _ in range(10)
    ))

    stored = store.snapshots["bot-1_2024-03-01"]
    assert stored["total_conversations"] == 10
    assert stored["total_messages"] == 20


@pytest.mark.asyncio
async def test_upsert_retries_once_on_conflict(store):
    store.conflicting_writes = 1

    result = await RollupManager(store).upsert_snapshot(CHATBOT_ID, DAY, SnapshotDelta(total_conversations=1))

    assert result.total_conversations == 1


@pytest.mark.asyncio
async def test_upsert_gives_up_after_configured_attempts(store):
    store.conflicting_writes = 5

    with pytest.raises(DatastoreError):
        await RollupManager(store).upsert_snapshot(CHATBOT_ID, DAY, SnapshotDelta(total_conversations=1))

    assert store.snapshots == {}


def seed_day(store):
    store.add_conversation("c1", CHATBOT_ID, utc(2024, 3, 1, 9), session_id="s1")
    store.add_message("c1", "user", "What are your opening hours?", utc(2024, 3, 1, 9, 0, 1))
    store.add_message("c1", "assistant", "Happy to help with that.", utc(2024, 3, 1, 9, 0, 2))
    store.add_conversation("c2", CHATBOT_ID, utc(2024, 3, 1, 15), session_id="s2")
    store.add_message("c2", "user", "Where is my order? Order 123", utc(2024, 3, 1, 15, 0, 1))
    store.add_message("c2", "assistant", "Your order ships today.", utc(2024, 3, 1, 15, 0, 2))
    store.add_message("c2", "user", "thanks", utc(2024, 3, 1, 15, 0, 3))
    store.add_metrics("c1", CHATBOT_ID, user_satisfaction=5, avg_response_time=800)
    store.add_metrics("c2", CHATBOT_ID, user_satisfaction=3, avg_response_time=400)
    # Outside the day
    store.add_conversation("c3", CHATBOT_ID, utc(2024, 3, 2, 0))


@pytest.mark.asyncio
async def test_generate_daily_snapshot(store):
    seed_day(store)

    snapshot = await RollupManager(store).generate_daily_snapshot(CHATBOT_ID, DAY)

    assert snapshot.total_conversations == 2
    assert snapshot.total_messages == 5
    assert snapshot.unique_users == 2
    assert snapshot.avg_conversation_length == 2.5
    assert snapshot.avg_response_time == 600
    assert snapshot.user_satisfaction_score == 4
    assert snapshot.total_ratings == 2
    assert snapshot.popular_queries[0].query == "order"
    assert {c.category for c in snapshot.response_categories} == {"Support", "Transactional"}


@pytest.mark.asyncio
async def test_generation_is_idempotent(store):
    seed_day(store)
    rollups = RollupManager(store)

    first = await rollups.generate_daily_snapshot(CHATBOT_ID, DAY)
    second = await rollups.generate_daily_snapshot(CHATBOT_ID, DAY)

    assert second.total_conversations == first.total_conversations
    assert second.total_messages == first.total_messages
    assert second.created_at == first.created_at


@pytest.mark.asyncio
async def test_batch_generate_covers_every_day(store):
    seed_day(store)

    snapshots = await RollupManager(store).batch_generate(CHATBOT_ID, date(2024, 3, 1), date(2024, 3, 3))

    assert [s.date for s in snapshots] == [date(2024, 3, 1), date(2024, 3, 2), date(2024, 3, 3)]
    assert [s.total_conversations for s in snapshots] == [2, 1, 0]
