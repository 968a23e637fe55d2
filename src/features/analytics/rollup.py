"""Daily analytics snapshots: merge rule, atomic upsert, range aggregation and regeneration."""

import logging
from datetime import date, datetime
from typing import Any, Iterable

from src.config import get_settings
from src.core.firestore import FirestoreClient
from src.features.conversations.models import ConversationMetrics
from src.utils.dates import day_bounds, day_key, iter_days, to_day, utcnow

from .insights import (
    merge_popular_queries,
    merge_response_categories,
    popular_queries,
    response_categories,
)
from .models import DailySnapshot, RollupAggregate, SnapshotDelta

logger = logging.getLogger(__name__)

# Summed across upserts
COUNT_FIELDS = ("total_conversations", "total_messages", "unique_users", "total_ratings")
# Replaced by the latest upsert that supplies a value
OVERWRITE_FIELDS = (
    "avg_conversation_length",
    "avg_response_time",
    "user_satisfaction_score",
    "popular_queries",
    "response_categories",
)


def snapshot_id(chatbot_id: str, day: date | datetime) -> str:
    """Composite document key of a (chatbot, day) snapshot."""
    return f"{chatbot_id}_{day_key(day)}"


def merge_snapshot(
    existing: DailySnapshot | None,
    chatbot_id: str,
    day: date | datetime,
    delta: SnapshotDelta,
    now: datetime | None = None,
) -> DailySnapshot:
    """
    Produce the snapshot that results from applying delta to existing.

    Count fields are added together. Rate and score fields take the delta's
    value when it has one, so the last writer of the day wins for them.
    The existing snapshot is left untouched.
    """
    now = now or utcnow()
    base = existing or DailySnapshot(chatbot_id=chatbot_id, date=to_day(day), created_at=now)

    changes: dict[str, Any] = {
        field: getattr(base, field) + getattr(delta, field) for field in COUNT_FIELDS
    }
    for field in OVERWRITE_FIELDS:
        value = getattr(delta, field)
        if value is not None:
            changes[field] = value
    changes["updated_at"] = now

    return base.model_copy(update=changes)


def snapshot_to_document(snapshot: DailySnapshot) -> dict[str, Any]:
    data = snapshot.model_dump()
    data["date"] = snapshot.date.isoformat()
    return data


def snapshot_from_document(data: dict[str, Any]) -> DailySnapshot:
    return DailySnapshot(**data)


def aggregate_snapshots(snapshots: Iterable[DailySnapshot]) -> RollupAggregate:
    """
    Sum counts and average per-day rates over a set of snapshots.

    Days with a satisfaction score of 0 had no ratings and are left out of
    the satisfaction average, unlike a plain mean over every stored day.
    Other rates are averaged over all days.
    """
    snapshots = list(snapshots)
    if not snapshots:
        return RollupAggregate()

    days = len(snapshots)
    rated = [s.user_satisfaction_score for s in snapshots if s.user_satisfaction_score > 0]

    return RollupAggregate(
        days=days,
        total_conversations=sum(s.total_conversations for s in snapshots),
        total_messages=sum(s.total_messages for s in snapshots),
        unique_users=sum(s.unique_users for s in snapshots),
        avg_conversation_length=sum(s.avg_conversation_length for s in snapshots) / days,
        avg_response_time=sum(s.avg_response_time for s in snapshots) / days,
        avg_satisfaction_score=sum(rated) / len(rated) if rated else 0.0,
        total_ratings=sum(s.total_ratings for s in snapshots),
        popular_queries=merge_popular_queries(s.popular_queries for s in snapshots),
        response_categories=merge_response_categories(s.response_categories for s in snapshots),
    )


class RollupManager:
    """Maintains one snapshot per chatbot and calendar day."""

    def __init__(self, firestore: FirestoreClient):
        self.firestore = firestore

    async def upsert_snapshot(
        self,
        chatbot_id: str,
        day: date | datetime,
        delta: SnapshotDelta,
    ) -> DailySnapshot:
        """
        Merge delta into the snapshot for the day of `day`.

        The read-merge-write runs in a single Firestore transaction on the
        composite key, so concurrent upserts never lose counts.
        """
        day = to_day(day)

        def merge(current: dict[str, Any] | None) -> dict[str, Any]:
            existing = snapshot_from_document(current) if current else None
            return snapshot_to_document(merge_snapshot(existing, chatbot_id, day, delta))

        data = await self.firestore.upsert_daily_snapshot(
            snapshot_id(chatbot_id, day),
            merge,
            attempts=get_settings().snapshot_write_attempts,
        )
        return snapshot_from_document(data)

    async def replace_snapshot(self, snapshot: DailySnapshot) -> DailySnapshot:
        await self.firestore.set_daily_snapshot(snapshot.key, snapshot_to_document(snapshot))
        return snapshot

    async def list_snapshots(
        self, chatbot_id: str, start: date | datetime, end: date | datetime
    ) -> list[DailySnapshot]:
        """Snapshots of the inclusive day range, oldest first."""
        records = await self.firestore.list_daily_snapshots(chatbot_id, day_key(start), day_key(end))
        return sorted((snapshot_from_document(r) for r in records), key=lambda s: s.date)

    async def get_aggregate(
        self, chatbot_id: str, start: date | datetime, end: date | datetime
    ) -> RollupAggregate:
        return aggregate_snapshots(await self.list_snapshots(chatbot_id, start, end))

    async def generate_daily_snapshot(self, chatbot_id: str, day: date | datetime) -> DailySnapshot:
        """
        Recompute a day's snapshot from conversations and replace the stored one.

        Regeneration overwrites instead of merging, so running it twice for
        the same day gives the same result.
        """
        day = to_day(day)
        start, end = day_bounds(day)

        conversations = await self.firestore.list_conversations(
            chatbot_id,
            bounds=[("started_at", ">=", start), ("started_at", "<", end)],
            order_by="started_at",
            direction="asc",
        )
        conversation_ids = [c["id"] for c in conversations]

        user_messages: list[str] = []
        assistant_messages: list[str] = []
        total_messages = 0
        for conversation_id in conversation_ids:
            for message in await self.firestore.get_messages(conversation_id):
                total_messages += 1
                if message.get("role") == "user":
                    user_messages.append(message.get("content") or "")
                elif message.get("role") == "assistant":
                    assistant_messages.append(message.get("content") or "")

        metrics = [
            ConversationMetrics(**record)
            for record in await self.firestore.get_metrics_for_conversations(conversation_ids)
        ] if conversation_ids else []

        response_times = [m.avg_response_time for m in metrics if m.avg_response_time and m.avg_response_time > 0]
        ratings = [m.user_satisfaction for m in metrics if m.user_satisfaction is not None]
        total_conversations = len(conversations)

        existing = await self.firestore.get_daily_snapshot(snapshot_id(chatbot_id, day))
        now = utcnow()

        snapshot = DailySnapshot(
            chatbot_id=chatbot_id,
            date=day,
            total_conversations=total_conversations,
            total_messages=total_messages,
            unique_users=len({c.get("session_id") for c in conversations if c.get("session_id")}),
            avg_conversation_length=total_messages / total_conversations if total_conversations else 0.0,
            avg_response_time=sum(response_times) / len(response_times) if response_times else 0.0,
            user_satisfaction_score=sum(ratings) / len(ratings) if ratings else 0.0,
            total_ratings=len(ratings),
            popular_queries=popular_queries(user_messages),
            response_categories=response_categories(assistant_messages),
            created_at=(existing or {}).get("created_at") or now,
            updated_at=now,
        )
        return await self.replace_snapshot(snapshot)

    async def batch_generate(
        self, chatbot_id: str, start: date | datetime, end: date | datetime
    ) -> list[DailySnapshot]:
        """Regenerate every day of the inclusive range; failing days are skipped."""
        results = []
        for day in iter_days(start, end):
            try:
                results.append(await self.generate_daily_snapshot(chatbot_id, day))
            except Exception:
                logger.exception("Failed to generate analytics for %s on %s", chatbot_id, day)

        logger.info(
            "Generated %d daily snapshots for chatbot %s (%s to %s)",
            len(results), chatbot_id, day_key(start), day_key(end),
        )
        return results
