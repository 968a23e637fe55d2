"""Time-bucketed trend series for charts."""

from collections import defaultdict
from datetime import datetime
from typing import Iterable

from src.core.firestore import FirestoreClient
from src.utils.dates import bucket_key

from .calculator import error_rate, in_window
from .models import (
    ConversationTrendPoint,
    DailySnapshot,
    Granularity,
    PerformanceSample,
    SatisfactionTrendPoint,
    TrendPoint,
)


def build_trend(
    samples: Iterable[PerformanceSample],
    granularity: Granularity | str = Granularity.DAY,
) -> list[TrendPoint]:
    """
    Group samples into day or hour buckets.

    Buckets come out in ascending order, one per key. Buckets without
    samples are not emitted, so callers get a sparse series.
    """
    granularity = Granularity(granularity)
    buckets = defaultdict(lambda: {"latency": 0.0, "count": 0, "errors": 0, "tokens": 0})

    for sample in samples:
        bucket = buckets[bucket_key(sample.timestamp, granularity.value)]
        bucket["latency"] += sample.response_time
        bucket["count"] += 1
        bucket["tokens"] += sample.token_usage
        if sample.is_error:
            bucket["errors"] += 1

    return [
        TrendPoint(
            bucket=key,
            average_response_time=stats["latency"] / stats["count"],
            request_count=stats["count"],
            error_rate=error_rate(stats["errors"], stats["count"]),
            token_usage=stats["tokens"],
        )
        for key, stats in sorted(buckets.items())
    ]


def conversation_trend(snapshots: Iterable[DailySnapshot]) -> list[ConversationTrendPoint]:
    """Daily conversation and message counts."""
    return [
        ConversationTrendPoint(
            date=snapshot.date.isoformat(),
            conversations=snapshot.total_conversations,
            messages=snapshot.total_messages,
        )
        for snapshot in sorted(snapshots, key=lambda s: s.date)
    ]


def satisfaction_trend(snapshots: Iterable[DailySnapshot]) -> list[SatisfactionTrendPoint]:
    """Daily satisfaction, skipping days nobody rated."""
    return [
        SatisfactionTrendPoint(
            date=snapshot.date.isoformat(),
            satisfaction=snapshot.user_satisfaction_score,
        )
        for snapshot in sorted(snapshots, key=lambda s: s.date)
        if snapshot.user_satisfaction_score > 0
    ]


class TrendBuilder:
    """Builds performance trends from stored samples."""

    def __init__(self, firestore: FirestoreClient):
        self.firestore = firestore

    def iter_samples(
        self,
        chatbot_id: str,
        start: datetime | None = None,
        end: datetime | None = None,
    ) -> Iterable[PerformanceSample]:
        """Stream samples of a chatbot in [start, end) as models."""
        for data in self.firestore.stream_performance_samples(chatbot_id, start, end):
            sample = PerformanceSample(**data)
            if in_window(sample, start, end):
                yield sample

    async def build_trend(
        self,
        chatbot_id: str,
        start: datetime,
        end: datetime,
        granularity: Granularity | str = Granularity.DAY,
    ) -> list[TrendPoint]:
        return build_trend(self.iter_samples(chatbot_id, start, end), granularity)
