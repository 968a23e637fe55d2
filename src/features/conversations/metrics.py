"""Per-conversation metrics: upsert-by-conversation and rating statistics."""

import logging
from typing import Iterable

from src.core.exceptions import NotFoundError
from src.core.firestore import FirestoreClient
from src.features.analytics.calculator import MEDIAN, percentile
from src.features.analytics.models import LengthStats, SatisfactionStats
from src.utils.dates import ensure_utc

from .models import ConversationMetrics, ConversationMetricsUpdate

logger = logging.getLogger(__name__)


def satisfaction_stats(records: Iterable[ConversationMetrics]) -> SatisfactionStats:
    """Rating distribution over records that carry a 1..5 satisfaction."""
    distribution = {1: 0, 2: 0, 3: 0, 4: 0, 5: 0}
    total_score = 0

    for record in records:
        if record.user_satisfaction is None:
            continue
        distribution[record.user_satisfaction] += 1
        total_score += record.user_satisfaction

    total_ratings = sum(distribution.values())
    return SatisfactionStats(
        average=total_score / total_ratings if total_ratings else 0.0,
        total_ratings=total_ratings,
        distribution=distribution,
    )


def length_stats(records: Iterable[ConversationMetrics]) -> LengthStats:
    """Average and floor-index median message count."""
    counts = sorted(record.message_count for record in records)
    if not counts:
        return LengthStats()

    return LengthStats(
        average_length=sum(counts) / len(counts),
        median_length=percentile(counts, MEDIAN),
        total_conversations=len(counts),
    )


class ConversationMetricsTracker:
    """Creates and updates conversation metrics records."""

    def __init__(self, firestore: FirestoreClient):
        self.firestore = firestore

    async def get_metrics(self, conversation_id: str) -> ConversationMetrics | None:
        data = await self.firestore.get_conversation_metrics(conversation_id)
        return ConversationMetrics(**data) if data else None

    async def upsert_metrics(
        self,
        conversation_id: str,
        chatbot_id: str,
        update: ConversationMetricsUpdate,
    ) -> ConversationMetrics:
        """
        Write the supplied fields to the conversation's metrics record.

        The record is created on first use; later calls only overwrite the
        fields they carry, so a conversation never gets two records.
        """
        data = await self.firestore.upsert_conversation_metrics(
            conversation_id=conversation_id,
            chatbot_id=chatbot_id,
            fields=update.supplied_fields(),
        )
        return ConversationMetrics(**data)

    async def track_conversation(
        self,
        conversation_id: str,
        chatbot_id: str,
        update: ConversationMetricsUpdate | None = None,
    ) -> ConversationMetrics:
        """Derive message count and duration from the conversation, then upsert."""
        conversation = await self.firestore.get_conversation(conversation_id)
        if not conversation or conversation.get("chatbot_id") != chatbot_id:
            raise NotFoundError("Conversation not found")

        messages = await self.firestore.get_messages(conversation_id)
        derived = {"message_count": len(messages)}

        started_at = conversation.get("started_at")
        ended_at = conversation.get("ended_at")
        if started_at and ended_at:
            duration = (ensure_utc(ended_at) - ensure_utc(started_at)).total_seconds()
            if duration >= 0:
                derived["duration_seconds"] = duration
            else:
                logger.warning("Conversation %s ends before it starts; duration not derived", conversation_id)

        supplied = update.model_dump(exclude_none=True) if update else {}
        merged = ConversationMetricsUpdate(**{**derived, **supplied})

        logger.debug("Tracking metrics for conversation %s", conversation_id)
        return await self.upsert_metrics(conversation_id, chatbot_id, merged)

    async def list_metrics(self, chatbot_id: str, start=None, end=None) -> list[ConversationMetrics]:
        records = await self.firestore.list_conversation_metrics(chatbot_id, start, end)
        return [ConversationMetrics(**record) for record in records]
