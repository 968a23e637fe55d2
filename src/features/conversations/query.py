"""Filtered, searchable and paginated conversation history."""

import math
from typing import Any

from src.core.firestore import Bound, FirestoreClient
from src.utils.dates import ensure_utc

from .models import (
    AppliedFilters,
    ConversationFilters,
    ConversationHistoryItem,
    ConversationMessage,
    ConversationMetrics,
    ConversationPage,
    ConversationSort,
    PageInfo,
    Pagination,
)


def date_bounds(filters: ConversationFilters) -> list[Bound]:
    """
    Datastore predicates on started_at for the date filters.

    This is the only part of the filter set that the total count uses;
    search and satisfaction narrow the page but not the total.
    """
    bounds: list[Bound] = []
    if filters.start_date:
        bounds.append(("started_at", ">=", ensure_utc(filters.start_date)))
    if filters.end_date:
        bounds.append(("started_at", "<=", ensure_utc(filters.end_date)))
    return bounds


def satisfaction_matches(filters: ConversationFilters, metrics: ConversationMetrics | None) -> bool:
    """Whether a conversation passes the satisfaction bounds; unrated ones never do."""
    if not filters.has_satisfaction_bound:
        return True
    if metrics is None or metrics.user_satisfaction is None:
        return False
    if filters.min_satisfaction is not None and metrics.user_satisfaction < filters.min_satisfaction:
        return False
    if filters.max_satisfaction is not None and metrics.user_satisfaction > filters.max_satisfaction:
        return False
    return True


def _message_from_record(record: dict[str, Any]) -> ConversationMessage:
    return ConversationMessage(
        id=record.get("id"),
        role=record.get("role", ""),
        content=record.get("content", ""),
        timestamp=record.get("created_at") or record.get("timestamp"),
        metadata=record.get("metadata"),
    )


class ConversationQueryEngine:
    """Runs conversation history queries against the store."""

    def __init__(self, firestore: FirestoreClient):
        self.firestore = firestore

    async def find_conversations(
        self,
        chatbot_id: str,
        filters: ConversationFilters | None = None,
        pagination: Pagination | None = None,
        sort: ConversationSort | None = None,
    ) -> ConversationPage:
        """
        Find a page of conversations for a chatbot.

        Steps:
        1. Page of conversations in the date range, sorted and paged by the store
        2. Keep those whose metrics pass the satisfaction bounds
        3. Keep those with a message containing the search text
        4. Attach messages and metrics
        5. Count conversations in the date range for the pagination block
        """
        filters = filters or ConversationFilters()
        pagination = pagination or Pagination()
        sort = sort or ConversationSort()
        bounds = date_bounds(filters)

        conversations = await self.firestore.list_conversations(
            chatbot_id,
            bounds=bounds,
            order_by=sort.field,
            direction=sort.direction,
            offset=pagination.offset,
            limit=pagination.limit,
        )

        conversation_ids = [c["id"] for c in conversations]
        metrics_by_id: dict[str, ConversationMetrics] = {}
        if conversation_ids:
            for record in await self.firestore.get_metrics_for_conversations(conversation_ids):
                metrics = ConversationMetrics(**record)
                metrics_by_id[metrics.conversation_id] = metrics

        if filters.has_satisfaction_bound:
            conversations = [
                c for c in conversations
                if satisfaction_matches(filters, metrics_by_id.get(c["id"]))
            ]

        if filters.search and conversations:
            matching = await self.firestore.find_conversations_with_text(
                [c["id"] for c in conversations], filters.search
            )
            conversations = [c for c in conversations if c["id"] in matching]

        items = []
        for conversation in conversations:
            messages = await self.firestore.get_messages(conversation["id"])
            items.append(
                ConversationHistoryItem(
                    id=conversation["id"],
                    session_id=conversation.get("session_id"),
                    started_at=conversation.get("started_at"),
                    ended_at=conversation.get("ended_at"),
                    user_info=conversation.get("user_info"),
                    messages=[_message_from_record(m) for m in messages],
                    metrics=metrics_by_id.get(conversation["id"]),
                )
            )

        total = await self.firestore.count_conversations(chatbot_id, bounds)

        return ConversationPage(
            conversations=items,
            pagination=PageInfo(
                page=pagination.page,
                limit=pagination.limit,
                total=total,
                pages=math.ceil(total / pagination.limit),
            ),
            filters=AppliedFilters(
                search=filters.search,
                start_date=filters.start_date,
                end_date=filters.end_date,
                min_satisfaction=filters.min_satisfaction,
                max_satisfaction=filters.max_satisfaction,
                sort_by=sort.field,
                sort_order=sort.direction,
            ),
        )
