"""Conversation history and conversation metrics models."""

from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, model_validator


class SentimentScore(BaseModel):
    """Sentiment sampled during a conversation."""

    timestamp: datetime
    score: float = Field(..., ge=-1, le=1)  # -1 negative, 0 neutral, 1 positive
    confidence: float = Field(..., ge=0, le=1)


class ConversationMetrics(BaseModel):
    """Per-conversation metrics record, keyed by conversation id."""

    conversation_id: str
    chatbot_id: str
    message_count: int = Field(default=0, ge=0)
    duration_seconds: float | None = None
    avg_response_time: float | None = None
    user_satisfaction: int | None = Field(default=None, ge=1, le=5)
    user_intent: str | None = None
    goal_achieved: bool | None = None
    sentiment_analysis: list[SentimentScore] = Field(default_factory=list)
    topics_discussed: list[str] = Field(default_factory=list)
    created_at: datetime | None = None
    updated_at: datetime | None = None


class ConversationMetricsUpdate(BaseModel):
    """Fields supplied to an upsert; unset fields keep their stored value."""

    model_config = ConfigDict(populate_by_name=True)

    message_count: int | None = Field(default=None, ge=0, alias="messageCount")
    duration_seconds: float | None = Field(default=None, ge=0, alias="durationSeconds")
    avg_response_time: float | None = Field(default=None, ge=0, alias="avgResponseTime")
    user_satisfaction: int | None = Field(default=None, ge=1, le=5, alias="userSatisfaction")
    user_intent: str | None = Field(default=None, alias="userIntent")
    goal_achieved: bool | None = Field(default=None, alias="goalAchieved")
    sentiment_analysis: list[SentimentScore] | None = Field(default=None, alias="sentimentAnalysis")
    topics_discussed: list[str] | None = Field(default=None, alias="topicsDiscussed")

    def supplied_fields(self) -> dict[str, Any]:
        """Fields carrying a value, ready to be written to the store."""
        return self.model_dump(exclude_none=True)


class ConversationMessage(BaseModel):
    """Message attached to a conversation in history results."""

    id: str | None = None
    role: str
    content: str
    timestamp: datetime | None = None
    metadata: dict[str, Any] | None = None


class ConversationFilters(BaseModel):
    """Optional filters of a conversation history query."""

    search: str | None = None
    start_date: datetime | None = None
    end_date: datetime | None = None
    min_satisfaction: int | None = Field(default=None, ge=1, le=5)
    max_satisfaction: int | None = Field(default=None, ge=1, le=5)

    @model_validator(mode="after")
    def _check_ranges(self):
        if self.start_date and self.end_date and self.end_date < self.start_date:
            raise ValueError("endDate must not be before startDate")
        if (
            self.min_satisfaction is not None
            and self.max_satisfaction is not None
            and self.max_satisfaction < self.min_satisfaction
        ):
            raise ValueError("maxSatisfaction must not be below minSatisfaction")
        return self

    @property
    def has_satisfaction_bound(self) -> bool:
        return self.min_satisfaction is not None or self.max_satisfaction is not None


class Pagination(BaseModel):
    """1-based page request."""

    page: int = Field(default=1, ge=1)
    limit: int = Field(default=20, ge=1, le=100)

    @property
    def offset(self) -> int:
        return (self.page - 1) * self.limit


SORT_FIELDS = {
    "started_at": "started_at",
    "startedAt": "started_at",
    "ended_at": "ended_at",
    "endedAt": "ended_at",
}


class ConversationSort(BaseModel):
    """Sort order applied by the datastore."""

    field: str = "started_at"
    direction: Literal["asc", "desc"] = "desc"

    @model_validator(mode="after")
    def _normalize_field(self):
        if self.field not in SORT_FIELDS:
            raise ValueError(f"Cannot sort conversations by '{self.field}'")
        self.field = SORT_FIELDS[self.field]
        return self


class PageInfo(BaseModel):
    page: int
    limit: int
    total: int
    pages: int


class ConversationHistoryItem(BaseModel):
    """Conversation joined with its messages and metrics."""

    id: str
    session_id: str | None = None
    started_at: datetime | None = None
    ended_at: datetime | None = None
    user_info: dict[str, Any] | None = None
    messages: list[ConversationMessage] = Field(default_factory=list)
    metrics: ConversationMetrics | None = None


class AppliedFilters(BaseModel):
    search: str | None = None
    start_date: datetime | None = None
    end_date: datetime | None = None
    min_satisfaction: int | None = None
    max_satisfaction: int | None = None
    sort_by: str
    sort_order: str


class ConversationPage(BaseModel):
    """Result of a conversation history query."""

    conversations: list[ConversationHistoryItem]
    pagination: PageInfo
    filters: AppliedFilters
