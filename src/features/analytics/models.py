"""Analytics data models."""

import datetime as dt
from datetime import date, datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

from src.utils.dates import ensure_utc


class Granularity(str, Enum):
    """Trend bucket width."""

    DAY = "day"
    HOUR = "hour"


class ExportFormat(str, Enum):
    """Supported export encodings."""

    JSON = "json"
    CSV = "csv"


class TimeRange(BaseModel):
    """Resolved reporting window."""

    start_date: datetime
    end_date: datetime


class PerformanceSample(BaseModel):
    """One measurement per generated reply."""

    model_config = ConfigDict(frozen=True)

    id: str | None = None
    chatbot_id: str
    timestamp: datetime
    response_time: float  # milliseconds
    token_usage: int = 0
    model_version: str | None = None
    endpoint: str | None = None
    status_code: int = 200
    error_message: str | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)

    @field_validator("timestamp")
    @classmethod
    def _timestamp_utc(cls, value: datetime) -> datetime:
        return ensure_utc(value)

    @field_validator("token_usage", "status_code", mode="before")
    @classmethod
    def _none_to_default(cls, value, info):
        if value is None:
            return 200 if info.field_name == "status_code" else 0
        return value

    @property
    def is_error(self) -> bool:
        return self.status_code >= 400


class PerformanceSampleCreate(BaseModel):
    """Incoming sample from the messaging pipeline."""

    timestamp: datetime | None = None
    response_time: float = Field(..., ge=0)
    token_usage: int = Field(default=0, ge=0)
    model_version: str | None = None
    endpoint: str | None = None
    status_code: int = Field(default=200, ge=100, le=599)
    error_message: str | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)


class PerformanceStats(BaseModel):
    """Latency, error and token summary for a sample set."""

    average_response_time: float = 0.0
    median_response_time: float = 0.0
    p95_response_time: float = 0.0
    p99_response_time: float = 0.0
    total_requests: int = 0
    error_rate: float = 0.0
    total_token_usage: int = 0
    average_token_usage: float = 0.0


class ErrorMessageCount(BaseModel):
    message: str
    count: int


class ErrorStats(BaseModel):
    """Breakdown of failed requests."""

    total_errors: int = 0
    errors_by_status_code: dict[int, int] = Field(default_factory=dict)
    errors_by_endpoint: dict[str, int] = Field(default_factory=dict)
    common_errors: list[ErrorMessageCount] = Field(default_factory=list)


class TrendPoint(BaseModel):
    """One time bucket of a performance trend."""

    bucket: str
    average_response_time: float
    request_count: int
    error_rate: float
    token_usage: int


class ConversationTrendPoint(BaseModel):
    date: str
    conversations: int
    messages: int


class SatisfactionTrendPoint(BaseModel):
    date: str
    satisfaction: float


class PopularQuery(BaseModel):
    """Frequently used word in user messages."""

    query: str
    count: int = Field(ge=0)


class ResponseCategory(BaseModel):
    """Share of assistant replies in a category."""

    category: str
    count: int = Field(ge=0)
    percentage: float = Field(ge=0, le=100)


class DailySnapshot(BaseModel):
    """Aggregated analytics for one chatbot on one calendar day."""

    model_config = ConfigDict(frozen=True)

    chatbot_id: str
    date: dt.date
    total_conversations: int = 0
    total_messages: int = 0
    unique_users: int = 0
    avg_conversation_length: float = 0.0
    avg_response_time: float = 0.0
    user_satisfaction_score: float = 0.0
    total_ratings: int = 0
    popular_queries: list[PopularQuery] = Field(default_factory=list)
    response_categories: list[ResponseCategory] = Field(default_factory=list)
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @property
    def key(self) -> str:
        return f"{self.chatbot_id}_{self.date.isoformat()}"


class SnapshotDelta(BaseModel):
    """
    Incremental change applied to a daily snapshot.

    Count fields are added to the stored totals. Rate and score fields
    replace the stored value when set and leave it untouched when None.
    """

    total_conversations: int = Field(default=0, ge=0)
    total_messages: int = Field(default=0, ge=0)
    unique_users: int = Field(default=0, ge=0)
    total_ratings: int = Field(default=0, ge=0)

    avg_conversation_length: float | None = Field(default=None, ge=0)
    avg_response_time: float | None = Field(default=None, ge=0)
    user_satisfaction_score: float | None = Field(default=None, ge=0, le=5)
    popular_queries: list[PopularQuery] | None = None
    response_categories: list[ResponseCategory] | None = None


class RollupAggregate(BaseModel):
    """Daily snapshots combined over a date range."""

    days: int = 0
    total_conversations: int = 0
    total_messages: int = 0
    unique_users: int = 0
    avg_conversation_length: float = 0.0
    avg_response_time: float = 0.0
    avg_satisfaction_score: float = 0.0
    total_ratings: int = 0
    popular_queries: list[PopularQuery] = Field(default_factory=list)
    response_categories: list[ResponseCategory] = Field(default_factory=list)


class PerformanceOverview(BaseModel):
    average_response_time: float
    p95_response_time: float
    error_rate: float
    total_requests: int


class DashboardMetrics(BaseModel):
    """Dashboard summary for one chatbot."""

    total_conversations: int
    total_messages: int
    average_response_time: float
    user_satisfaction_score: float
    total_ratings: int
    average_conversation_length: float = 0.0
    popular_queries: list[PopularQuery] = Field(default_factory=list)
    response_categories: list[ResponseCategory] = Field(default_factory=list)
    conversation_trends: list[ConversationTrendPoint] = Field(default_factory=list)
    satisfaction_trends: list[SatisfactionTrendPoint] = Field(default_factory=list)
    performance: PerformanceOverview | None = None


class PerformanceInsights(BaseModel):
    performance_stats: PerformanceStats
    performance_trends: list[TrendPoint]
    error_stats: ErrorStats | None = None


class SatisfactionStats(BaseModel):
    """Distribution of 1..5 ratings."""

    average: float = 0.0
    total_ratings: int = 0
    distribution: dict[int, int] = Field(
        default_factory=lambda: {1: 0, 2: 0, 3: 0, 4: 0, 5: 0}
    )


class LengthStats(BaseModel):
    average_length: float = 0.0
    median_length: float = 0.0
    total_conversations: int = 0


class LabelCount(BaseModel):
    label: str
    count: int


class ConversationInsights(BaseModel):
    total_conversations: int
    average_length: float
    median_length: float
    satisfaction: SatisfactionStats
    top_intents: list[LabelCount]
    top_topics: list[LabelCount]
    goal_achievement_rate: float


class ChatbotSummary(BaseModel):
    chatbot_id: str
    chatbot_name: str
    total_conversations: int = 0
    total_messages: int = 0
    average_response_time: float = 0.0
    user_satisfaction_score: float = 0.0
    total_ratings: int = 0


class UserSummaryTotals(BaseModel):
    total_chatbots: int = 0
    total_conversations: int = 0
    total_messages: int = 0
    avg_satisfaction_score: float = 0.0


class UserAnalyticsSummary(BaseModel):
    time_range: TimeRange | None = None
    summary: UserSummaryTotals
    chatbot_summaries: list[ChatbotSummary]


class ExportSummary(BaseModel):
    """Aggregate section of an export."""

    total_conversations: int = 0
    total_messages: int = 0
    unique_users: int = 0
    avg_conversation_length: float = 0.0
    avg_satisfaction_score: float = 0.0
    total_ratings: int = 0
    average_response_time: float = 0.0
    median_response_time: float = 0.0
    p95_response_time: float = 0.0
    p99_response_time: float = 0.0
    total_requests: int = 0
    error_rate: float = 0.0
    total_token_usage: int = 0
    average_token_usage: float = 0.0


class ExportDocument(BaseModel):
    """Everything written to an analytics export."""

    chatbot_id: str
    start_date: date
    end_date: date
    summary: ExportSummary
    trends: list[TrendPoint]
    satisfaction: SatisfactionStats


class ExportResult(BaseModel):
    """Serialized export ready to be sent to a client."""

    content: bytes
    media_type: str
    filename: str


class GenerateAnalyticsRequest(BaseModel):
    """Body of the batch rollup trigger."""

    model_config = ConfigDict(populate_by_name=True)

    start_date: datetime | None = Field(default=None, alias="startDate")
    end_date: datetime | None = Field(default=None, alias="endDate")


class GenerateAnalyticsResponse(BaseModel):
    chatbot_id: str
    generated_analytics: int
    analytics: list[DailySnapshot]


class CleanupResult(BaseModel):
    """Result of a retention cleanup run."""

    deleted: int
    older_than_days: int
