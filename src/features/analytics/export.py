"""Analytics export as JSON or sectioned CSV."""

import asyncio
import csv
import io
import re
from datetime import date, datetime

from src.config import get_settings
from src.core.exceptions import ValidationError
from src.core.firestore import FirestoreClient
from src.features.conversations.metrics import ConversationMetricsTracker, satisfaction_stats
from src.utils.dates import day_bounds, to_day

from .calculator import summarize
from .models import (
    ExportDocument,
    ExportFormat,
    ExportResult,
    ExportSummary,
    Granularity,
    PerformanceStats,
    RollupAggregate,
    SatisfactionStats,
    TrendPoint,
)
from .rollup import RollupManager
from .trends import TrendBuilder, build_trend

MEDIA_TYPES = {
    ExportFormat.JSON: "application/json",
    ExportFormat.CSV: "text/csv",
}

SUMMARY_SECTION = "summary"
SATISFACTION_SECTION = "satisfaction"
TRENDS_SECTION = "trends"
TREND_COLUMNS = ["bucket", "average_response_time", "request_count", "error_rate", "token_usage"]

FORMULA_PREFIXES = ("=", "@", "+", "-", "\t", "\r")
ESCAPED_PREFIXES = FORMULA_PREFIXES + ("'",)


def _sanitize_csv_field(value):
    """
    Prevent CSV injection by escaping formula characters.

    A leading quote is escaped too, so that reading the cell back can
    always drop exactly one quote the writer added.
    """
    if isinstance(value, str) and value and value[0] in ESCAPED_PREFIXES:
        return "'" + value
    return value


def _unsanitize_csv_field(value: str) -> str:
    if len(value) > 1 and value[0] == "'" and value[1] in ESCAPED_PREFIXES:
        return value[1:]
    return value


def parse_format(format: ExportFormat | str) -> ExportFormat:
    try:
        return ExportFormat(format)
    except ValueError:
        raise ValidationError(f"Unsupported export format: {format}. Use json or csv")


def validate_range(start: date | datetime | None, end: date | datetime | None) -> tuple[date, date]:
    """Return the inclusive day range, rejecting inverted or overlong spans."""
    if start is None or end is None:
        raise ValidationError("startDate and endDate are required for export")
    start_day, end_day = to_day(start), to_day(end)
    if end_day < start_day:
        raise ValidationError("endDate must not be before startDate")
    max_days = get_settings().analytics_max_lookback_days
    if (end_day - start_day).days > max_days:
        raise ValidationError(f"Time range may not exceed {max_days} days")
    return start_day, end_day


def export_filename(
    chatbot_id: str,
    start: date | datetime,
    end: date | datetime,
    format: ExportFormat | str,
) -> str:
    # Sanitize to keep the Content-Disposition header well-formed
    safe_id = re.sub(r"[^a-zA-Z0-9_-]", "", chatbot_id)
    return f"analytics-{safe_id}-{to_day(start).isoformat()}-{to_day(end).isoformat()}.{parse_format(format).value}"


def build_document(
    chatbot_id: str,
    start: date,
    end: date,
    aggregate: RollupAggregate,
    stats: PerformanceStats,
    trends: list[TrendPoint],
    satisfaction: SatisfactionStats,
) -> ExportDocument:
    summary = ExportSummary(
        total_conversations=aggregate.total_conversations,
        total_messages=aggregate.total_messages,
        unique_users=aggregate.unique_users,
        avg_conversation_length=aggregate.avg_conversation_length,
        avg_satisfaction_score=aggregate.avg_satisfaction_score,
        total_ratings=aggregate.total_ratings,
        **stats.model_dump(),
    )
    return ExportDocument(
        chatbot_id=chatbot_id,
        start_date=start,
        end_date=end,
        summary=summary,
        trends=trends,
        satisfaction=satisfaction,
    )


def to_csv(document: ExportDocument) -> str:
    """
    Write an export as a sectioned CSV.

    Each section starts with a row holding only its name and ends with a
    blank row. Summary and satisfaction are key/value rows; the trend
    section is a table with a header row.
    """
    output = io.StringIO()
    writer = csv.writer(output)

    writer.writerow([SUMMARY_SECTION])
    writer.writerow(["chatbot_id", _sanitize_csv_field(document.chatbot_id)])
    writer.writerow(["start_date", document.start_date.isoformat()])
    writer.writerow(["end_date", document.end_date.isoformat()])
    for key, value in document.summary.model_dump().items():
        writer.writerow([key, value])
    writer.writerow([])

    writer.writerow([SATISFACTION_SECTION])
    writer.writerow(["average", document.satisfaction.average])
    writer.writerow(["total_ratings", document.satisfaction.total_ratings])
    for rating, count in sorted(document.satisfaction.distribution.items()):
        writer.writerow([f"rating_{rating}", count])
    writer.writerow([])

    writer.writerow([TRENDS_SECTION])
    writer.writerow(TREND_COLUMNS)
    for point in document.trends:
        writer.writerow([
            _sanitize_csv_field(point.bucket),
            point.average_response_time,
            point.request_count,
            point.error_rate,
            point.token_usage,
        ])

    return output.getvalue()


def from_csv(payload: str) -> ExportDocument:
    """Parse a sectioned CSV written by to_csv."""
    header: dict[str, str] = {}
    summary: dict[str, str] = {}
    satisfaction: dict[str, str] = {}
    distribution: dict[int, str] = {}
    trends: list[dict[str, str]] = []

    section = None
    for row in csv.reader(io.StringIO(payload)):
        if not row:
            continue
        if len(row) == 1 and row[0] in (SUMMARY_SECTION, SATISFACTION_SECTION, TRENDS_SECTION):
            section = row[0]
            continue

        if section == SUMMARY_SECTION:
            key, value = row[0], _unsanitize_csv_field(row[1])
            if key in ("chatbot_id", "start_date", "end_date"):
                header[key] = value
            else:
                summary[key] = value
        elif section == SATISFACTION_SECTION:
            key, value = row[0], row[1]
            if key.startswith("rating_"):
                distribution[int(key.removeprefix("rating_"))] = value
            else:
                satisfaction[key] = value
        elif section == TRENDS_SECTION:
            if row == TREND_COLUMNS:
                continue
            point = dict(zip(TREND_COLUMNS, row))
            point["bucket"] = _unsanitize_csv_field(point["bucket"])
            trends.append(point)
        else:
            raise ValidationError("Malformed analytics export: data outside a section")

    return ExportDocument(
        **header,
        summary=ExportSummary(**summary),
        trends=[TrendPoint(**point) for point in trends],
        satisfaction=SatisfactionStats(**satisfaction, distribution=distribution),
    )


def encode(document: ExportDocument, format: ExportFormat | str) -> bytes:
    if parse_format(format) == ExportFormat.JSON:
        return document.model_dump_json(indent=2).encode("utf-8")
    return to_csv(document).encode("utf-8")


def read_export(payload: bytes | str, format: ExportFormat | str) -> ExportDocument:
    """Parse an export of either encoding back into a document."""
    if isinstance(payload, bytes):
        payload = payload.decode("utf-8")
    if parse_format(format) == ExportFormat.JSON:
        return ExportDocument.model_validate_json(payload)
    return from_csv(payload)


class ExportFormatter:
    """Collects a chatbot's analytics for a day range and serializes them."""

    def __init__(self, firestore: FirestoreClient):
        self.firestore = firestore
        self.rollups = RollupManager(firestore)
        self.trends = TrendBuilder(firestore)
        self.metrics = ConversationMetricsTracker(firestore)

    async def collect(
        self, chatbot_id: str, start: date | datetime | None, end: date | datetime | None
    ) -> ExportDocument:
        start_day, end_day = validate_range(start, end)
        # Both days are included in the export
        window_start, _ = day_bounds(start_day)
        _, window_end = day_bounds(end_day)

        aggregate, metrics = await asyncio.gather(
            self.rollups.get_aggregate(chatbot_id, start_day, end_day),
            self.metrics.list_metrics(chatbot_id, window_start, window_end),
        )
        samples = list(self.trends.iter_samples(chatbot_id, window_start, window_end))

        return build_document(
            chatbot_id,
            start_day,
            end_day,
            aggregate=aggregate,
            stats=summarize(samples),
            trends=build_trend(samples, Granularity.DAY),
            satisfaction=satisfaction_stats(metrics),
        )

    async def export(
        self,
        chatbot_id: str,
        start: date | datetime | None,
        end: date | datetime | None,
        format: ExportFormat | str = ExportFormat.JSON,
    ) -> bytes:
        export_format = parse_format(format)
        document = await self.collect(chatbot_id, start, end)
        return encode(document, export_format)

    async def export_result(
        self,
        chatbot_id: str,
        start: date | datetime | None,
        end: date | datetime | None,
        format: ExportFormat | str = ExportFormat.JSON,
    ) -> ExportResult:
        export_format = parse_format(format)
        content = await self.export(chatbot_id, start, end, export_format)
        return ExportResult(
            content=content,
            media_type=MEDIA_TYPES[export_format],
            filename=export_filename(chatbot_id, start, end, export_format),
        )
