"""Export formatter tests."""

import json
from datetime import date

import pytest

from src.core.exceptions import ValidationError
from src.features.analytics.export import (
    ExportFormatter,
    _sanitize_csv_field,
    build_document,
    export_filename,
    from_csv,
    read_export,
    to_csv,
)
from src.features.analytics.models import (
    PerformanceStats,
    RollupAggregate,
    SatisfactionStats,
    SnapshotDelta,
)
from src.features.analytics.rollup import RollupManager

from tests.conftest import CHATBOT_ID, utc


@pytest.fixture
def analytics(store):
    store.add_sample(CHATBOT_ID, utc(2024, 3, 1, 9), 120.5, token_usage=40)
    store.add_sample(CHATBOT_ID, utc(2024, 3, 1, 10), 310.25, status_code=502, token_usage=0)
    store.add_sample(CHATBOT_ID, utc(2024, 3, 2, 23, 59), 99.125, token_usage=12)
    # Outside the exported days
    store.add_sample(CHATBOT_ID, utc(2024, 3, 3, 0), 5000)
    store.add_metrics("c1", CHATBOT_ID, user_satisfaction=4, created_at=utc(2024, 3, 1, 9))
    store.add_metrics("c2", CHATBOT_ID, user_satisfaction=5, created_at=utc(2024, 3, 2, 9))
    return store


async def seed_snapshots(store):
    rollups = RollupManager(store)
    await rollups.upsert_snapshot(
        CHATBOT_ID, date(2024, 3, 1), SnapshotDelta(total_conversations=3, total_messages=11, avg_conversation_length=3.6667)
    )
    await rollups.upsert_snapshot(
        CHATBOT_ID, date(2024, 3, 2), SnapshotDelta(total_conversations=1, total_messages=2, user_satisfaction_score=4.5)
    )


@pytest.mark.asyncio
async def test_json_export_sections(analytics):
    await seed_snapshots(analytics)

    payload = await ExportFormatter(analytics).export(CHATBOT_ID, date(2024, 3, 1), date(2024, 3, 2), "json")
    data = json.loads(payload)

    assert set(data) >= {"summary", "trends", "satisfaction"}
    assert data["summary"]["total_conversations"] == 4
    assert data["summary"]["total_requests"] == 3
    assert [p["bucket"] for p in data["trends"]] == ["2024-03-01", "2024-03-02"]
    assert data["satisfaction"]["total_ratings"] == 2


@pytest.mark.asyncio
async def test_csv_export_layout(analytics):
    payload = await ExportFormatter(analytics).export(CHATBOT_ID, date(2024, 3, 1), date(2024, 3, 2), "csv")
    lines = payload.decode("utf-8").splitlines()

    assert lines[0] == "summary"
    assert "satisfaction" in lines
    assert "bucket,average_response_time,request_count,error_rate,token_usage" in lines


@pytest.mark.asyncio
async def test_json_and_csv_carry_the_same_numbers(analytics):
    await seed_snapshots(analytics)
    formatter = ExportFormatter(analytics)

    as_json = await formatter.export(CHATBOT_ID, date(2024, 3, 1), date(2024, 3, 2), "json")
    as_csv = await formatter.export(CHATBOT_ID, date(2024, 3, 1), date(2024, 3, 2), "csv")

    assert read_export(as_json, "json") == read_export(as_csv, "csv")


@pytest.mark.asyncio
async def test_missing_or_inverted_dates(store):
    formatter = ExportFormatter(store)

    with pytest.raises(ValidationError):
        await formatter.export(CHATBOT_ID, None, date(2024, 3, 2), "json")
    with pytest.raises(ValidationError):
        await formatter.export(CHATBOT_ID, date(2024, 3, 2), date(2024, 3, 1), "json")



@pytest.mark.asyncio
async def test_range_longer_than_lookback(store):
    with pytest.raises(ValidationError, match="may not exceed"):
        await ExportFormatter(store).export(CHATBOT_ID, date(2000, 1, 1), date(2030, 1, 1), "json")


@pytest.mark.asyncio
async def test_unknown_format(store):
    with pytest.raises(ValidationError):
        await ExportFormatter(store).export(CHATBOT_ID, date(2024, 3, 1), date(2024, 3, 2), "xml")


@pytest.mark.asyncio
async def test_export_result_metadata(store):
    result = await ExportFormatter(store).export_result(CHATBOT_ID, date(2024, 3, 1), date(2024, 3, 2), "csv")

    assert result.media_type == "text/csv"
    assert result.filename == "analytics-bot-1-2024-03-01-2024-03-02.csv"


def test_filename_strips_header_characters():
    name = export_filename('bot"1\r\n', date(2024, 3, 1), date(2024, 3, 1), "json")
    assert name == "analytics-bot1-2024-03-01-2024-03-01.json"


def test_formula_cells_are_escaped():
    assert _sanitize_csv_field("=SUM(A1)") == "'=SUM(A1)"
    assert _sanitize_csv_field("plain") == "plain"
    assert _sanitize_csv_field(42) == 42
    assert _sanitize_csv_field("'=x") == "''=x"


def test_csv_keeps_leading_quote():
    document = build_document(
        "'=x",
        date(2024, 3, 1),
        date(2024, 3, 1),
        aggregate=RollupAggregate(),
        stats=PerformanceStats(),
        trends=[],
        satisfaction=SatisfactionStats(),
    )

    assert from_csv(to_csv(document)).chatbot_id == "'=x"
