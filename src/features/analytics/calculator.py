"""Latency percentiles, error rates and token usage over performance samples."""

import math
from collections import Counter
from datetime import datetime
from typing import Iterable

from src.utils.dates import ensure_utc

from .models import ErrorMessageCount, ErrorStats, PerformanceSample, PerformanceStats

MEDIAN = 0.5
P95 = 0.95
P99 = 0.99


def percentile(sorted_values: list[float], q: float) -> float:
    """
    Read quantile q from ascending values at index floor(n * q).

    No interpolation is done, so p95 and p99 of small sets are the maximum.
    """
    if not sorted_values:
        return 0.0
    index = min(math.floor(len(sorted_values) * q), len(sorted_values) - 1)
    return sorted_values[index]


def error_rate(error_count: int, total: int) -> float:
    """Percentage of failed requests; 0 when there were none."""
    if total == 0:
        return 0.0
    return error_count / total * 100


def in_window(
    sample: PerformanceSample,
    start: datetime | None = None,
    end: datetime | None = None,
) -> bool:
    if start and sample.timestamp < ensure_utc(start):
        return False
    if end and sample.timestamp >= ensure_utc(end):
        return False
    return True


def summarize(
    samples: Iterable[PerformanceSample],
    start: datetime | None = None,
    end: datetime | None = None,
) -> PerformanceStats:
    """
    Summarize samples falling in [start, end).

    Args:
        samples: Performance samples, in any order
        start: Inclusive lower bound (optional)
        end: Exclusive upper bound (optional)

    Returns:
        Mean, median, p95 and p99 latency, request count, error rate
        and token totals. Every value is zero for an empty set.
    """
    latencies: list[float] = []
    errors = 0
    tokens = 0

    for sample in samples:
        if not in_window(sample, start, end):
            continue
        latencies.append(sample.response_time)
        tokens += sample.token_usage
        if sample.is_error:
            errors += 1

    total = len(latencies)
    if total == 0:
        return PerformanceStats()

    latencies.sort()
    return PerformanceStats(
        average_response_time=sum(latencies) / total,
        median_response_time=percentile(latencies, MEDIAN),
        p95_response_time=percentile(latencies, P95),
        p99_response_time=percentile(latencies, P99),
        total_requests=total,
        error_rate=error_rate(errors, total),
        total_token_usage=tokens,
        average_token_usage=tokens / total,
    )


def error_breakdown(samples: Iterable[PerformanceSample], top: int = 10) -> ErrorStats:
    """Group failed samples by status code, endpoint and message."""
    by_status: Counter[int] = Counter()
    by_endpoint: Counter[str] = Counter()
    by_message: Counter[str] = Counter()

    for sample in samples:
        if not sample.is_error:
            continue
        by_status[sample.status_code] += 1
        if sample.endpoint:
            by_endpoint[sample.endpoint] += 1
        if sample.error_message:
            by_message[sample.error_message] += 1

    return ErrorStats(
        total_errors=sum(by_status.values()),
        errors_by_status_code=dict(by_status),
        errors_by_endpoint=dict(by_endpoint),
        common_errors=[
            ErrorMessageCount(message=message, count=count)
            for message, count in by_message.most_common(top)
        ],
    )
