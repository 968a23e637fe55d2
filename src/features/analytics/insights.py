"""Content-derived insights: popular queries, reply categories, intents and topics."""

from collections import Counter
from typing import Iterable

from src.features.conversations.models import ConversationMetrics
from src.utils.text import query_words

from .models import LabelCount, PopularQuery, ResponseCategory

TOP_N = 10

# Checked in order; the first matching category wins
RESPONSE_CATEGORY_KEYWORDS = {
    "Informational": ("information", "details", "about"),
    "Support": ("help", "support", "assist"),
    "Transactional": ("order", "purchase", "payment"),
    "Conversational": ("hello", "how are you", "thanks"),
}
OTHER_CATEGORY = "Other"


def popular_queries(user_messages: Iterable[str], top: int = TOP_N) -> list[PopularQuery]:
    """Most frequent words (4+ letters) across user messages."""
    counts: Counter[str] = Counter()
    for content in user_messages:
        counts.update(query_words(content))
    return [PopularQuery(query=word, count=count) for word, count in counts.most_common(top)]


def categorize_response(content: str) -> str:
    text = content.lower()
    for category, keywords in RESPONSE_CATEGORY_KEYWORDS.items():
        if any(keyword in text for keyword in keywords):
            return category
    return OTHER_CATEGORY


def _categories_from_counts(counts: Counter[str]) -> list[ResponseCategory]:
    total = sum(counts.values())
    return [
        ResponseCategory(
            category=category,
            count=count,
            percentage=count / total * 100 if total else 0.0,
        )
        for category, count in counts.most_common()
        if count > 0
    ]


def response_categories(assistant_messages: Iterable[str]) -> list[ResponseCategory]:
    """Keyword classification of assistant replies, largest category first."""
    return _categories_from_counts(Counter(categorize_response(c) for c in assistant_messages))


def merge_popular_queries(
    groups: Iterable[list[PopularQuery]], top: int = TOP_N
) -> list[PopularQuery]:
    """Combine per-day popular queries by summing their counts."""
    counts: Counter[str] = Counter()
    for queries in groups:
        for item in queries:
            counts[item.query] += item.count
    return [PopularQuery(query=query, count=count) for query, count in counts.most_common(top)]


def merge_response_categories(groups: Iterable[list[ResponseCategory]]) -> list[ResponseCategory]:
    """Combine per-day categories and recompute their percentages."""
    counts: Counter[str] = Counter()
    for categories in groups:
        for item in categories:
            counts[item.category] += item.count
    return _categories_from_counts(counts)


def top_intents(records: Iterable[ConversationMetrics], top: int = TOP_N) -> list[LabelCount]:
    counts = Counter(record.user_intent for record in records if record.user_intent)
    return [LabelCount(label=label, count=count) for label, count in counts.most_common(top)]


def top_topics(records: Iterable[ConversationMetrics], top: int = TOP_N) -> list[LabelCount]:
    counts: Counter[str] = Counter()
    for record in records:
        counts.update(record.topics_discussed)
    return [LabelCount(label=label, count=count) for label, count in counts.most_common(top)]


def goal_achievement_rate(records: Iterable[ConversationMetrics]) -> float:
    """Percentage of conversations with a known outcome that reached their goal."""
    outcomes = [record.goal_achieved for record in records if record.goal_achieved is not None]
    if not outcomes:
        return 0.0
    return sum(1 for achieved in outcomes if achieved) / len(outcomes) * 100
