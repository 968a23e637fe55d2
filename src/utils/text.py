"""Text matching and tokenizing helpers."""

import re

_NON_WORD = re.compile(r"[^\w\s]")


def message_matches(search: str | None, content: str | None) -> bool:
    """Case-insensitive substring match; an empty search matches everything."""
    if not search:
        return True
    return search.lower() in (content or "").lower()


def query_words(content: str, min_length: int = 4) -> list[str]:
    """Lowercased words of a message with punctuation stripped."""
    words = _NON_WORD.sub("", content.lower()).split()
    return [word for word in words if len(word) >= min_length]
