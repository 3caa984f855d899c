"""Query normalization and versioned cache-key construction."""

from __future__ import annotations

# Tokens that do not change what a search query resolves to.
FILLER_WORDS = frozenset(
    {
        "a",
        "an",
        "the",
        "for",
        "with",
        "and",
        "or",
        "to",
        "me",
        "i",
        "want",
        "need",
        "looking",
        "please",
        "can",
        "you",
        "suggest",
        "recommend",
    }
)

DEFAULT_MAX_KEY_LENGTH = 200


def normalize_query(query: str | None, max_length: int = DEFAULT_MAX_KEY_LENGTH) -> str:
    """
    Reduce a free-text query to a canonical cache key fragment.

    Lowercases, trims, drops filler tokens and sorts what remains, so
    "games for 4 players" and "4 players games" share a key. Queries that
    are blank or consist only of filler normalize to "".
    """
    if not query or not query.strip():
        return ""

    words = sorted(w for w in query.lower().split() if w not in FILLER_WORDS)
    return "_".join(words)[:max_length]


def build_cache_key(domain: str, environment: str, version: str, normalized_key: str) -> str:
    """``{domain}:{environment}:{version}:{normalized_key}``; bumping version orphans old entries."""
    return f"{domain}:{environment}:{version}:{normalized_key}"
