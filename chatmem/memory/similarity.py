"""Query/content relevance scoring.

The default scorer is a bag-of-words overlap: the fraction of query tokens
that also occur in the content. It does no stemming and no stop-word
removal, so "prefer" never matches "preferences". Anything implementing
:class:`Scorer` can replace it (e.g. an embedding similarity).
"""

from typing import Protocol


class Scorer(Protocol):
    def __call__(self, query: str, content: str) -> float: ...


def tokenize(text: str) -> list[str]:
    """Lower-case and split on runs of whitespace."""
    return text.lower().split()


def score(query: str, content: str) -> float:
    """Return the share of query tokens present in *content*, in [0, 1]."""
    query_tokens = tokenize(query)
    content_tokens = set(tokenize(content))
    common = sum(1 for token in query_tokens if token in content_tokens)
    return min(common / max(len(query_tokens), 1), 1.0)


class KeywordOverlapScorer:
    """:class:`Scorer` wrapper around :func:`score`."""

    def __call__(self, query: str, content: str) -> float:
        return score(query, content)
