"""
Content Similarity - deterministic text similarity between cards.

Cards are compared as bag-of-words term-frequency vectors over their front
and back text, scored with cosine similarity in numpy. Used by the card
selector's anti-clustering filter (threshold 0.6 by default).

References:
- Salton & McGill: vector space model for text retrieval
- Cosine similarity: measures angle between vectors (higher = more similar)
"""
from __future__ import annotations

import re
from collections import Counter
from functools import lru_cache
from typing import Iterable, Optional

import numpy as np

from uams.core.models import UnifiedCard


TOKEN_PATTERN = re.compile(r"[^\W_]+", re.UNICODE)

# Markup remnants from imported decks
HTML_TAG_PATTERN = re.compile(r"<[^>]+>")

# Distinct card texts kept tokenized at once
TOKEN_CACHE_SIZE = 4096


def tokenize(text: str) -> list[str]:
    """Lowercased word tokens with HTML tags stripped."""
    if not text:
        return []
    return TOKEN_PATTERN.findall(HTML_TAG_PATTERN.sub(" ", text).lower())


@lru_cache(maxsize=TOKEN_CACHE_SIZE)
def token_counts(text: str) -> Counter:
    """Term frequencies of ``text``. Callers must not mutate the result."""
    return Counter(tokenize(text))


def cosine_similarity(vec1: np.ndarray, vec2: np.ndarray) -> float:
    """Cosine similarity between two vectors (0.0 when either is all zeros)."""
    norm1 = np.linalg.norm(vec1)
    norm2 = np.linalg.norm(vec2)

    if norm1 == 0 or norm2 == 0:
        return 0.0

    return float(np.dot(vec1, vec2) / (norm1 * norm2))


class ContentSimilarity:
    """
    Bag-of-words cosine similarity over cached term frequencies.

    Token counts are cached by text in a bounded LRU, so an edited card is
    re-tokenized on the next comparison and long-running sessions do not
    grow the cache past ``TOKEN_CACHE_SIZE`` entries.
    """

    @staticmethod
    def _counts(card: UnifiedCard) -> Counter:
        return token_counts(card.text)

    def similarity(self, card1: UnifiedCard, card2: UnifiedCard) -> float:
        """Cosine similarity of the two cards' term-frequency vectors."""
        counts1 = self._counts(card1)
        counts2 = self._counts(card2)
        if not counts1 or not counts2:
            return 0.0

        vocabulary = sorted(set(counts1) | set(counts2))
        vec1 = np.array([counts1.get(term, 0) for term in vocabulary], dtype=float)
        vec2 = np.array([counts2.get(term, 0) for term in vocabulary], dtype=float)
        return cosine_similarity(vec1, vec2)

    def max_similarity(
        self, card: UnifiedCard, others: Iterable[Optional[UnifiedCard]]
    ) -> float:
        """Highest similarity between ``card`` and any of ``others`` (unknowns skipped)."""
        best = 0.0
        for other in others:
            if other is None or other.id == card.id:
                continue
            best = max(best, self.similarity(card, other))
        return best
