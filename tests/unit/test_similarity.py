"""
Unit tests for bag-of-words content similarity.
"""
from dataclasses import replace

import numpy as np
import pytest

from uams.delivery.similarity import (
    TOKEN_CACHE_SIZE,
    ContentSimilarity,
    cosine_similarity,
    token_counts,
    tokenize,
)


class TestTokenize:
    def test_lowercases_and_strips_markup(self):
        assert tokenize("<b>Mitral</b> Valve") == ["mitral", "valve"]

    def test_empty(self):
        assert tokenize("") == []


class TestCosine:
    def test_zero_vector(self):
        assert cosine_similarity(np.zeros(3), np.ones(3)) == 0.0

    def test_parallel_vectors(self):
        assert cosine_similarity(np.array([1.0, 2.0]), np.array([2.0, 4.0])) == pytest.approx(1.0)


class TestContentSimilarity:
    def test_identical_text(self, make_card):
        sim = ContentSimilarity()
        a = make_card("a", front_content="krebs cycle", back_content="mitochondria")
        b = make_card("b", front_content="Krebs cycle", back_content="mitochondria")
        assert sim.similarity(a, b) == pytest.approx(1.0)

    def test_disjoint_text(self, make_card):
        sim = ContentSimilarity()
        a = make_card("a", front_content="krebs cycle", back_content="")
        b = make_card("b", front_content="french revolution", back_content="")
        assert sim.similarity(a, b) == 0.0

    def test_empty_card(self, make_card):
        sim = ContentSimilarity()
        a = make_card("a", front_content="", back_content="")
        assert sim.similarity(a, make_card("b")) == 0.0

    def test_max_similarity_skips_unknown_and_self(self, make_card):
        sim = ContentSimilarity()
        card = make_card("a", front_content="krebs cycle", back_content="")
        other = make_card("b", front_content="krebs", back_content="")

        assert sim.max_similarity(card, [None, card]) == 0.0
        assert sim.max_similarity(card, [None, other]) == pytest.approx(1 / np.sqrt(2))

    def test_edited_card_is_retokenized(self, make_card):
        sim = ContentSimilarity()
        a = make_card("a", front_content="krebs cycle", back_content="")
        b = make_card("b", front_content="krebs cycle", back_content="")
        assert sim.similarity(a, b) == pytest.approx(1.0)

        edited = replace(b, front_content="calvin cycle")
        assert sim.similarity(a, edited) == pytest.approx(0.5)

    def test_token_cache_is_bounded(self, make_card):
        sim = ContentSimilarity()
        anchor = make_card("a", front_content="krebs cycle", back_content="")
        for revision in range(TOKEN_CACHE_SIZE + 50):
            edited = make_card("b", front_content=f"krebs revision{revision}", back_content="")
            sim.similarity(anchor, edited)

        info = token_counts.cache_info()
        assert info.maxsize == TOKEN_CACHE_SIZE
        assert info.currsize <= TOKEN_CACHE_SIZE
