"""
Card data-quality checks.

The engines trust their inputs. Cards loaded from a store pass through
``partition_cards`` first; anything that violates the DSR ranges or carries a
malformed weight vector is quarantined (or repaired with ``sanitize_card``).
"""
from __future__ import annotations

import math
from dataclasses import replace
from typing import Iterable

from loguru import logger

from uams.core.models import (
    DEFAULT_FSRS_PARAMETERS,
    FSRS_PARAMETER_COUNT,
    UnifiedCard,
    clamp,
)


def _valid_weights(weights) -> bool:
    return len(weights) == FSRS_PARAMETER_COUNT and all(math.isfinite(w) for w in weights)


def validate_card(card: UnifiedCard) -> list[str]:
    """Return the card's violations (empty when clean)."""
    errors = []
    if not card.id:
        errors.append("Card id is empty")
    if not card.deck_id:
        errors.append("Deck id is empty")
    if not 1.0 <= card.difficulty <= 10.0:
        errors.append(f"Difficulty {card.difficulty} outside [1, 10]")
    if card.stability < 0.1:
        errors.append(f"Stability {card.stability} below 0.1")
    if not 0.0 <= card.retrievability <= 1.0:
        errors.append(f"Retrievability {card.retrievability} outside [0, 1]")
    if not 0.0 <= card.cognitive_load_index <= 1.0:
        errors.append(f"Cognitive load index {card.cognitive_load_index} outside [0, 1]")
    if len(card.fsrs_parameters) != FSRS_PARAMETER_COUNT:
        errors.append(
            f"Expected {FSRS_PARAMETER_COUNT} FSRS parameters, got {len(card.fsrs_parameters)}"
        )
    elif not _valid_weights(card.fsrs_parameters):
        errors.append("FSRS parameters contain non-finite values")
    return errors


def sanitize_card(card: UnifiedCard) -> UnifiedCard:
    """Clamp DSR fields into range and restore default weights if malformed."""
    weights = card.fsrs_parameters
    if not _valid_weights(weights):
        weights = DEFAULT_FSRS_PARAMETERS

    return replace(
        card,
        difficulty=clamp(card.difficulty, 1.0, 10.0),
        stability=max(0.1, card.stability),
        retrievability=clamp(card.retrievability),
        cognitive_load_index=clamp(card.cognitive_load_index),
        fsrs_parameters=tuple(weights),
    )


def partition_cards(cards: Iterable[UnifiedCard]) -> tuple[list[UnifiedCard], list[UnifiedCard]]:
    """
    Split cards into (clean, quarantined).

    Each quarantined card is logged with its violations.
    """
    clean = []
    quarantined = []
    for card in cards:
        errors = validate_card(card)
        if errors:
            logger.warning(f"Quarantined card {card.id or '<no id>'}: {'; '.join(errors)}")
            quarantined.append(card)
        else:
            clean.append(card)
    return clean, quarantined
