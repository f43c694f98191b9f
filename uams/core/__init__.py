"""
Core domain records, errors and collaborator contracts.
"""

from uams.core.exceptions import (
    InsufficientDataError,
    NoCandidatesError,
    ParameterValidationError,
    SessionNotFoundError,
    UAMSError,
)
from uams.core.models import (
    DEFAULT_FSRS_PARAMETERS,
    CardSelectionResult,
    ContextualFactors,
    DSRUpdate,
    EnhancedResponseLog,
    EnvironmentalContext,
    Rating,
    UnifiedCard,
    UnifiedSessionState,
    UserProfile,
)
from uams.core.validation import partition_cards, sanitize_card, validate_card

__all__ = [
    "DEFAULT_FSRS_PARAMETERS",
    "CardSelectionResult",
    "ContextualFactors",
    "DSRUpdate",
    "EnhancedResponseLog",
    "EnvironmentalContext",
    "Rating",
    "UnifiedCard",
    "UnifiedSessionState",
    "UserProfile",
    "UAMSError",
    "NoCandidatesError",
    "InsufficientDataError",
    "ParameterValidationError",
    "SessionNotFoundError",
    "validate_card",
    "sanitize_card",
    "partition_cards",
]
