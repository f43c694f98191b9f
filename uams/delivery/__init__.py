"""
Card delivery: next-card selection and session buffers.
"""

from uams.delivery.card_selector import CardSelector, ClusteringConfig
from uams.delivery.queue_manager import (
    AdaptiveQueueManager,
    QueueConfig,
    QueueEfficiency,
    QueueGenerationResult,
)
from uams.delivery.similarity import ContentSimilarity

__all__ = [
    "CardSelector",
    "ClusteringConfig",
    "ContentSimilarity",
    "AdaptiveQueueManager",
    "QueueConfig",
    "QueueGenerationResult",
    "QueueEfficiency",
]
