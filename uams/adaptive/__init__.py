"""
Session-level adaptation: cognitive load and momentum.
"""

from uams.adaptive.cognitive_load import (
    CognitiveLoadAnalysis,
    CognitiveLoadCalculator,
    CognitiveLoadProfile,
    LoadFactors,
)
from uams.adaptive.momentum import (
    FlowStateAnalysis,
    MomentumAnalysis,
    MomentumConfig,
    MomentumManager,
)

__all__ = [
    "CognitiveLoadCalculator",
    "CognitiveLoadAnalysis",
    "CognitiveLoadProfile",
    "LoadFactors",
    "MomentumManager",
    "MomentumConfig",
    "MomentumAnalysis",
    "FlowStateAnalysis",
]
