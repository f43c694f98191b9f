"""
Study Module.

Provides:
- DSR memory-state estimation (FSRS with contextual signals)
- Study session orchestration
- Personal FSRS parameter fitting
- JSON session persistence
"""

from uams.study.dsr_engine import DSRConfig, DSREngine
from uams.study.parameter_optimizer import (
    FSRSParameterOptimizer,
    OptimizationConfig,
    OptimizationResult,
)
from uams.study.session_store import JsonSessionStore
from uams.study.study_session import SessionAnalysis, StudySessionService, TurnOutcome

__all__ = [
    "DSREngine",
    "DSRConfig",
    "StudySessionService",
    "TurnOutcome",
    "SessionAnalysis",
    "FSRSParameterOptimizer",
    "OptimizationConfig",
    "OptimizationResult",
    "JsonSessionStore",
]
