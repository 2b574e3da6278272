"""
Signal scoring and ranking.
"""
from .scoring import (
    SqueezeScorer,
    ScoringConfig,
    score_and_rank,
)

__all__ = [
    "SqueezeScorer",
    "ScoringConfig",
    "score_and_rank",
]
