"""Configuration module for DocBridge.

Provides configuration management for scoring weights, fan-out, caching and
empty-search tracking.
"""

from .search import (
    SearchConfig,
    LocalScoringWeights,
    DocsetScoringWeights,
    MergeConfig,
    FanOutConfig,
    AttemptTrackerConfig
)

__all__ = [
    'SearchConfig',
    'LocalScoringWeights',
    'DocsetScoringWeights',
    'MergeConfig',
    'FanOutConfig',
    'AttemptTrackerConfig'
]
