"""
Meta-parameter tuning for intensive training sessions.
"""

from .optimizer import META_KEYS, MetaOptimizerConfig, MetaOptimizerState, MetaParameterOptimizer

__all__ = ["META_KEYS", "MetaOptimizerConfig", "MetaOptimizerState", "MetaParameterOptimizer"]
