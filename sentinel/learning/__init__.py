"""
Learners for on-device training.

Exposes the anti-forgetting ANN path (classifier, replay buffer, EWC,
incremental learner) and the spike-timing path (spiking network, STDP).
"""

from .model import FeedForwardClassifier
from .replay import ExperienceReplayBuffer, ReplayBufferEntry, ReplayConfig
from .ewc import ElasticWeightConsolidation
from .incremental import AdamOptimizer, IncrementalConfig, IncrementalLearner, IncrementalResult
from .stdp import SpikingNetwork, STDPConfig, STDPLearner, STDPResult

__all__ = [
    "AdamOptimizer",
    "ElasticWeightConsolidation",
    "ExperienceReplayBuffer",
    "FeedForwardClassifier",
    "IncrementalConfig",
    "IncrementalLearner",
    "IncrementalResult",
    "ReplayBufferEntry",
    "ReplayConfig",
    "SpikingNetwork",
    "STDPConfig",
    "STDPLearner",
    "STDPResult",
]
