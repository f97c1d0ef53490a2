"""
Sentinel on-device incremental training.

Continuously improves the local threat classifier from labelled samples
emitted by the inference engine, gated by device resources and protected
against catastrophic forgetting.
"""

__version__ = "0.1.0"
