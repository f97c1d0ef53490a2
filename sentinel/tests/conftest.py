"""
Sentinel Test Configuration

Fixtures and common test utilities for all test modules.
"""

import numpy as np
import pytest

from sentinel.config import TrainingSettings
from sentinel.engine.resource_manager import StaticDeviceProbe
from sentinel.runtime import EventBus
from sentinel.training import TrainingOrchestrator
from sentinel.types import TrainingPriority

FEATURE_DIM = 8


@pytest.fixture
def rng():
    """Reproducible random number generator."""
    return np.random.default_rng(seed=42)


@pytest.fixture
def probe():
    """Plugged-in, idle device with plenty of memory."""
    return StaticDeviceProbe()


@pytest.fixture
def bus():
    return EventBus()


@pytest.fixture
def settings():
    """Small model so sessions run fast."""
    return TrainingSettings(
        _env_file=None,
        feature_dim=FEATURE_DIM,
        hidden_units=8,
        snn_output_neurons=4,
        snn_time_steps=10,
        seed=7,
    )


@pytest.fixture
def make_orchestrator(settings, probe, bus):
    """Factory building an orchestrator over the static probe and a private bus."""
    def _make(transport=None, **overrides):
        cfg = settings.model_copy(update=overrides)
        return TrainingOrchestrator.from_settings(cfg, probe=probe, transport=transport, bus=bus)
    return _make


@pytest.fixture
def fill_queue(rng):
    """Push ``n`` learnable samples (label = mean feature above 0.5)."""
    def _fill(orchestrator, n, priority=TrainingPriority.NORMAL):
        features = rng.random((n, FEATURE_DIM))
        for row in features:
            orchestrator.add_training_data(row, int(row.mean() > 0.5), priority)
        return features
    return _fill


@pytest.fixture
def light_probe(probe):
    """Charging at 40 %, 600 MB free: every gate passes, LIGHT mode."""
    probe.is_charging = True
    probe.battery_percent = 40.0
    probe.available_memory_mb = 600.0
    return probe


@pytest.fixture
def balanced_probe(probe):
    """Unplugged at 70 %, 800 MB free: every gate passes, BALANCED mode."""
    probe.is_charging = False
    probe.battery_percent = 70.0
    probe.available_memory_mb = 800.0
    return probe
