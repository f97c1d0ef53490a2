import dataclasses
import itertools

import numpy as np
import pytest

from sentinel.types import (
    MODE_CONFIGS,
    GateResult,
    TrainingConfig,
    TrainingMode,
    TrainingOutcome,
    TrainingPriority,
    TrainingSample,
    stack_samples,
)


def test_exactly_three_mode_configs():
    assert set(MODE_CONFIGS) == set(TrainingMode)
    assert TrainingConfig.for_mode(TrainingMode.BALANCED) is MODE_CONFIGS[TrainingMode.BALANCED]


def test_mode_ordering_holds_for_every_tunable():
    modes = sorted(TrainingMode, key=lambda m: m.rank)
    for lower, higher in itertools.combinations(modes, 2):
        a, b = MODE_CONFIGS[lower], MODE_CONFIGS[higher]
        for name in TrainingConfig.TUNABLES:
            assert getattr(a, name) <= getattr(b, name), f"{name}: {lower} > {higher}"


def test_mode_configs_are_immutable():
    with pytest.raises(dataclasses.FrozenInstanceError):
        MODE_CONFIGS[TrainingMode.LIGHT].learning_rate = 1.0  # type: ignore[misc]


def test_priority_order():
    assert TrainingPriority.CRITICAL < TrainingPriority.HIGH < TrainingPriority.NORMAL < TrainingPriority.LOW


def test_sample_features_are_read_only():
    sample = TrainingSample(features=[1, 2, 3], label=1)
    assert sample.features.dtype == np.float32
    with pytest.raises(ValueError):
        sample.features[0] = 9.0
    with pytest.raises(dataclasses.FrozenInstanceError):
        sample.label = 0  # type: ignore[misc]


def test_sample_ids_are_unique():
    ids = {TrainingSample(features=[0.0], label=0).id for _ in range(50)}
    assert len(ids) == 50


def test_stack_samples():
    samples = [TrainingSample(features=[i, i], label=i % 2) for i in range(3)]
    features, labels = stack_samples(samples)
    assert features.shape == (3, 2)
    assert labels.tolist() == [0, 1, 0]


def test_gate_result_dict():
    assert GateResult(False, "Battery too low").to_dict() == {"canTrain": False, "reason": "Battery too low"}


def test_outcome_dict_omits_unused_fields():
    assert TrainingOutcome(success=False, reason="Insufficient training data").to_dict() == {
        "success": False,
        "reason": "Insufficient training data",
    }
    payload = TrainingOutcome(success=True, duration_ms=12.0, metrics={"a": 1}).to_dict()
    assert payload["duration"] == 12.0
    assert "reason" not in payload


@pytest.mark.parametrize("label", [1.7, float("nan"), "one"])
def test_sample_rejects_non_integral_label(label):
    with pytest.raises(ValueError):
        TrainingSample(features=[0.0], label=label)


def test_sample_accepts_integral_float_label():
    assert TrainingSample(features=[0.0], label=np.float64(1.0)).label == 1
