import numpy as np
import pytest

from sentinel.errors import TrainingError
from sentinel.learning import (
    ElasticWeightConsolidation,
    ExperienceReplayBuffer,
    FeedForwardClassifier,
    IncrementalLearner,
    ReplayConfig,
)
from sentinel.types import MODE_CONFIGS, TrainingConfig, TrainingMode

DIM = 6


def _data(rng, n):
    features = rng.random((n, DIM)).astype(np.float32)
    labels = (features.mean(axis=1) > 0.5).astype(np.int64)
    return features, labels


def _learner(rng, capacity=100):
    model = FeedForwardClassifier(DIM, 2, hidden_units=8, rng=rng)
    replay = ExperienceReplayBuffer(DIM, ReplayConfig(capacity=capacity), rng=rng)
    return IncrementalLearner(model, replay)


def test_gradients_match_finite_differences(rng):
    model = FeedForwardClassifier(DIM, 3, hidden_units=5, rng=rng)
    features = rng.normal(size=(7, DIM))
    labels = rng.integers(0, 3, size=7)
    _, grads = model.gradients(features, labels)

    eps = 1e-6
    for name in ("W1", "b2"):
        index = (0,) * model.params[name].ndim
        original = model.params[name][index]
        model.params[name][index] = original + eps
        plus, _ = model.gradients(features, labels)
        model.params[name][index] = original - eps
        minus, _ = model.gradients(features, labels)
        model.params[name][index] = original
        assert grads[name][index] == pytest.approx((plus - minus) / (2 * eps), rel=1e-4, abs=1e-7)


def test_ewc_penalty_is_zero_at_anchor_and_grows_with_drift(rng):
    model = FeedForwardClassifier(DIM, 2, rng=rng)
    ewc = ElasticWeightConsolidation()
    params = model.state_dict()
    fisher = {k: np.ones_like(v) for k, v in params.items()}
    assert ewc.penalty(params) == 0.0

    ewc.consolidate(params, fisher)
    assert ewc.penalty(params) == 0.0

    moved = {k: v + 0.1 for k, v in params.items()}
    n_params = sum(v.size for v in params.values())
    assert ewc.penalty(moved) == pytest.approx(0.5 * n_params * 0.01)
    grad = ewc.penalty_gradient(moved)
    assert np.allclose(grad["W1"], 0.1)


def test_online_consolidation_decays_previous_fisher(rng):
    model = FeedForwardClassifier(DIM, 2, rng=rng)
    ewc = ElasticWeightConsolidation(decay=0.9)
    params = model.state_dict()
    ones = {k: np.ones_like(v) for k, v in params.items()}
    ewc.consolidate(params, ones)
    ewc.consolidate(params, ones)
    assert np.allclose(ewc.fisher["b1"], 1.9)
    assert ewc.consolidations == 2


def test_replay_draw_is_half_batch(rng):
    learner = _learner(rng)
    old_x, old_y = _data(rng, 10)
    learner.replay.add(old_x, old_y)
    features, labels = _data(rng, 20)

    config = MODE_CONFIGS[TrainingMode.BALANCED]
    assert learner.replay_draw_size(config.batch_size) == 4
    result = learner.train_incremental(features, labels, config)

    assert result.samples_processed == 24
    assert len(learner.replay) == 30


def test_replay_draw_capped_by_buffer(rng):
    learner = _learner(rng)
    assert learner.replay_draw_size(16) == 0
    learner.replay.add(*_data(rng, 3))
    assert learner.replay_draw_size(16) == 3


def test_result_reports_three_loss_terms(rng):
    learner = _learner(rng)
    result = learner.train_incremental(*_data(rng, 20), MODE_CONFIGS[TrainingMode.LIGHT])
    assert set(result.loss_terms) == {"task", "ewc", "distillation"}
    assert np.isfinite(result.loss)
    assert 0.0 <= result.accuracy <= 1.0
    assert result.duration_ms >= 0.0


def test_training_reduces_task_loss(rng):
    learner = _learner(rng)
    features, labels = _data(rng, 64)
    initial, _ = learner.model.gradients(features, labels)
    config = TrainingConfig(
        mode=TrainingMode.INTENSIVE,
        max_battery_drain=0.05,
        max_memory_mb=400,
        max_duration_minutes=20,
        min_samples_required=1,
        learning_rate=0.05,
        batch_size=0,
        epochs_per_session=60,
    )
    result = learner.train_incremental(features, labels, config)
    assert result.loss_terms["task"] < initial


def test_consolidate_commits_fisher_and_reference(rng):
    learner = _learner(rng)
    learner.train_incremental(*_data(rng, 20), MODE_CONFIGS[TrainingMode.BALANCED])
    assert learner.has_pending_consolidation
    assert not learner.ewc.active

    learner.consolidate()
    assert learner.ewc.active
    assert not learner.has_pending_consolidation
    for name, value in learner.model.params.items():
        assert np.array_equal(learner.reference.params[name], value)


def test_second_session_pays_ewc_penalty(rng):
    learner = _learner(rng)
    config = MODE_CONFIGS[TrainingMode.INTENSIVE]
    learner.train_incremental(*_data(rng, 30), config)
    learner.consolidate()
    result = learner.train_incremental(*_data(rng, 30), config)
    assert result.loss_terms["ewc"] > 0.0
    assert result.loss_terms["distillation"] > 0.0


def test_non_finite_loss_raises(rng):
    learner = _learner(rng)
    features = np.full((4, DIM), np.nan, dtype=np.float32)
    with pytest.raises(TrainingError):
        learner.train_incremental(features, np.zeros(4, dtype=np.int64), MODE_CONFIGS[TrainingMode.LIGHT])


def test_empty_batch_raises(rng):
    learner = _learner(rng)
    with pytest.raises(TrainingError):
        learner.train_incremental(np.zeros((0, DIM)), np.zeros(0, dtype=np.int64), MODE_CONFIGS[TrainingMode.LIGHT])


def test_probabilities_and_copy_are_independent(rng):
    model = FeedForwardClassifier(DIM, 3, hidden_units=4, rng=rng)
    features, _ = _data(rng, 5)
    proba = model.predict_proba(features)
    assert proba.shape == (5, 3)
    assert np.allclose(proba.sum(axis=1), 1.0)
    assert np.array_equal(model.predict(features), proba.argmax(axis=1))

    clone = model.copy()
    clone.params["W1"] += 1.0
    assert not np.array_equal(clone.params["W1"], model.params["W1"])


def test_load_state_dict_rejects_wrong_shapes(rng):
    model = FeedForwardClassifier(DIM, 2, hidden_units=4, rng=rng)
    state = model.state_dict()
    state["W1"] = np.zeros((DIM + 1, 4))
    with pytest.raises(ValueError):
        model.load_state_dict(state)
    del state["W1"]
    with pytest.raises(KeyError):
        model.load_state_dict(state)
