import numpy as np
import pytest

from sentinel.learning.stdp import SpikingNetwork, STDPConfig, STDPLearner
from sentinel.types import MODE_CONFIGS, TrainingMode


def _single_neuron(rng, **overrides):
    config = STDPConfig(output_neurons=1, homeostasis_rate=0.0, **overrides)
    network = SpikingNetwork(2, config, rng=rng)
    network.weights = np.array([[0.6], [0.3]])
    network.thresholds = np.array([0.5])
    return STDPLearner(network, rng=rng)


def test_spike_probability_is_capped(rng):
    learner = STDPLearner(SpikingNetwork(4, STDPConfig(time_steps=4000), rng=rng), rng=rng)
    spikes = learner.encode(np.array([100.0, 0.5, 0.0, -100.0]))
    rates = spikes.mean(axis=0)
    assert rates[0] == pytest.approx(0.1, abs=0.02)
    assert rates[1] == pytest.approx(0.05, abs=0.015)
    assert rates[2] == 0.0
    assert rates[3] == pytest.approx(0.1, abs=0.02)


def test_pre_before_post_potentiates(rng):
    learner = _single_neuron(rng)
    spikes = np.array([[1.0, 0.0], [0.0, 0.0], [0.0, 0.0], [0.0, 0.0]])
    counts = learner._run_sample(spikes, eta=0.01)
    assert counts.tolist() == [1.0]
    assert learner.network.weights[0, 0] > 0.6
    assert learner.network.weights[1, 0] == pytest.approx(0.3)


def test_post_before_pre_depresses(rng):
    learner = _single_neuron(rng)
    spikes = np.array([[1.0, 0.0], [0.0, 0.0], [0.0, 0.0], [0.0, 1.0]])
    learner._run_sample(spikes, eta=0.01)
    assert learner.network.weights[1, 0] < 0.3


def test_weights_change_in_place_and_stay_bounded(rng):
    config = STDPConfig(time_steps=50, initial_threshold=0.05)
    network = SpikingNetwork(8, config, rng=rng)
    learner = STDPLearner(network, rng=rng)
    before = network.weights.copy()

    features = np.full((10, 8), 5.0)
    train_config = MODE_CONFIGS[TrainingMode.INTENSIVE]
    result = learner.train_stdp(features, np.ones(10, dtype=int), train_config)

    assert result.spike_count > 0
    assert not np.array_equal(before, network.weights)
    assert network.weights.min() >= config.w_min
    assert network.weights.max() <= config.w_max


def test_homeostasis_lowers_thresholds_of_silent_neurons(rng):
    network = SpikingNetwork(4, STDPConfig(), rng=rng)
    learner = STDPLearner(network, rng=rng)
    start = network.thresholds.copy()
    learner.train_stdp(np.zeros((3, 4)), np.zeros(3, dtype=int), MODE_CONFIGS[TrainingMode.BALANCED])
    assert np.all(network.thresholds < start)


def test_accuracy_from_spike_count_proximity(rng):
    network = SpikingNetwork(4, STDPConfig(), rng=rng)
    learner = STDPLearner(network, rng=rng)
    result = learner.train_stdp(np.zeros((2, 4)), np.array([0, 1]), MODE_CONFIGS[TrainingMode.BALANCED])
    # silent network: exact for label 0, maximally wrong for label 1
    assert result.accuracy == pytest.approx(0.5)
    assert result.spike_count == 0
    assert result.samples_processed == 2


def test_state_dict_round_trip(rng):
    network = SpikingNetwork(4, STDPConfig(), rng=rng)
    state = network.state_dict()
    network.weights += 0.5
    network.load_state_dict(state)
    assert np.array_equal(network.weights, state["weights"])
