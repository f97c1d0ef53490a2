import math

import numpy as np
import pytest

from sentinel.federation.accountant import PrivacyAccountant
from sentinel.federation.privacy import DifferentialPrivacy, PrivacyConfig


def test_add_noise_differs_between_calls_and_keeps_length(rng):
    dp = DifferentialPrivacy(PrivacyConfig(epsilon=1.0, delta=1e-5), rng=rng)
    vector = np.linspace(-1.0, 1.0, 100)
    first = dp.add_noise(vector)
    second = dp.add_noise(vector)
    assert first.shape == vector.shape
    assert second.shape == vector.shape
    assert not np.allclose(first, second)
    assert not np.allclose(first, vector)


def test_gaussian_sigma_matches_mechanism():
    dp = DifferentialPrivacy(PrivacyConfig(epsilon=1.0, delta=1e-5))
    expected = 2.0 * math.sqrt(2 * math.log(1.25 / 1e-5)) / 1.0
    assert dp.resolve_sigma(2.0) == pytest.approx(expected)


def test_laplace_scale_and_explicit_sigma():
    assert DifferentialPrivacy(PrivacyConfig(epsilon=0.5, noise_type="laplace")).resolve_sigma(1.0) == pytest.approx(2.0)
    assert DifferentialPrivacy(PrivacyConfig(noise_sigma=0.25)).resolve_sigma(100.0) == 0.25


def test_noise_scale_is_calibrated(rng):
    dp = DifferentialPrivacy(PrivacyConfig(epsilon=1.0, delta=1e-5), rng=rng)
    vector = np.zeros(20000)
    noised = dp.add_noise(vector, sensitivity=0.1)
    assert np.std(noised) == pytest.approx(dp.resolve_sigma(0.1), rel=0.05)


def test_clip_bounds_l2_norm():
    dp = DifferentialPrivacy(PrivacyConfig(clip_norm=1.0))
    clipped = dp.clip(np.array([3.0, 4.0]))
    assert np.linalg.norm(clipped) == pytest.approx(1.0)
    small = np.array([0.1, 0.1])
    assert np.array_equal(dp.clip(small), small)


def test_clip_and_noise_uses_clipped_sensitivity(rng):
    dp = DifferentialPrivacy(PrivacyConfig(epsilon=1.0, delta=1e-5, clip_norm=1.0), rng=rng)
    noised, sigma = dp.clip_and_noise(np.full(10, 10.0))
    assert noised.shape == (10,)
    assert sigma == pytest.approx(dp.resolve_sigma(1.0))


def test_invalid_epsilon_rejected():
    with pytest.raises(ValueError):
        DifferentialPrivacy(PrivacyConfig(epsilon=0.0))


def test_accountant_simple_composition():
    accountant = PrivacyAccountant(total_epsilon=2.0, total_delta=1e-4)
    assert accountant.spend(1.0, 1e-5)
    assert accountant.spend(1.0, 1e-5)
    assert not accountant.spend(1.0, 1e-5)
    assert accountant.release_count == 2
    eps_left, _ = accountant.remaining()
    assert eps_left == pytest.approx(0.0)


def test_accountant_state_round_trip():
    accountant = PrivacyAccountant(total_epsilon=5.0, total_delta=1e-4)
    accountant.spend(1.5, 1e-5)
    restored = PrivacyAccountant(total_epsilon=5.0, total_delta=1e-4)
    restored.load_state_dict(accountant.state_dict())
    assert restored.remaining() == accountant.remaining()
