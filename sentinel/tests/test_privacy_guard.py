import numpy as np

from sentinel.training.privacy_guard import PrivacyGuard


def test_plain_float_features_are_safe(rng):
    guard = PrivacyGuard()
    assert guard.is_data_safe(rng.random(32))
    assert guard.is_data_safe([0.1, 0.2, 0.3])


def test_full_precision_floats_do_not_look_like_card_numbers():
    guard = PrivacyGuard()
    # 16 significant digits after the point
    assert guard.is_data_safe([0.7739560485559633, 0.4388784397520523])


def test_card_number_rejected():
    guard = PrivacyGuard()
    assert not guard.is_data_safe([4111111111111111, 0.5])
    assert not guard.is_data_safe(np.array([4111111111111111.0, 0.5]))
    assert not guard.is_data_safe(["4111 1111 1111 1111"])
    assert not guard.is_data_safe(["4111-1111-1111-1111"])


def test_national_id_rejected():
    guard = PrivacyGuard()
    assert not guard.is_data_safe({"note": "123-45-6789"})


def test_email_rejected():
    guard = PrivacyGuard()
    assert not guard.is_data_safe(["contact", "someone@example.com"])


def test_guard_is_pure():
    guard = PrivacyGuard()
    features = [1.0, 2.0]
    assert guard.is_data_safe(features) == guard.is_data_safe(features)
    assert features == [1.0, 2.0]
