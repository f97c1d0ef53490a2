import pytest

from sentinel.training.scheduler import DEFAULT_WINDOWS, TrainingScheduler, TrainingWindow


def test_window_contains_half_open_interval():
    window = TrainingWindow(2, 5, "charging")
    assert window.contains(2)
    assert window.contains(4)
    assert not window.contains(5)
    assert not window.contains(1)


def test_window_wraps_midnight():
    window = TrainingWindow(22, 2)
    assert window.contains(23)
    assert window.contains(0)
    assert window.contains(1)
    assert not window.contains(2)
    assert not window.contains(12)


def test_windows_are_additive():
    scheduler = TrainingScheduler(DEFAULT_WINDOWS)
    assert scheduler.is_window(3)
    assert scheduler.is_window(12)
    assert scheduler.is_window(22)
    assert not scheduler.is_window(14)
    assert not scheduler.is_window(8)


def test_define_windows_accepts_camel_case_dicts():
    scheduler = TrainingScheduler()
    scheduler.define_windows([{"startHour": 9, "endHour": 10, "condition": "wifi_connected", "maxDuration": 5}])
    assert scheduler.is_window(9)
    assert scheduler.windows[0].condition == "wifi_connected"


def test_define_windows_replaces_and_add_window_appends():
    scheduler = TrainingScheduler(DEFAULT_WINDOWS)
    scheduler.define_windows([TrainingWindow(8, 9)])
    assert not scheduler.is_window(3)
    scheduler.add_window(TrainingWindow(3, 4))
    assert scheduler.is_window(3)
    assert [w.start_hour for w in scheduler.active_windows(3)] == [3]


def test_no_windows_means_never():
    scheduler = TrainingScheduler()
    assert not any(scheduler.is_window(h) for h in range(24))


@pytest.mark.parametrize("start,end", [(-1, 3), (24, 3), (3, 0), (3, 25)])
def test_invalid_window_hours(start, end):
    with pytest.raises(ValueError):
        TrainingWindow(start, end)
