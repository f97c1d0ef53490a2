import pytest

from sentinel.training.queue import QueueConfig, TrainingQueue
from sentinel.types import TrainingPriority, TrainingSample


def _sample(priority, timestamp, label=0):
    return TrainingSample(features=[0.0, 1.0], label=label, priority=priority, timestamp=timestamp)


def test_push_below_capacity_keeps_everything():
    queue = TrainingQueue(QueueConfig(capacity=5))
    for i in range(5):
        assert queue.push(_sample(TrainingPriority.NORMAL, float(i))) == 0
    assert len(queue) == 5


def test_overflow_retains_top_by_priority_then_recency():
    queue = TrainingQueue(QueueConfig(capacity=10, retention_ratio=0.8))
    samples = []
    priorities = [TrainingPriority.LOW, TrainingPriority.NORMAL, TrainingPriority.HIGH, TrainingPriority.CRITICAL]
    for i in range(11):
        s = _sample(priorities[i % 4], float(i))
        samples.append(s)
        queue.push(s)

    assert len(queue) == 8
    assert queue.evicted_total == 3
    expected = sorted(samples, key=lambda s: (int(s.priority), -s.timestamp))[:8]
    assert [s.id for s in queue.snapshot()] == [s.id for s in expected]


def test_queue_never_exceeds_capacity():
    queue = TrainingQueue(QueueConfig(capacity=20))
    for i in range(100):
        queue.push(_sample(TrainingPriority.NORMAL, float(i)))
        assert len(queue) <= 20


def test_select_batch_order_and_limit():
    queue = TrainingQueue()
    old_low = _sample(TrainingPriority.LOW, 1.0)
    new_normal = _sample(TrainingPriority.NORMAL, 3.0)
    old_normal = _sample(TrainingPriority.NORMAL, 2.0)
    critical = _sample(TrainingPriority.CRITICAL, 0.5)
    for s in (old_low, new_normal, old_normal, critical):
        queue.push(s)

    batch = queue.select_batch(3)
    assert [s.id for s in batch] == [critical.id, new_normal.id, old_normal.id]
    assert len(queue) == 4


def test_remove_consumed_samples():
    queue = TrainingQueue()
    a, b = _sample(TrainingPriority.NORMAL, 1.0), _sample(TrainingPriority.NORMAL, 2.0)
    queue.push(a)
    queue.push(b)
    assert queue.remove([a.id]) == 1
    assert a.id not in queue
    assert b.id in queue


def test_count_by_priority():
    queue = TrainingQueue()
    queue.push(_sample(TrainingPriority.HIGH, 1.0))
    queue.push(_sample(TrainingPriority.HIGH, 2.0))
    queue.push(_sample(TrainingPriority.LOW, 3.0))
    counts = queue.count_by_priority()
    assert counts["HIGH"] == 2
    assert counts["LOW"] == 1
    assert counts["CRITICAL"] == 0


def test_invalid_config_rejected():
    with pytest.raises(ValueError):
        TrainingQueue(QueueConfig(capacity=0))
    with pytest.raises(ValueError):
        TrainingQueue(QueueConfig(retention_ratio=1.5))
