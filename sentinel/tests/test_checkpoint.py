import json

import numpy as np
import pytest

from sentinel.checkpoint import CHECKPOINT_VERSION, Checkpoint, CheckpointStorage, CheckpointStorageConfig
from sentinel.errors import CheckpointError, CheckpointRestoreError


def _state(orchestrator):
    learner = orchestrator.learner
    return {
        "ann": learner.model.state_dict(),
        "reference": learner.reference.state_dict(),
        "replay": learner.replay.state_dict(),
        "snn": orchestrator.stdp.network.state_dict(),
    }


def _assert_same(a, b):
    assert a.keys() == b.keys()
    for group in a:
        for name, value in a[group].items():
            assert np.array_equal(value, b[group][name]), f"{group}/{name} differs"


def test_restore_without_checkpoint_raises(make_orchestrator):
    orchestrator = make_orchestrator()
    with pytest.raises(CheckpointRestoreError):
        orchestrator.checkpoints.restore()


def test_restore_is_bit_for_bit(make_orchestrator):
    orchestrator = make_orchestrator()
    manager = orchestrator.checkpoints
    manager.ensure_baseline()
    before = _state(orchestrator)
    meta_before = orchestrator.meta.state_dict()

    orchestrator.learner.model.params["W1"] += 1.0
    orchestrator.learner.replay.add(np.ones((3, 8)), np.zeros(3, dtype=np.int64))
    orchestrator.stdp.network.weights *= 0.5
    orchestrator.meta.step(0.9, {"task": 1.0}, {})

    manager.restore()
    _assert_same(before, _state(orchestrator))
    assert orchestrator.meta.state_dict() == meta_before
    assert len(orchestrator.learner.replay) == 0


def test_checkpoint_arrays_are_read_only(make_orchestrator):
    checkpoint = make_orchestrator().checkpoints.ensure_baseline()
    weights = checkpoint.ann_params["W1"]
    assert not weights.flags.writeable
    with pytest.raises(ValueError):
        weights[0, 0] = 1.0


def test_snapshot_is_isolated_from_live_training(make_orchestrator):
    orchestrator = make_orchestrator()
    snapshot = orchestrator.get_model_snapshot()
    frozen = snapshot["ann"]["W1"].copy()
    orchestrator.learner.model.params["W1"] += 1.0
    assert np.array_equal(snapshot["ann"]["W1"], frozen)


def test_unsupported_version_rejected(make_orchestrator):
    checkpoint = make_orchestrator().checkpoints.ensure_baseline()
    manifest = dict(checkpoint.manifest(), version=CHECKPOINT_VERSION + 1)
    with pytest.raises(CheckpointError):
        Checkpoint.from_payload(checkpoint.arrays(), manifest)


def test_amend_federated_state(make_orchestrator):
    orchestrator = make_orchestrator()
    manager = orchestrator.checkpoints
    with pytest.raises(CheckpointError):
        manager.amend_federated_state()
    manager.ensure_baseline()
    orchestrator.federated.submitted = 3
    assert manager.amend_federated_state().federated_state["submitted"] == 3


def test_saved_checkpoint_resumes_in_new_process(make_orchestrator, tmp_path):
    first = make_orchestrator(state_dir=tmp_path)
    first.checkpoints.ensure_baseline()
    first.learner.model.params["W1"] += 0.5
    first.stdp.network.weights += 0.01
    first.checkpoints.save()
    saved = _state(first)

    second = make_orchestrator(state_dir=tmp_path)
    second.checkpoints.ensure_baseline()
    _assert_same(saved, _state(second))


def test_storage_falls_back_to_backup_on_torn_write(tmp_path):
    storage = CheckpointStorage(CheckpointStorageConfig(root=tmp_path))
    storage.save({"a": np.arange(3)}, {"version": 1})
    storage.save({"a": np.arange(3) + 10}, {"version": 1})

    manifest = json.loads(storage.manifest_path.read_text())
    manifest["token"] = "stale"
    storage.manifest_path.write_text(json.dumps(manifest))

    arrays, _ = storage.load_latest()
    assert arrays["a"].tolist() == [0, 1, 2]


def test_storage_prunes_backups(tmp_path):
    storage = CheckpointStorage(CheckpointStorageConfig(root=tmp_path, retention=2))
    for i in range(5):
        storage.save({"a": np.array([i])}, {"version": 1})
    assert len(list((tmp_path / "backups").glob("*.json"))) <= 2
    arrays, _ = storage.load_latest()
    assert arrays["a"].tolist() == [4]


def test_empty_storage_loads_nothing(tmp_path):
    assert CheckpointStorage(CheckpointStorageConfig(root=tmp_path)).load_latest() is None
